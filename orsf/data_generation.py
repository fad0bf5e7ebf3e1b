"""
Synthetic right-censored data from a Weibull proportional hazards model.

Standard notation:
  X : covariates, independent standard normal
  T : event time, hazard h0(t) * exp(X'beta)
  C : censoring time, Weibull with scale calibrated to a target censoring rate
  Y : observed time min(T, C) with status 1{T <= C}
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import pandas as pd


def weibull_ph_time(u01: np.ndarray, k: float, lam: float, eta: np.ndarray) -> np.ndarray:
    """
    Sampling consistent with:
      T | X ~ Weibull(k, scale = lam * exp(-eta/k))
      T = scale * (-log(U01))^(1/k)
    """
    u01 = np.clip(u01, 1e-12, 1 - 1e-12)
    scale = lam * np.exp(-eta / k)
    return scale * (-np.log(u01)) ** (1.0 / k)


def calibrate_censoring_scale(
    t_event: np.ndarray,
    u_c: np.ndarray,
    k_c: float,
    target_rate: float,
    max_iter: int = 60,
) -> float:
    """Bisection on log-scale so mean(C < T) ~= target_rate."""
    lo, hi = -20.0, 20.0
    for _ in range(max_iter):
        mid = 0.5 * (lo + hi)
        c = weibull_ph_time(u_c, k_c, np.exp(mid), np.zeros_like(t_event))
        if np.mean(c < t_event) > target_rate:
            lo = mid
        else:
            hi = mid
    return float(np.exp(0.5 * (lo + hi)))


@dataclass
class SynthConfig:
    n: int = 500
    seed: int = 123

    # log hazard ratios, one per covariate
    beta: Tuple[float, ...] = (1.0, -0.5, 0.0)

    # Event time model (Weibull PH)
    k_t: float = 1.5
    lam_t: float = 10.0

    # Censoring time model (Weibull, independent of X)
    k_c: float = 1.2
    target_censor_rate: Optional[float] = 0.3

    column_prefix: str = field(default='x')


def generate_cox_data(cfg: SynthConfig) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Generate covariates and a censored outcome from a Cox model.

    Returns:
        X: DataFrame with columns x0..x{p-1}
        y: structured array with fields ('status', bool) and ('time', float)
    """
    rng = np.random.default_rng(cfg.seed)
    beta = np.asarray(cfg.beta, dtype=np.float64)

    X = rng.normal(size=(cfg.n, beta.size))
    t_event = weibull_ph_time(rng.random(cfg.n), cfg.k_t, cfg.lam_t, X @ beta)

    if cfg.target_censor_rate:
        u_c = rng.random(cfg.n)
        lam_c = calibrate_censoring_scale(t_event, u_c, cfg.k_c, cfg.target_censor_rate)
        t_cens = weibull_ph_time(u_c, cfg.k_c, lam_c, np.zeros(cfg.n))
    else:
        t_cens = np.full(cfg.n, np.inf)

    status = t_event <= t_cens
    time = np.minimum(t_event, t_cens)

    X = pd.DataFrame(X, columns=[f"{cfg.column_prefix}{j}" for j in range(beta.size)])
    y = np.array(list(zip(status, time)), dtype=[('status', np.bool_), ('time', np.float64)])
    return X, y


def survival_matrix(y: np.ndarray) -> np.ndarray:
    """Structured outcome as an (n, 2) matrix of (time, status)."""
    return np.column_stack([y['time'], y['status'].astype(np.float64)])
