"""Linear combinations of covariates for oblique splits.

Two built-in ways to turn the data in a node into a coefficient vector:

- newtraph_cph: Newton-Raphson maximisation of the weighted Cox partial
  likelihood with Breslow or Efron handling of ties
- fit_net: elastic-net penalised Cox regression path, read at the first
  penalty whose number of non-zero coefficients reaches a target

Both signal failure with NotConvergedError so the tree builder can retry
with a different column sample.
"""

import logging
from collections import namedtuple

import numpy as np
from scipy.stats import chi2
from sksurv.linear_model import CoxnetSurvivalAnalysis
from sksurv.util import Surv

logger = logging.getLogger(__name__)

CoxFit = namedtuple('CoxFit', ['coef', 'pvalues', 'loglik', 'n_iter'])

# halvings allowed within one Newton-Raphson iteration
_MAX_HALVING = 20


class NotConvergedError(ArithmeticError):
    """The linear combination could not be estimated for this node."""


def _reverse_cumsum(a):
    return np.cumsum(a[::-1], axis=0)[::-1]


class _RiskSets:
    """Risk-set bookkeeping shared by every Newton-Raphson iteration.

    Observations are sorted by time once. For each distinct time the risk
    set starts at the first sorted row with that time, so reverse cumulative
    sums read at those rows give the risk-set totals.
    """

    def __init__(self, x, time, status, w, efron):
        order = np.argsort(time, kind='mergesort')
        self.x = x[order]
        self.status = status[order]
        self.w = w[order]

        _, self.first, self.inverse = np.unique(time[order], return_index=True, return_inverse=True)
        self.n_times = self.first.size

        deaths = np.bincount(self.inverse, weights=self.status, minlength=self.n_times)
        self.event_groups = np.flatnonzero(deaths > 0)
        n_dead = np.rint(deaths[self.event_groups]).astype(int)

        # one entry per death, so Efron's fractional risk sets vectorise
        self.kk = np.repeat(self.event_groups, n_dead)
        n_dead_rep = np.repeat(n_dead, n_dead)
        offsets = np.repeat(np.cumsum(n_dead) - n_dead, n_dead)
        if efron:
            self.frac = (np.arange(self.kk.size) - offsets) / n_dead_rep
        else:
            self.frac = np.zeros(self.kk.size)

        dead_w = np.bincount(self.inverse, weights=self.w * self.status, minlength=self.n_times)
        self.mean_w = dead_w[self.kk] / n_dead_rep
        self.dead_wx = (self.w * self.status) @ self.x

    def _by_time(self, values):
        out = np.zeros((self.n_times,) + values.shape[1:])
        np.add.at(out, self.inverse, values * self.status.reshape((-1,) + (1,) * (values.ndim - 1)))
        return out

    def evaluate(self, beta):
        """Log-likelihood, score vector and information matrix at ``beta``."""
        eta = self.x @ beta
        # the partial likelihood is invariant to a common shift of eta
        eta = eta - eta.max()
        risk = self.w * np.exp(eta)
        rx = risk[:, None] * self.x
        rxx = rx[:, :, None] * self.x[:, None, :]

        s0 = _reverse_cumsum(risk)[self.first]
        s1 = _reverse_cumsum(rx)[self.first]
        s2 = _reverse_cumsum(rxx)[self.first]

        d0 = self._by_time(risk)
        d1 = self._by_time(rx)
        d2 = self._by_time(rxx)

        kk, frac, mean_w = self.kk, self.frac, self.mean_w
        denom = s0[kk] - frac * d0[kk]
        a = (s1[kk] - frac[:, None] * d1[kk]) / denom[:, None]
        b = (s2[kk] - frac[:, None, None] * d2[kk]) / denom[:, None, None]

        loglik = (self.w * self.status) @ eta - mean_w @ np.log(denom)
        score = self.dead_wx - mean_w @ a
        imat = np.einsum('k,kij->ij', mean_w, b - a[:, :, None] * a[:, None, :])
        return loglik, score, imat


def _converged(loglik_new, loglik_old, eps):
    if abs(loglik_new - loglik_old) < eps:
        return True
    return loglik_old != 0 and abs(1 - loglik_new / loglik_old) < eps


def newtraph_cph(x, y, w, method='efron', eps=1e-9, iter_max=20, pval_max=1.0):
    """Fit a Cox proportional hazards model by Newton-Raphson.

    Args:
        x (np.ndarray): Node covariates with shape (n_samples, n_columns)
        y (np.ndarray): Survival data with columns (time, status)
        w (np.ndarray): Positive observation weights
        method (str): 'efron' or 'breslow' handling of tied event times
        eps (float): Tolerance on the relative or absolute change in log-likelihood
        iter_max (int): Maximum number of Newton-Raphson iterations
        pval_max (float): Coefficients with Wald p-value above this are set to 0

    Returns:
        CoxFit: (coef, pvalues, loglik, n_iter)

    Raises:
        NotConvergedError: If the iteration cap is hit, the information matrix
            is singular, values become non-finite, or no coefficient survives
            the p-value filter
    """
    if method not in ('efron', 'breslow'):
        raise ValueError(f"method must be 'efron' or 'breslow', got {method!r}")
    if not np.any(y[:, 1] > 0):
        raise NotConvergedError("no events in node")

    risk_sets = _RiskSets(x, y[:, 0], y[:, 1], w, efron=(method == 'efron'))

    beta = np.zeros(x.shape[1])
    loglik, score, imat = risk_sets.evaluate(beta)

    converged = False
    n_iter = 0
    while n_iter < iter_max and not converged:
        n_iter += 1
        try:
            step = np.linalg.solve(imat, score)
        except np.linalg.LinAlgError as e:
            raise NotConvergedError("singular information matrix") from e

        beta_new = beta + step
        for _ in range(_MAX_HALVING):
            loglik_new, score_new, imat_new = risk_sets.evaluate(beta_new)
            if np.isfinite(loglik_new) and (
                    loglik_new >= loglik or _converged(loglik_new, loglik, eps)):
                break
            # step-halving towards the previous estimate
            beta_new = (beta + beta_new) / 2
        else:
            raise NotConvergedError("step-halving did not improve the log-likelihood")

        converged = _converged(loglik_new, loglik, eps)
        beta, loglik, score, imat = beta_new, loglik_new, score_new, imat_new

    if not converged:
        raise NotConvergedError(f"no convergence after {iter_max} iterations")

    try:
        variance = np.diag(np.linalg.inv(imat))
    except np.linalg.LinAlgError as e:
        raise NotConvergedError("singular information matrix") from e
    if not np.all(np.isfinite(beta)) or not np.all(variance > 0):
        raise NotConvergedError("unstable coefficient estimates")

    pvalues = chi2.sf(beta ** 2 / variance, df=1)
    if pval_max < 1:
        beta = np.where(pvalues > pval_max, 0.0, beta)
    if not np.any(beta != 0):
        raise NotConvergedError("no coefficient is significant")

    return CoxFit(beta, pvalues, loglik, n_iter)


def fit_net(x, y, w, alpha=0.5, df_target=None):
    """Elastic-net Cox regression read at a target number of non-zero terms.

    The penalty path is fit with scikit-survival's CoxnetSurvivalAnalysis
    and the coefficients are taken at the first penalty whose model has at
    least ``df_target`` non-zero coefficients, or at the smallest penalty
    when no model on the path gets there.

    Args:
        x (np.ndarray): Node covariates with shape (n_samples, n_columns)
        y (np.ndarray): Survival data with columns (time, status)
        w (np.ndarray): Positive weights, applied as integer replication counts
        alpha (float): Elastic-net mixing parameter, 1 is the lasso
        df_target (int, optional): Target number of non-zero coefficients,
            defaults to all columns

    Returns:
        np.ndarray: Coefficient vector over the columns of ``x``

    Raises:
        NotConvergedError: If the path cannot be fit or every coefficient is 0
    """
    if df_target is None:
        df_target = x.shape[1]
    if not np.any(y[:, 1] > 0):
        raise NotConvergedError("no events in node")

    counts = np.maximum(np.rint(w), 1).astype(int)
    x_rep = np.repeat(x, counts, axis=0)
    y_rep = Surv.from_arrays(event=np.repeat(y[:, 1], counts).astype(bool),
                             time=np.repeat(y[:, 0], counts))

    model = CoxnetSurvivalAnalysis(l1_ratio=alpha)
    try:
        model.fit(x_rep, y_rep)
    except (ArithmeticError, ValueError) as e:
        raise NotConvergedError(f"elastic-net path failed: {e}") from e

    coefs = model.coef_
    df = np.count_nonzero(coefs, axis=0)
    reached = np.flatnonzero(df >= df_target)
    column = reached[0] if reached.size else coefs.shape[1] - 1
    logger.debug("net: df %d at penalty %g", df[column], model.alphas_[column])

    beta = coefs[:, column]
    if not np.any(beta != 0):
        raise NotConvergedError("elastic-net path has no non-zero coefficients")
    return beta
