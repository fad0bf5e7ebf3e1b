"""Strategy objects for linear combinations and out-of-bag evaluation.

Each object carries a ``kind`` discriminator that the tree builder and the
forest branch on:

- CoxControl ('cph'): Newton-Raphson Cox regression
- NetControl ('net'): elastic-net Cox regression at a target df
- CustomControl ('custom'): caller supplied ``beta_fn(x, y, w) -> coef``
- OobagEval ('harrell' or 'custom'): statistic computed from OOB predictions
"""

from dataclasses import dataclass
from typing import Callable, ClassVar, Optional


@dataclass
class CoxControl:
    method: str = 'efron'
    eps: float = 1e-9
    iter_max: int = 20
    pval_max: float = 1.0
    do_scale: bool = True

    kind: ClassVar[str] = 'cph'

    def __post_init__(self):
        if self.method not in ('efron', 'breslow'):
            raise ValueError(f"method must be 'efron' or 'breslow', got {self.method!r}")
        if self.eps <= 0:
            raise ValueError("eps must be positive")
        if self.iter_max < 1:
            raise ValueError("iter_max must be at least 1")
        if not 0 < self.pval_max <= 1:
            raise ValueError("pval_max must be in (0, 1]")


@dataclass
class NetControl:
    alpha: float = 0.5
    df_target: Optional[int] = None  # defaults to mtry
    do_scale: bool = True

    kind: ClassVar[str] = 'net'

    def __post_init__(self):
        if not 0 < self.alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        if self.df_target is not None and self.df_target < 1:
            raise ValueError("df_target must be at least 1")


@dataclass
class CustomControl:
    """Linear combinations from ``beta_fn(x_node, y_node, w_node)``.

    ``beta_fn`` receives the unscaled node covariates restricted to the
    sampled columns and returns one coefficient per column.
    """
    beta_fn: Callable

    kind: ClassVar[str] = 'custom'
    do_scale: ClassVar[bool] = False

    def __post_init__(self):
        if not callable(self.beta_fn):
            raise ValueError("beta_fn must be callable")


@dataclass
class OobagEval:
    """Out-of-bag evaluation statistic, higher values are better.

    ``fn(y, w, surv) -> float`` is used when ``kind`` is 'custom'.
    """
    kind: str = 'harrell'
    fn: Optional[Callable] = None

    def __post_init__(self):
        if self.kind not in ('harrell', 'custom'):
            raise ValueError(f"kind must be 'harrell' or 'custom', got {self.kind!r}")
        if self.kind == 'custom' and not callable(self.fn):
            raise ValueError("a custom evaluation needs a callable fn")


def make_control(cox_method='efron', cox_eps=1e-9, cox_iter_max=20, cox_pval_max=1.0,
                 do_scale=True, net_alpha=0.5, net_df_target=None,
                 beta_fn=None, beta_fn_type='cph'):
    """Build the linear combination strategy from flat keyword arguments."""
    if beta_fn_type == 'cph':
        return CoxControl(method=cox_method, eps=cox_eps, iter_max=cox_iter_max,
                          pval_max=cox_pval_max, do_scale=do_scale)
    if beta_fn_type == 'net':
        return NetControl(alpha=net_alpha, df_target=net_df_target, do_scale=do_scale)
    if beta_fn_type == 'custom':
        return CustomControl(beta_fn=beta_fn)
    raise ValueError(f"beta_fn_type must be 'cph', 'net' or 'custom', got {beta_fn_type!r}")
