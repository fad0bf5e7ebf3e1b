"""Kaplan-Meier estimation for terminal nodes.

Leaves of an oblique survival tree store the weighted Kaplan-Meier curve
of their in-bag members as two aligned arrays: the distinct event times in
ascending order and the survival probability right after each of them.
Survival is 1 before the first stored time.
"""

import warnings

import numpy as np
from lifelines import KaplanMeierFitter
from lifelines.exceptions import StatisticalWarning


def leaf_kaplan(y, w):
    """Fit the weighted Kaplan-Meier curve of a leaf.

    Args:
        y (np.ndarray): Survival data with columns (time, status)
        w (np.ndarray): Observation weights (bootstrap counts times caller weights)

    Returns:
        tuple: (times, surv)
            - times: distinct event times, ascending
            - surv: survival probability at each time, non-increasing in [0, 1]

    Note:
        Tied event times are aggregated before the multiplicative update.
        A leaf without events keeps a flat curve at 1 up to its last time.
    """
    kmf = KaplanMeierFitter()
    with warnings.catch_warnings():
        # caller weights may be fractional
        warnings.simplefilter("ignore", StatisticalWarning)
        kmf.fit(y[:, 0], event_observed=y[:, 1], weights=w)

    table = kmf.event_table
    times = table.index[table['observed'] > 0].to_numpy(dtype=np.float64)
    if times.size == 0:
        return np.array([y[:, 0].max()]), np.ones(1)

    surv = kmf.survival_function_.loc[times].iloc[:, 0].to_numpy(dtype=np.float64)
    # guard against round-off in the product-limit accumulation
    surv = np.minimum.accumulate(np.clip(surv, 0.0, 1.0))
    return times, surv


def step_lookup(times, values, query):
    """Evaluate a right-continuous step function.

    Args:
        times (np.ndarray): Ascending jump times
        values (np.ndarray): Value from each jump onward
        query (float or np.ndarray): Times to evaluate

    Returns:
        np.ndarray: 1 before the first jump, otherwise the last value at or
        before each query time
    """
    idx = np.searchsorted(times, query, side='right') - 1
    out = np.where(idx >= 0, values[np.maximum(idx, 0)], 1.0)
    return out
