"""Log-rank scoring of cut-points on a linear predictor."""

import numpy as np


def logrank_statistic(y, w, group):
    """Weighted two-sample log-rank chi-square statistic.

    Args:
        y (np.ndarray): Survival data with columns (time, status)
        w (np.ndarray): Observation weights
        group (np.ndarray): Boolean membership of the first group

    Returns:
        float: Log-rank statistic, 0 when its variance is 0
    """
    time, status = y[:, 0], y[:, 1]
    group = np.asarray(group, dtype=np.float64)

    _, inverse = np.unique(time, return_inverse=True)
    n_times = inverse.max() + 1

    deaths = np.bincount(inverse, weights=w * status, minlength=n_times)
    deaths_1 = np.bincount(inverse, weights=w * status * group, minlength=n_times)
    at_risk = np.cumsum(np.bincount(inverse, weights=w, minlength=n_times)[::-1])[::-1]
    at_risk_1 = np.cumsum(np.bincount(inverse, weights=w * group, minlength=n_times)[::-1])[::-1]

    keep = deaths > 0
    d, d1, n, n1 = deaths[keep], deaths_1[keep], at_risk[keep], at_risk_1[keep]

    expected = d * n1 / n
    prop = n1 / n
    with np.errstate(divide='ignore', invalid='ignore'):
        variance = np.where(n > 1, d * prop * (1 - prop) * (n - d) / (n - 1), 0.0)

    total_variance = variance.sum()
    if total_variance <= 0:
        return 0.0
    return float((d1 - expected).sum() ** 2 / total_variance)


def valid_cutpoints(y, w, XB, leaf_min_events, leaf_min_obs):
    """Distinct values of ``XB`` that split a node into admissible children.

    A cut sends ``XB <= cut`` to the left child. It is admissible when both
    children hold at least ``leaf_min_obs`` weighted observations and
    ``leaf_min_events`` weighted events.

    Returns:
        np.ndarray: Admissible cut values, ascending
    """
    order = np.argsort(XB, kind='mergesort')
    xb = XB[order]
    n_left = np.cumsum(w[order])
    e_left = np.cumsum((w * y[:, 1])[order])
    n_right = n_left[-1] - n_left
    e_right = e_left[-1] - e_left

    # a cut can only sit where the linear predictor changes
    boundary = np.append(xb[1:] > xb[:-1], False)
    admissible = (boundary
                  & (n_left >= leaf_min_obs) & (e_left >= leaf_min_events)
                  & (n_right >= leaf_min_obs) & (e_right >= leaf_min_events))
    return xb[admissible]


def lrt_multi(y, w, XB, n_split, leaf_min_events, leaf_min_obs):
    """Find the cut-point of ``XB`` with the largest log-rank statistic.

    At most ``n_split`` admissible cut-points are scored, spread evenly by
    rank over the admissible ones.

    Args:
        y (np.ndarray): Survival data of the node with columns (time, status)
        w (np.ndarray): Observation weights of the node
        XB (np.ndarray): Linear predictor of each observation
        n_split (int): Number of cut-points to assess
        leaf_min_events (float): Minimum weighted events in each child
        leaf_min_obs (float): Minimum weighted observations in each child

    Returns:
        tuple or None: (cutpoint, statistic), or None if no cut is admissible
    """
    cuts = valid_cutpoints(y, w, XB, leaf_min_events, leaf_min_obs)
    if cuts.size == 0:
        return None

    picks = np.unique(np.rint(np.linspace(0, cuts.size - 1, min(n_split, cuts.size))).astype(int))

    best_cut, best_stat = None, -np.inf
    for cut in cuts[picks]:
        stat = logrank_statistic(y, w, XB <= cut)
        if stat > best_stat:
            best_cut, best_stat = cut, stat

    return best_cut, best_stat
