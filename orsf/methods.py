import logging
import pickle

import numpy as np
import pandas as pd
from sklearn.utils import check_array, check_consistent_length
from sksurv.metrics import concordance_index_censored
from sksurv.util import check_y_survival

logger = logging.getLogger(__name__)


def set_difference(x, y):
    """Return the sorted values of ``x`` that are absent from ``y``.

    Used to derive out-of-bag rows as all rows minus the bootstrap rows.

    Args:
        x (array-like): Non-negative integer indices
        y (array-like): Non-negative integer indices to remove

    Returns:
        np.ndarray: Sorted unique indices in ``x`` but not in ``y``

    Raises:
        ValueError: If either input holds non-finite values
    """
    x = np.asarray(x)
    y = np.asarray(y)
    for values in (x, y):
        if values.size and not np.all(np.isfinite(values)):
            raise ValueError("set_difference requires finite index values")
    return np.setdiff1d(x.astype(np.intp), y.astype(np.intp))


def scale_columns(x, w):
    """Weighted centering and scaling of the columns of ``x``.

    Args:
        x (np.ndarray): Matrix with shape (n_samples, n_columns)
        w (np.ndarray): Non-negative weights with shape (n_samples,)

    Returns:
        tuple: (means, scales, x_scaled)

    Note:
        A column without variation gets center 0 and scale 1, so it is
        passed through untouched rather than divided by zero.
    """
    w = np.asarray(w, dtype=np.float64)
    w_sum = w.sum()
    means = w @ x / w_sum
    scales = np.sqrt(w @ (x - means) ** 2 / w_sum)

    constant = ~(scales > 0)
    means[constant] = 0.0
    scales[constant] = 1.0

    return means, scales, (x - means) / scales


def _survival_from_frame(y):
    if y.shape[1] != 2:
        raise ValueError(f"y must have 2 columns (time, status), got {y.shape[1]}")
    return y.iloc[:, 0].to_numpy(dtype=np.float64), y.iloc[:, 1].to_numpy(dtype=np.float64)


def check_survival_data(X, y, weights=None):
    """Validate and convert an observation set.

    Accepts ``y`` as an (n, 2) matrix of (time, status), a two column
    DataFrame in the same order, or a structured array holding the event
    indicator as first field and the time as second field.

    Args:
        X (array-like or pd.DataFrame): Covariates with shape (n_samples, n_features)
        y: Survival outcome in one of the formats above
        weights (array-like, optional): Non-negative observation weights

    Returns:
        tuple: (x, y, w) as float64 arrays, ``y`` with columns (time, status)

    Raises:
        ValueError: On mismatched row counts, empty input, non-finite values,
            non-positive times, status outside {0, 1} or invalid weights
    """
    x = check_array(X, dtype=np.float64, ensure_min_samples=1)

    if isinstance(y, pd.DataFrame):
        time, status = _survival_from_frame(y)
    elif isinstance(y, np.ndarray) and y.dtype.names:
        event, time = check_y_survival(y, allow_all_censored=True)
        status = event.astype(np.float64)
        time = time.astype(np.float64)
    else:
        y_mat = check_array(y, dtype=np.float64)
        if y_mat.shape[1] != 2:
            raise ValueError(f"y must have 2 columns (time, status), got {y_mat.shape[1]}")
        time, status = y_mat[:, 0], y_mat[:, 1]

    if weights is None:
        w = np.ones(x.shape[0])
    else:
        w = check_array(weights, dtype=np.float64, ensure_2d=False)

    check_consistent_length(x, time, w)

    if not np.all(np.isfinite(time)) or np.any(time <= 0):
        raise ValueError("survival times must be finite and positive")
    if not np.all(np.isin(status, (0.0, 1.0))):
        raise ValueError("status values must be 0 (censored) or 1 (event)")
    if np.any(w < 0):
        raise ValueError("weights must be non-negative")
    if not np.any(w > 0):
        raise ValueError("at least one weight must be positive")

    return x, np.column_stack([time, status]), w


def oobag_c_harrell(y, w, surv):
    """Harrell's C-statistic of survival predictions.

    Higher survival means lower risk, so the concordance is computed on
    ``1 - surv``. Weights are accepted for signature compatibility with
    custom evaluation functions and are not used.

    Returns:
        float: Concordance index, NaN when no comparable pair exists
    """
    event = y[:, 1].astype(bool)
    try:
        cindex = concordance_index_censored(event, y[:, 0], 1.0 - np.asarray(surv))[0]
    except ValueError as e:
        # all samples censored
        logger.warning("Harrell's C unavailable: %s", e)
        return np.nan
    return cindex


def storeForest(inputForest, filename):
    with open(filename, 'wb') as fw:
        pickle.dump(inputForest, fw)


def grapForest(filename):
    with open(filename, 'rb') as fr:
        return pickle.load(fr)
