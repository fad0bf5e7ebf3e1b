"""Partial dependence and individual conditional expectation (ICE).

For each row of ``x_vals`` the covariates ``x_cols`` of every observation
are replaced by that row's values and the forest predicts survival (or
risk) at ``time``. The ``new`` variants use all trees on the supplied data,
the ``oob`` variants let each tree predict only its out-of-bag rows of the
training data and average by the number of trees that saw each row.

Summary tables hold the substituted values, the mean prediction and one
column per quantile probability. ICE tables hold one row per value set and
observation.
"""

import numpy as np
import pandas as pd


def value_columns(n_cols):
    """Placeholder names of the substituted value columns."""
    return [f"value_{i}" for i in range(n_cols)]


def quantile_columns(probs):
    return [f"q{p:g}" for p in probs]


def _substitute(x, x_cols, values):
    x_sub = x.copy()
    x_sub[:, x_cols] = values
    return x_sub


def _predict_new(forest, x, time):
    total = np.zeros(x.shape[0])
    for estimator in forest.estimators:
        total += estimator.predict_surv(x, time)[:, 0]
    return total / len(forest.estimators)


def _predict_oob(forest, x, time):
    sums = np.zeros(x.shape[0])
    counts = np.zeros(x.shape[0])
    for estimator in forest.estimators:
        rows = estimator.rows_oobag
        if rows.size == 0:
            continue
        sums[rows] += estimator.predict_surv(x[rows], time)[:, 0]
        counts[rows] += 1
    seen = counts > 0
    return np.flatnonzero(seen), sums[seen] / counts[seen]


def _pd_predictions(forest, x, x_cols, x_vals, time, return_risk, oob):
    """Yield (value_row, observation ids, predictions) for each value set."""
    for values in x_vals:
        x_sub = _substitute(x, x_cols, values)
        if oob:
            rows, pred = _predict_oob(forest, x_sub, time)
        else:
            rows, pred = np.arange(x.shape[0]), _predict_new(forest, x_sub, time)
        if return_risk:
            pred = 1.0 - pred
        yield values, rows, pred


def _summary(forest, x, x_cols, x_vals, probs, time, return_risk, oob):
    records = []
    for values, _, pred in _pd_predictions(forest, x, x_cols, x_vals, time, return_risk, oob):
        if pred.size == 0:
            stats = np.full(1 + len(probs), np.nan)
        else:
            stats = np.concatenate([[pred.mean()], np.quantile(pred, probs)])
        records.append(np.concatenate([values, stats]))
    columns = value_columns(len(x_cols)) + ['mean'] + quantile_columns(probs)
    return pd.DataFrame(records, columns=columns)


def _ice(forest, x, x_cols, x_vals, time, return_risk, oob):
    frames = []
    for id_variable, (values, rows, pred) in enumerate(
            _pd_predictions(forest, x, x_cols, x_vals, time, return_risk, oob)):
        frame = pd.DataFrame({'id_variable': id_variable, 'id_row': rows})
        for name, value in zip(value_columns(len(x_cols)), values):
            frame[name] = value
        frame['pred'] = pred
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def pd_new_smry(forest, x, x_cols, x_vals, probs, time, return_risk=False):
    """Partial dependence summary over the rows of ``x``."""
    return _summary(forest, x, x_cols, x_vals, probs, time, return_risk, oob=False)


def pd_oob_smry(forest, x, x_cols, x_vals, probs, time, return_risk=False):
    """Partial dependence summary over out-of-bag predictions of the training data."""
    return _summary(forest, x, x_cols, x_vals, probs, time, return_risk, oob=True)


def pd_new_ice(forest, x, x_cols, x_vals, probs, time, return_risk=False):
    """ICE curves of the rows of ``x``. ``probs`` is unused."""
    return _ice(forest, x, x_cols, x_vals, time, return_risk, oob=False)


def pd_oob_ice(forest, x, x_cols, x_vals, probs, time, return_risk=False):
    """ICE curves from out-of-bag predictions of the training data. ``probs`` is unused."""
    return _ice(forest, x, x_cols, x_vals, time, return_risk, oob=True)
