"""Oblique Random Survival Forest Implementation

This module implements the forest orchestrator: an ensemble of oblique
survival trees, each grown on its own bootstrap sample drawn from an
explicit per-tree seed.

Key Methods:
- fit: Grow the trees, optionally evaluating out-of-bag (OOB) predictions
  every few trees and computing OOB permutation importance
- predict: Average the Kaplan-Meier leaf curves of all trees at one or many times
- partial_dependence: Summaries or ICE curves under substituted covariate values

The functional entry points fit_forest, permutation_importance, predict and
partial_dependence mirror the forest methods with flat keyword arguments.
"""

import logging

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.utils import check_array

from orsf import dependence as pdep
from orsf.control import CoxControl, OobagEval, make_control
from orsf.methods import check_survival_data, oobag_c_harrell
from orsf.ObliqueTree import Tree

logger = logging.getLogger(__name__)

MAX_SEED = np.iinfo(np.int32).max


def evaluate_oobag(oobag_eval, y, w, surv):
    """Compute the OOB evaluation statistic selected by ``oobag_eval.kind``."""
    if oobag_eval.kind == 'harrell':
        return oobag_c_harrell(y, w, surv)
    return float(oobag_eval.fn(y, w, surv))


def forest_predict_surv(estimators, x, times):
    """Mean leaf survival over ``estimators`` with shape (n_samples, n_times)."""
    times = np.atleast_1d(np.asarray(times, dtype=np.float64))
    total = np.zeros((x.shape[0], times.size))
    for estimator in estimators:
        total += estimator.predict_surv(x, times)
    return total / len(estimators)


def oobag_accumulate(estimators, x, time, x_cols=None, permute_random=None):
    """Sum and count OOB survival predictions at ``time`` over ``estimators``.

    Args:
        estimators (list): Fitted trees
        x (np.ndarray): Training covariates
        time (float): Prediction time
        x_cols (int, optional): Covariate permuted among each tree's OOB rows
        permute_random (callable, optional): Maps a tree to the random state
            used for its permutation

    Returns:
        tuple: (sums, counts), each with shape (n_samples,)
    """
    sums = np.zeros(x.shape[0])
    counts = np.zeros(x.shape[0])
    for estimator in estimators:
        rows = estimator.rows_oobag
        if rows.size == 0:
            continue
        x_oob = x[rows]
        if x_cols is not None:
            x_oob = x_oob.copy()
            x_oob[:, x_cols] = permute_random(estimator).permutation(x_oob[:, x_cols])
        sums[rows] += estimator.predict_surv(x_oob, time)[:, 0]
        counts[rows] += 1
    return sums, counts


def permutation_importance(X, Y, forest, baseline_eval_stat, eval_time,
                           oob_eval_fn=None, oob_eval_fn_type='harrell', weights=None):
    """OOB permutation importance of every covariate.

    For each covariate, its values are permuted among the OOB rows of each
    tree (the permutation is seeded by the tree's seed), the permuted OOB
    predictions are aggregated over the forest and evaluated. Importance is
    the drop of the evaluation statistic from ``baseline_eval_stat``.

    Args:
        X: Training covariates
        Y: Training survival data
        forest (Forest): Fitted forest
        baseline_eval_stat (float): Statistic of the unpermuted OOB predictions
        eval_time (float): Prediction time of the OOB survival
        oob_eval_fn (callable, optional): Custom ``fn(y, w, surv)``
        oob_eval_fn_type (str): 'harrell' or 'custom'
        weights (array-like, optional): Observation weights passed to the statistic

    Returns:
        np.ndarray: One importance value per covariate
    """
    forest._check_fitted()
    x, y, w = check_survival_data(X, Y, weights)
    oobag_eval = OobagEval(kind=oob_eval_fn_type, fn=oob_eval_fn)

    states = {id(estimator): np.random.RandomState(estimator.random_state)
              for estimator in forest.estimators}

    importance = np.zeros(x.shape[1])
    for col in range(x.shape[1]):
        sums, counts = oobag_accumulate(forest.estimators, x, eval_time, x_cols=col,
                                        permute_random=lambda tree: states[id(tree)])
        seen = counts > 0
        if not seen.any():
            raise ValueError("no tree has out-of-bag observations")
        stat = evaluate_oobag(oobag_eval, y[seen], w[seen], sums[seen] / counts[seen])
        importance[col] = baseline_eval_stat - stat
        logger.debug("importance of column %d: %g", col, importance[col])
    return importance


class Forest:
    """Oblique Random Survival Forest.

    Parameters:
        n_estimators (int, default=500): Number of trees in the forest
        n_split (int, default=5): Number of cut-points assessed per node
        mtry (int, optional): Covariates sampled per node, ceil(sqrt(p)) by default
        leaf_min_events (float, default=1): Minimum weighted events in a leaf
        leaf_min_obs (float, default=5): Minimum weighted observations in a leaf
        split_min_events (float, default=5): Minimum weighted events to split
        split_min_obs (float, default=10): Minimum weighted observations to split
        max_depth (int, optional): Maximum tree depth. None for unlimited depth
        max_retry (int, default=3): Column resamples after a failed linear combination
        control (optional): CoxControl, NetControl or CustomControl
        oobag_pred (bool, default=True): Whether to compute OOB predictions
        oobag_time (float, optional): OOB prediction time, median observed time by default
        oobag_eval_every (int, optional): Evaluate OOB predictions every this
                                          many trees, only after the last tree by default
        oobag_eval (OobagEval, optional): OOB evaluation statistic, Harrell's C by default
        importance (bool, default=False): Whether to compute permutation importance
        tree_seeds (sequence of int, optional): Seed of each tree
        random_state (int, default=1234): Draws the tree seeds when none are given
        n_jobs (int, optional): Trees grown in parallel with joblib when not 1/None
        verbose (bool, default=False): Log OOB evaluation checkpoints at INFO level

    Attributes:
        estimators (list): Fitted Tree objects in tree index order
        tree_seeds_ (np.ndarray): Seed used by each tree
        feature_names_ (list): Covariate names
        oobag_pred_ (np.ndarray): OOB survival at ``oobag_time_``, NaN for rows never OOB
        eval_oobag_ (pd.DataFrame): OOB statistic after each checkpoint
        importance_ (pd.Series): Permutation importance, None unless requested
    """

    def __init__(self, n_estimators=500, n_split=5, mtry=None,
                 leaf_min_events=1, leaf_min_obs=5,
                 split_min_events=5, split_min_obs=10,
                 max_depth=None, max_retry=3, control=None,
                 oobag_pred=True, oobag_time=None, oobag_eval_every=None,
                 oobag_eval=None, importance=False,
                 tree_seeds=None, random_state=1234, n_jobs=None, verbose=False):
        self.n_estimators = n_estimators
        self.n_split = n_split
        self.mtry = mtry
        self.leaf_min_events = leaf_min_events
        self.leaf_min_obs = leaf_min_obs
        self.split_min_events = split_min_events
        self.split_min_obs = split_min_obs
        self.max_depth = max_depth
        self.max_retry = max_retry
        self.control = control if control is not None else CoxControl()
        self.oobag_pred = oobag_pred
        self.oobag_time = oobag_time
        self.oobag_eval_every = oobag_eval_every
        self.oobag_eval = oobag_eval if oobag_eval is not None else OobagEval()
        self.importance = importance
        self.tree_seeds = tree_seeds
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.verbose = verbose

        self.estimators = None
        self.importance_ = None
        self.oobag_pred_ = None
        self.eval_oobag_ = None

    def _check_params(self):
        if self.n_estimators < 1:
            raise ValueError("n_estimators must be at least 1")
        if self.n_split < 1:
            raise ValueError("n_split must be at least 1")
        if self.mtry is not None and self.mtry < 1:
            raise ValueError("mtry must be at least 1")
        if self.max_retry < 0:
            raise ValueError("max_retry must be non-negative")
        if self.oobag_eval_every is not None and self.oobag_eval_every < 1:
            raise ValueError("oobag_eval_every must be at least 1")
        if self.tree_seeds is not None and len(self.tree_seeds) < self.n_estimators:
            raise ValueError(f"{len(self.tree_seeds)} tree seeds for {self.n_estimators} trees")

    def _check_fitted(self):
        if not self.estimators:
            raise ValueError("This forest has not been fitted yet. Please call fit() first.")

    def fit_one_tree(self, x, y, w, tree_seed):
        """Grow one tree on the bootstrap sample drawn from ``tree_seed``."""
        estimator = Tree(n_split=self.n_split,
                         mtry=self.mtry,
                         leaf_min_events=self.leaf_min_events,
                         leaf_min_obs=self.leaf_min_obs,
                         split_min_events=self.split_min_events,
                         split_min_obs=self.split_min_obs,
                         max_depth=self.max_depth,
                         max_retry=self.max_retry,
                         control=self.control,
                         random_state=int(tree_seed),
                         )
        return estimator.fit(x, y, w)

    def fit(self, X, y, weights=None):
        """Grow the forest.

        Args:
            X (pd.DataFrame or array-like): Covariates with shape (n_samples, n_features)
            y: Survival data, an (n, 2) matrix of (time, status) or a
               structured array with event and time fields
            weights (array-like, optional): Non-negative observation weights

        Returns:
            Forest: Self for method chaining
        """
        self._check_params()
        x, y_mat, w = check_survival_data(X, y, weights)

        self.n_obs_, self.n_features_in_ = x.shape
        self.named_features_ = isinstance(X, pd.DataFrame)
        self.feature_names_ = (list(map(str, X.columns)) if self.named_features_
                               else [f"x{i}" for i in range(self.n_features_in_)])
        self.oobag_time_ = (float(self.oobag_time) if self.oobag_time is not None
                            else float(np.median(y_mat[:, 0])))

        if self.tree_seeds is not None:
            self.tree_seeds_ = np.asarray(self.tree_seeds[:self.n_estimators], dtype=np.int64)
        else:
            self.tree_seeds_ = np.random.RandomState(self.random_state).randint(
                0, MAX_SEED, size=self.n_estimators)

        if self.n_jobs in (None, 1):
            self.estimators = [self.fit_one_tree(x, y_mat, w, seed) for seed in self.tree_seeds_]
        else:
            # joblib keeps the input order, so tree indices do not depend on scheduling
            self.estimators = Parallel(n_jobs=self.n_jobs)(
                delayed(self.fit_one_tree)(x, y_mat, w, seed) for seed in self.tree_seeds_)

        self.importance_ = None
        self.oobag_pred_ = None
        self.eval_oobag_ = None
        if self.oobag_pred or self.importance:
            last_stat = self._evaluate_oobag(x, y_mat, w)
            if self.importance:
                values = permutation_importance(x, y_mat, self, last_stat, self.oobag_time_,
                                                oob_eval_fn=self.oobag_eval.fn,
                                                oob_eval_fn_type=self.oobag_eval.kind,
                                                weights=w)
                self.importance_ = pd.Series(values, index=self.feature_names_, name='importance')
        return self

    def _evaluate_oobag(self, x, y, w):
        """Accumulate OOB predictions tree by tree and record checkpoints."""
        every = self.oobag_eval_every or self.n_estimators
        sums = np.zeros(x.shape[0])
        counts = np.zeros(x.shape[0])
        records = []
        for i, estimator in enumerate(self.estimators, start=1):
            tree_sums, tree_counts = oobag_accumulate([estimator], x, self.oobag_time_)
            sums += tree_sums
            counts += tree_counts
            if i % every == 0 or i == len(self.estimators):
                seen = counts > 0
                stat = (evaluate_oobag(self.oobag_eval, y[seen], w[seen], sums[seen] / counts[seen])
                        if seen.any() else np.nan)
                records.append((i, stat))
                if self.verbose:
                    logger.info("OOB statistic after %d trees: %.4f", i, stat)

        with np.errstate(invalid='ignore', divide='ignore'):
            self.oobag_pred_ = np.where(counts > 0, sums / counts, np.nan)
        self.eval_oobag_ = pd.DataFrame(records, columns=['n_trees', 'stat'])
        return records[-1][1]

    def _check_x(self, X):
        """Covariates as a float array in training column order.

        A DataFrame passed to a forest fit on a DataFrame is matched to the
        training columns by name.
        """
        self._check_fitted()
        if isinstance(X, pd.DataFrame) and self.named_features_:
            names = list(map(str, X.columns))
            missing = [name for name in self.feature_names_ if name not in names]
            if missing:
                raise ValueError(f"X is missing features seen in fit: {missing}")
            X = X.set_axis(names, axis=1)[self.feature_names_]
        x = check_array(X, dtype=np.float64)
        if x.shape[1] != self.n_features_in_:
            raise ValueError(f"X has {x.shape[1]} features, the forest was fit with {self.n_features_in_}")
        return x

    def predict(self, X, times=None, return_risk=False):
        """Ensemble survival (or risk) predictions.

        Args:
            X (pd.DataFrame or array-like): Covariates
            times (float or sequence, optional): Prediction time(s), ``oobag_time_`` by default
            return_risk (bool, default=False): Return 1 - survival

        Returns:
            np.ndarray: Shape (n_samples, n_times), one column for a scalar time
        """
        x = self._check_x(X)
        if times is None:
            times = self.oobag_time_
        surv = forest_predict_surv(self.estimators, x, times)
        return 1.0 - surv if return_risk else surv

    def score(self, X, y):
        """Harrell's C of the predicted risk at ``oobag_time_``."""
        x = self._check_x(X)
        _, y_mat, w = check_survival_data(x, y)
        return oobag_c_harrell(y_mat, w, self.predict(x)[:, 0])

    def partial_dependence(self, X, columns, values, probs=(0.25, 0.5, 0.75), time=None,
                           return_risk=False, oob=False, ice=False):
        """Partial dependence of predictions on one or more covariates.

        Args:
            X (pd.DataFrame or array-like): Data whose rows are modified; with
                ``oob=True`` it must be the training data
            columns (sequence): Covariate names or indices
            values (array-like): Substituted values, one row per value set
                (a flat sequence is accepted for a single covariate)
            probs (sequence): Quantile probabilities of the summary
            time (float, optional): Prediction time, ``oobag_time_`` by default
            return_risk (bool, default=False): Summarise 1 - survival
            oob (bool, default=False): Use each tree's OOB rows only
            ice (bool, default=False): Return individual conditional expectations

        Returns:
            pd.DataFrame: Summary or ICE table
        """
        x = self._check_x(X)
        x_cols = [self.feature_names_.index(c) if isinstance(c, str) else int(c) for c in columns]
        x_vals = np.asarray(values, dtype=np.float64)
        if x_vals.ndim == 1:
            x_vals = x_vals.reshape(-1, 1) if len(x_cols) == 1 else x_vals.reshape(1, -1)
        if time is None:
            time = self.oobag_time_

        if oob and x.shape[0] != self.n_obs_:
            raise ValueError("out-of-bag partial dependence needs the training data")

        func = {(False, False): pdep.pd_new_smry,
                (True, False): pdep.pd_oob_smry,
                (False, True): pdep.pd_new_ice,
                (True, True): pdep.pd_oob_ice}[(oob, ice)]
        table = func(self, x, x_cols, x_vals, probs, time, return_risk)
        names = [self.feature_names_[c] for c in x_cols]
        return table.rename(columns=dict(zip(pdep.value_columns(len(x_cols)), names)))


def fit_forest(X, Y, n_tree=500, n_split=5, mtry=None,
               leaf_min_events=1, leaf_min_obs=5, split_min_events=5, split_min_obs=10,
               cox_method='efron', cox_eps=1e-9, cox_iter_max=20, cox_pval_max=1.0,
               do_scale=True, net_alpha=0.5, net_df_target=None,
               compute_oob_pred=True, oob_eval_time=None, oob_eval_every=None,
               compute_importance=False, tree_seeds=None, max_retry=3,
               beta_fn=None, beta_fn_type='cph', oob_eval_fn=None, oob_eval_fn_type='harrell',
               weights=None, n_jobs=None):
    """Fit a Forest from flat keyword arguments.

    ``beta_fn_type`` is one of 'cph', 'net' or 'custom' (then ``beta_fn`` is
    used); ``oob_eval_fn_type`` is 'harrell' or 'custom' (then
    ``oob_eval_fn`` is used).

    Returns:
        Forest: The fitted forest
    """
    control = make_control(cox_method=cox_method, cox_eps=cox_eps, cox_iter_max=cox_iter_max,
                           cox_pval_max=cox_pval_max, do_scale=do_scale,
                           net_alpha=net_alpha, net_df_target=net_df_target,
                           beta_fn=beta_fn, beta_fn_type=beta_fn_type)
    forest = Forest(n_estimators=n_tree, n_split=n_split, mtry=mtry,
                    leaf_min_events=leaf_min_events, leaf_min_obs=leaf_min_obs,
                    split_min_events=split_min_events, split_min_obs=split_min_obs,
                    max_retry=max_retry, control=control,
                    oobag_pred=compute_oob_pred, oobag_time=oob_eval_time,
                    oobag_eval_every=oob_eval_every,
                    oobag_eval=OobagEval(kind=oob_eval_fn_type, fn=oob_eval_fn),
                    importance=compute_importance, tree_seeds=tree_seeds, n_jobs=n_jobs)
    return forest.fit(X, Y, weights)


def predict(forest, X_new, times, return_risk=False):
    """Ensemble predictions, see Forest.predict."""
    return forest.predict(X_new, times=times, return_risk=return_risk)


def partial_dependence(forest, X_new, target_columns, target_values, quantile_probs=(0.25, 0.5, 0.75),
                       time=None, return_risk=False, oob=False, ice=False):
    """Partial dependence summary or ICE table, see Forest.partial_dependence."""
    return forest.partial_dependence(X_new, target_columns, target_values, probs=quantile_probs,
                                     time=time, return_risk=return_risk, oob=oob, ice=ice)
