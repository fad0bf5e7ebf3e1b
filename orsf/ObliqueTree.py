"""Oblique Survival Tree Implementation

This module implements the single tree component of the oblique random
survival forest. Every split compares a linear combination of a random
subset of covariates to a cut-point; the combination comes from a Cox
regression fit on the node and the cut-point maximises a log-rank statistic.

Key Components:
- Node: Arena element, either an internal split or a Kaplan-Meier leaf
- Tree: Bootstrap sampling, node growth with bounded retries, leaf assignment

Nodes are kept in a flat list (the arena). A parent always precedes its
children and the two children of a node are stored next to each other, so
an internal node only records the arena index of its left child.
"""

import logging
from collections import deque

import numpy as np

from orsf.control import CoxControl
from orsf.kaplan import leaf_kaplan, step_lookup
from orsf.logrank import lrt_multi
from orsf.methods import scale_columns, set_difference
from orsf.newtraph import NotConvergedError, fit_net, newtraph_cph

logger = logging.getLogger(__name__)


class Node:
    """Oblique Survival Tree Node.

    Attributes:
        index (int): Position of the node in the tree arena
        depth (int): Depth of this node in the tree
        n_obs (float): Weighted number of in-bag observations in the node
        n_events (float): Weighted number of in-bag events in the node
        col_indices (np.ndarray): Covariates of the linear combination (internal nodes)
        coef (np.ndarray): Coefficients on the original covariate scale (internal nodes)
        cutpoint (float): Observations with ``x @ coef <= cutpoint`` go left (internal nodes)
        left (int): Arena index of the left child, the right child follows it
        statistic (float): Log-rank statistic of the chosen split (internal nodes)
        leaf_times (np.ndarray): Kaplan-Meier event times (leaf nodes)
        leaf_surv (np.ndarray): Kaplan-Meier survival at ``leaf_times`` (leaf nodes)
    """

    def __init__(self, index, depth, n_obs, n_events):
        self.index = index
        self.depth = depth
        self.n_obs = n_obs
        self.n_events = n_events

        self.col_indices = None
        self.coef = None
        self.cutpoint = None
        self.left = None
        self.statistic = None

        self.leaf_times = None
        self.leaf_surv = None

    @property
    def leaf(self):
        return self.coef is None

    @property
    def right(self):
        return None if self.left is None else self.left + 1

    def _predict(self, y, w):
        """Turn this node into a leaf holding the Kaplan-Meier curve of ``y``."""
        self.leaf_times, self.leaf_surv = leaf_kaplan(y, w)
        self.col_indices = None
        self.coef = None
        self.cutpoint = None
        self.left = None


def bootstrap_data(n_samples, tree_random):
    """Bootstrap counts for one tree.

    Args:
        n_samples (int): Number of observations
        tree_random (np.random.RandomState): Random state of the tree

    Returns:
        np.ndarray: How many times each observation was drawn, with
        replacement, in a sample of size ``n_samples``
    """
    draws = tree_random.choice(n_samples, n_samples, replace=True)
    return np.bincount(draws, minlength=n_samples).astype(np.float64)


class Tree:
    """Oblique Survival Tree.

    Parameters:
        n_split (int, default=5): Number of cut-points assessed per node
        mtry (int, optional): Number of covariates sampled per node,
                              defaults to ceil(sqrt(n_features))
        leaf_min_events (float, default=1): Minimum weighted events in a leaf
        leaf_min_obs (float, default=5): Minimum weighted observations in a leaf
        split_min_events (float, default=5): Minimum weighted events to split a node
        split_min_obs (float, default=10): Minimum weighted observations to split a node
        max_depth (int, optional): Maximum tree depth. None for unlimited depth
        max_retry (int, default=3): Column resamples allowed after a failed
                                    linear combination before forcing a leaf
        control (CoxControl, NetControl or CustomControl, optional):
                 How linear combinations are found, defaults to CoxControl()
        bootstrap (bool, default=True): Whether to fit on a bootstrap sample
        random_state (int, default=1234): Seed of the bootstrap draw and the
                                          column sampling

    Attributes:
        nodes (list): Node arena, root first
        rows_inbag (np.ndarray): Observations with positive weight in the fit
        rows_oobag (np.ndarray): Out-of-bag observations
        weights_ (np.ndarray): Bootstrap counts times caller weights
        n_features_ (int): Number of covariates in training data
    """

    def __init__(self, n_split=5,
                 mtry=None,
                 leaf_min_events=1,
                 leaf_min_obs=5,
                 split_min_events=5,
                 split_min_obs=10,
                 max_depth=None,
                 max_retry=3,
                 control=None,
                 bootstrap=True,
                 random_state=1234, ):
        self.n_split = n_split
        self.mtry = mtry
        self.leaf_min_events = leaf_min_events
        self.leaf_min_obs = leaf_min_obs
        self.split_min_events = split_min_events
        self.split_min_obs = split_min_obs
        self.max_depth = max_depth
        self.max_retry = max_retry
        self.control = control if control is not None else CoxControl()
        self.bootstrap = bootstrap
        self.random_state = random_state

        self.n_features_ = None
        self.nodes = []
        self.rows_inbag = None
        self.rows_oobag = None
        self.weights_ = None

    def fit(self, x, y, w=None):
        """Grow the tree.

        Args:
            x (np.ndarray): Covariates with shape (n_samples, n_features)
            y (np.ndarray): Survival data with columns (time, status)
            w (np.ndarray, optional): Caller weights, multiplied into the
                                      bootstrap counts

        Returns:
            Tree: Self for method chaining
        """
        n_samples, self.n_features_ = x.shape
        tree_random = np.random.RandomState(self.random_state)

        weights = np.ones(n_samples) if w is None else np.asarray(w, dtype=np.float64)
        if self.bootstrap:
            weights = weights * bootstrap_data(n_samples, tree_random)

        self.weights_ = weights
        self.rows_inbag = np.flatnonzero(weights > 0)
        self.rows_oobag = set_difference(np.arange(n_samples), self.rows_inbag)

        mtry = self.mtry if self.mtry is not None else int(np.ceil(np.sqrt(self.n_features_)))
        self._mtry = min(mtry, self.n_features_)

        self.nodes = []
        self._grow_tree(x, y, weights, tree_random)
        return self

    def _new_node(self, depth, y, w):
        node = Node(index=len(self.nodes), depth=depth,
                    n_obs=w.sum(), n_events=(w * y[:, 1]).sum())
        self.nodes.append(node)
        return node

    def _grow_tree(self, x, y, weights, tree_random):
        """Grow nodes from a work list in arena order.

        Stopping Criteria:
            - Maximum depth reached
            - Too few weighted observations or events to split
            - No linear combination after ``max_retry`` retries
            - No admissible cut-point on the linear combination
        """
        rows = self.rows_inbag
        root = self._new_node(0, y[rows], weights[rows])
        to_grow = deque([(root, rows)])

        while to_grow:
            node, rows = to_grow.popleft()
            x_node, y_node, w_node = x[rows], y[rows], weights[rows]

            if (node.depth == self.max_depth
                    or node.n_obs < self.split_min_obs
                    or node.n_events < self.split_min_events):
                node._predict(y_node, w_node)
                continue

            split = self._best_split(x_node, y_node, w_node, tree_random)
            if split is None:
                node._predict(y_node, w_node)
                continue

            cols, coef, cutpoint, statistic, go_left = split
            node.col_indices = cols
            node.coef = coef
            node.cutpoint = cutpoint
            node.statistic = statistic

            rows_left, rows_right = rows[go_left], rows[~go_left]
            left = self._new_node(node.depth + 1, y[rows_left], weights[rows_left])
            right = self._new_node(node.depth + 1, y[rows_right], weights[rows_right])
            node.left = left.index
            to_grow.append((left, rows_left))
            to_grow.append((right, rows_right))

    def _choose_features(self, x_node, tree_random):
        """Sample ``mtry`` covariates among those that vary in the node."""
        varying = np.flatnonzero(np.ptp(x_node, axis=0) > 0)
        n_cols = min(self._mtry, varying.size)
        if n_cols == 0:
            return None
        return np.sort(tree_random.choice(varying, n_cols, replace=False))

    def _fit_lincomb(self, x_node, y_node, w_node):
        """Coefficients of the linear combination on the original scale.

        Raises:
            NotConvergedError: If the configured strategy fails
        """
        control = self.control
        if control.do_scale:
            _, scales, x_fit = scale_columns(x_node, w_node)
        else:
            scales, x_fit = np.ones(x_node.shape[1]), x_node

        if control.kind == 'cph':
            beta = newtraph_cph(x_fit, y_node, w_node,
                                method=control.method,
                                eps=control.eps,
                                iter_max=control.iter_max,
                                pval_max=control.pval_max).coef
        elif control.kind == 'net':
            df_target = control.df_target if control.df_target is not None else self._mtry
            beta = fit_net(x_fit, y_node, w_node, alpha=control.alpha, df_target=df_target)
        else:
            beta = np.asarray(control.beta_fn(x_fit, y_node, w_node), dtype=np.float64).ravel()
            if beta.shape != (x_node.shape[1],):
                raise ValueError(f"beta_fn returned {beta.size} coefficients "
                                 f"for {x_node.shape[1]} columns")
            if not np.all(np.isfinite(beta)) or not np.any(beta != 0):
                raise NotConvergedError("beta_fn returned no usable coefficients")

        return beta / scales

    def _best_split(self, x_node, y_node, w_node, tree_random):
        """Find the oblique split of a node.

        Samples covariates, fits the linear combination (resampling on
        failure at most ``max_retry`` times) and searches the cut-point.

        Returns:
            tuple or None: (col_indices, coef, cutpoint, statistic, go_left),
            None when the node must become a leaf
        """
        for attempt in range(self.max_retry + 1):
            cols = self._choose_features(x_node, tree_random)
            if cols is None:
                return None
            try:
                coef = self._fit_lincomb(x_node[:, cols], y_node, w_node)
            except NotConvergedError as e:
                logger.debug("retry %d of %d: %s", attempt + 1, self.max_retry, e)
                continue

            XB = x_node[:, cols] @ coef
            found = lrt_multi(y_node, w_node, XB, self.n_split,
                              self.leaf_min_events, self.leaf_min_obs)
            if found is None:
                return None
            cutpoint, statistic = found
            return cols, coef, cutpoint, statistic, XB <= cutpoint

        logger.debug("no linear combination after %d retries, forcing a leaf", self.max_retry)
        return None

    def apply(self, x):
        """Arena index of the leaf each row of ``x`` falls into."""
        x = np.asarray(x, dtype=np.float64)
        position = np.zeros(x.shape[0], dtype=np.intp)
        # parents precede children, so one pass in arena order routes every row
        for node in self.nodes:
            if node.leaf:
                continue
            here = np.flatnonzero(position == node.index)
            if here.size == 0:
                continue
            go_left = x[np.ix_(here, node.col_indices)] @ node.coef <= node.cutpoint
            position[here] = np.where(go_left, node.left, node.right)
        return position

    def predict_surv(self, x, times):
        """Leaf survival of each row of ``x`` at each of ``times``.

        Returns:
            np.ndarray: Shape (n_samples, n_times)
        """
        times = np.atleast_1d(np.asarray(times, dtype=np.float64))
        leaves = self.apply(x)
        out = np.empty((leaves.size, times.size))
        for leaf in np.unique(leaves):
            node = self.nodes[leaf]
            out[leaves == leaf] = step_lookup(node.leaf_times, node.leaf_surv, times)
        return out
