import numpy as np
import pytest
from sksurv.compare import compare_survival
from sksurv.util import Surv

from orsf.logrank import logrank_statistic, lrt_multi, valid_cutpoints


def separated_groups():
    """Ten early events with a low predictor, thirty late events with a high one."""
    time = np.arange(1, 41, dtype=float)
    y = np.column_stack([time, np.ones(40)])
    XB = np.concatenate([np.linspace(0, 1, 10), np.linspace(2, 3, 30)])
    return y, XB


class TestLogrankStatistic:
    """Tests for the weighted log-rank statistic."""

    def test_matches_compare_survival(self, cox_matrices):
        x, y = cox_matrices
        group = x[:, 0] > 0
        expected, _ = compare_survival(Surv.from_arrays(event=y[:, 1].astype(bool), time=y[:, 0]),
                                       group.astype(int))
        assert logrank_statistic(y, np.ones(len(y)), group) == pytest.approx(expected, rel=1e-6)

    def test_weights_match_replication(self, cox_matrices):
        x, y = cox_matrices
        group = x[:, 1] > 0.3
        w = np.tile([1.0, 2.0], len(y) // 2 + 1)[:len(y)]
        counts = w.astype(int)

        weighted = logrank_statistic(y, w, group)
        replicated = logrank_statistic(np.repeat(y, counts, axis=0), np.ones(counts.sum()),
                                       np.repeat(group, counts))
        assert weighted == pytest.approx(replicated, rel=1e-10)

    def test_single_group_is_zero(self, cox_matrices):
        _, y = cox_matrices
        assert logrank_statistic(y, np.ones(len(y)), np.ones(len(y), dtype=bool)) == 0.0


class TestCutpoints:
    """Tests for cut-point admissibility and search."""

    def test_admissible_cuts_respect_leaf_minimums(self, cox_matrices):
        x, y = cox_matrices
        w = np.ones(len(y))
        XB = x @ np.array([1.0, -0.5, 0.2])
        cuts = valid_cutpoints(y, w, XB, leaf_min_events=8, leaf_min_obs=20)

        assert cuts.size > 0
        for cut in cuts:
            left = XB <= cut
            assert left.sum() >= 20 and (~left).sum() >= 20
            assert y[left, 1].sum() >= 8 and y[~left, 1].sum() >= 8

    def test_ties_in_predictor_give_one_cut(self):
        y = np.column_stack([np.arange(1, 7, dtype=float), np.ones(6)])
        XB = np.array([0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
        cuts = valid_cutpoints(y, np.ones(6), XB, leaf_min_events=1, leaf_min_obs=1)
        assert cuts.tolist() == [0.0]

    def test_selects_separating_cut(self):
        y, XB = separated_groups()
        cut, stat = lrt_multi(y, np.ones(40), XB, n_split=40, leaf_min_events=1, leaf_min_obs=10)
        assert cut == pytest.approx(1.0)
        assert stat > 3.84

    def test_best_of_assessed_cuts(self, cox_matrices):
        x, y = cox_matrices
        w = np.ones(len(y))
        XB = x[:, 0]
        cut, stat = lrt_multi(y, w, XB, n_split=500, leaf_min_events=1, leaf_min_obs=5)

        stats = [logrank_statistic(y, w, XB <= c)
                 for c in valid_cutpoints(y, w, XB, 1, 5)]
        assert stat == pytest.approx(max(stats))
        assert logrank_statistic(y, w, XB <= cut) == pytest.approx(stat)

    def test_no_admissible_cut_returns_none(self):
        y, XB = separated_groups()
        assert lrt_multi(y, np.ones(40), XB, n_split=5, leaf_min_events=1, leaf_min_obs=21) is None
