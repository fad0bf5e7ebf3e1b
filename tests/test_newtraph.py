import numpy as np
import pandas as pd
import pytest
from lifelines import CoxPHFitter

from orsf.data_generation import SynthConfig, generate_cox_data, survival_matrix
from orsf.newtraph import NotConvergedError, fit_net, newtraph_cph


@pytest.fixture(scope="module")
def large_data():
    X, y = generate_cox_data(SynthConfig(n=1500, beta=(0.8, -0.5), seed=99))
    return X.to_numpy(), survival_matrix(y)


class TestNewtraphCph:
    """Tests for the Newton-Raphson Cox solver."""

    def test_recovers_generating_coefficients(self, large_data):
        x, y = large_data
        fit = newtraph_cph(x, y, np.ones(len(y)))
        np.testing.assert_allclose(fit.coef, [0.8, -0.5], atol=0.15)
        assert np.all(fit.pvalues < 1e-6)
        assert 1 <= fit.n_iter <= 20

    def test_matches_lifelines_efron(self, cox_matrices):
        x, y = cox_matrices
        df = pd.DataFrame(x, columns=['a', 'b', 'c'])
        df['time'], df['status'] = y[:, 0], y[:, 1]
        cph = CoxPHFitter().fit(df, duration_col='time', event_col='status')

        fit = newtraph_cph(x, y, np.ones(len(y)), method='efron')
        np.testing.assert_allclose(fit.coef, cph.params_[['a', 'b', 'c']].to_numpy(), atol=1e-4)

    def test_efron_with_tied_times_matches_lifelines(self, cox_matrices):
        x, y = cox_matrices
        y = y.copy()
        y[:, 0] = np.ceil(y[:, 0])
        df = pd.DataFrame(x[:, :2], columns=['a', 'b'])
        df['time'], df['status'] = y[:, 0], y[:, 1]
        cph = CoxPHFitter().fit(df, duration_col='time', event_col='status')

        fit = newtraph_cph(x[:, :2], y, np.ones(len(y)), method='efron')
        np.testing.assert_allclose(fit.coef, cph.params_[['a', 'b']].to_numpy(), atol=1e-4)

    def test_breslow_equals_efron_without_ties(self, cox_matrices):
        x, y = cox_matrices
        w = np.ones(len(y))
        efron = newtraph_cph(x, y, w, method='efron')
        breslow = newtraph_cph(x, y, w, method='breslow')
        np.testing.assert_allclose(efron.coef, breslow.coef, rtol=1e-8)

    def test_breslow_weights_match_replication(self, cox_matrices):
        x, y = cox_matrices
        w = np.tile([1.0, 2.0, 3.0], len(y) // 3 + 1)[:len(y)]
        counts = w.astype(int)

        weighted = newtraph_cph(x, y, w, method='breslow')
        replicated = newtraph_cph(np.repeat(x, counts, axis=0), np.repeat(y, counts, axis=0),
                                  np.ones(counts.sum()), method='breslow')
        np.testing.assert_allclose(weighted.coef, replicated.coef, rtol=1e-6)

    def test_zero_column_is_singular(self, cox_matrices):
        x, y = cox_matrices
        x = np.column_stack([x[:, 0], np.zeros(len(y))])
        with pytest.raises(NotConvergedError):
            newtraph_cph(x, y, np.ones(len(y)))

    def test_no_events_raises(self, cox_matrices):
        x, y = cox_matrices
        y = np.column_stack([y[:, 0], np.zeros(len(y))])
        with pytest.raises(NotConvergedError):
            newtraph_cph(x, y, np.ones(len(y)))

    def test_iteration_cap_raises(self, large_data):
        x, y = large_data
        with pytest.raises(NotConvergedError):
            newtraph_cph(x, y, np.ones(len(y)), iter_max=1)

    def test_pval_max_zeroes_null_coefficient(self):
        X, y = generate_cox_data(SynthConfig(n=1000, beta=(1.0, 0.0), seed=5))
        x = X.to_numpy()
        fit = newtraph_cph(x, survival_matrix(y), np.ones(1000), pval_max=1e-6)
        assert fit.coef[0] > 0.5
        assert fit.coef[1] == 0.0

    def test_pval_max_rejecting_everything_raises(self, rng):
        x = rng.normal(size=(200, 2))
        y = np.column_stack([rng.exponential(size=200), np.ones(200)])
        with pytest.raises(NotConvergedError):
            newtraph_cph(x, y, np.ones(200), pval_max=1e-8)

    def test_unknown_method_raises(self, cox_matrices):
        x, y = cox_matrices
        with pytest.raises(ValueError):
            newtraph_cph(x, y, np.ones(len(y)), method='exact')


class TestFitNet:
    """Tests for elastic-net linear combinations."""

    def test_df_target_reads_first_model_on_path(self):
        X, y = generate_cox_data(SynthConfig(n=500, beta=(1.5, 0.0, 0.0), seed=3))
        beta = fit_net(X.to_numpy(), survival_matrix(y), np.ones(500), alpha=1.0, df_target=1)
        assert np.flatnonzero(beta).tolist() == [0]
        assert beta[0] > 0

    def test_full_target_returns_every_column(self, cox_matrices):
        x, y = cox_matrices
        beta = fit_net(x, y, np.ones(len(y)), alpha=0.5)
        assert beta.shape == (3,)
        assert np.all(np.isfinite(beta))
        assert np.count_nonzero(beta) >= 2

    def test_no_events_raises(self, cox_matrices):
        x, y = cox_matrices
        y = np.column_stack([y[:, 0], np.zeros(len(y))])
        with pytest.raises(NotConvergedError):
            fit_net(x, y, np.ones(len(y)))
