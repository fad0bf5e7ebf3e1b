import numpy as np
import pytest

from orsf import partial_dependence
from orsf.dependence import quantile_columns, value_columns


class TestSummary:
    """Tests for partial dependence summaries."""

    def test_new_data_summary(self, fitted_forest, cox_data):
        X, _ = cox_data
        table = partial_dependence(fitted_forest, X, ['x0'], [-1.0, 0.0, 1.0])

        assert list(table.columns) == ['x0', 'mean', 'q0.25', 'q0.5', 'q0.75']
        assert table['x0'].tolist() == [-1.0, 0.0, 1.0]
        assert np.all(table['q0.25'] <= table['q0.5'])
        assert np.all(table['q0.5'] <= table['q0.75'])
        assert table['mean'].iloc[0] > table['mean'].iloc[-1]

    def test_risk_is_complement(self, fitted_forest, cox_data):
        X, _ = cox_data
        surv = partial_dependence(fitted_forest, X, ['x0'], [0.5])
        risk = partial_dependence(fitted_forest, X, ['x0'], [0.5], return_risk=True)
        assert risk['mean'].iloc[0] == pytest.approx(1.0 - surv['mean'].iloc[0])

    def test_several_columns(self, fitted_forest, cox_data):
        X, _ = cox_data
        values = [[-1.0, 1.0], [1.0, -1.0]]
        table = fitted_forest.partial_dependence(X, ['x0', 'x1'], values, probs=(0.1, 0.9))
        assert list(table.columns) == ['x0', 'x1', 'mean', 'q0.1', 'q0.9']
        assert table[['x0', 'x1']].to_numpy().tolist() == values

    def test_columns_by_index(self, fitted_forest, cox_data):
        X, _ = cox_data
        by_name = fitted_forest.partial_dependence(X, ['x1'], [0.0])
        by_index = fitted_forest.partial_dependence(X, [1], [0.0])
        np.testing.assert_allclose(by_name['mean'], by_index['mean'])

    def test_oob_summary(self, fitted_forest, cox_data):
        X, _ = cox_data
        table = partial_dependence(fitted_forest, X, ['x0'], [-1.0, 1.0], oob=True)
        assert table.shape == (2, 5)
        assert np.all((table['mean'] > 0) & (table['mean'] < 1))

    def test_oob_needs_training_rows(self, fitted_forest, cox_data):
        X, _ = cox_data
        with pytest.raises(ValueError):
            partial_dependence(fitted_forest, X.iloc[:10], ['x0'], [0.0], oob=True)


class TestIce:
    """Tests for individual conditional expectation tables."""

    def test_new_data_ice(self, fitted_forest, cox_data):
        X, _ = cox_data
        table = partial_dependence(fitted_forest, X.iloc[:15], ['x0'], [-1.0, 1.0], ice=True)

        assert list(table.columns) == ['id_variable', 'id_row', 'x0', 'pred']
        assert len(table) == 30
        assert table.groupby('id_variable')['id_row'].apply(list).tolist() == [list(range(15))] * 2

    def test_ice_averages_to_summary(self, fitted_forest, cox_data):
        X, _ = cox_data
        ice = partial_dependence(fitted_forest, X, ['x2'], [-0.5, 0.5], ice=True)
        smry = partial_dependence(fitted_forest, X, ['x2'], [-0.5, 0.5])
        np.testing.assert_allclose(ice.groupby('id_variable')['pred'].mean().to_numpy(),
                                   smry['mean'].to_numpy())

    def test_oob_ice_rows(self, fitted_forest, cox_data):
        X, _ = cox_data
        table = partial_dependence(fitted_forest, X, ['x0'], [0.0], oob=True, ice=True)
        seen = np.flatnonzero(~np.isnan(fitted_forest.oobag_pred_))
        assert table['id_row'].tolist() == seen.tolist()
        assert np.all((table['pred'] >= 0) & (table['pred'] <= 1))


def test_column_names():
    assert value_columns(2) == ['value_0', 'value_1']
    assert quantile_columns([0.25, 0.5]) == ['q0.25', 'q0.5']
