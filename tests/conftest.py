import numpy as np
import pytest

from orsf import Forest
from orsf.data_generation import SynthConfig, generate_cox_data, survival_matrix


@pytest.fixture(scope="session")
def cox_data():
    """Strong effect on x0, moderate on x1, none on x2."""
    X, y = generate_cox_data(SynthConfig(n=250, beta=(1.2, -0.6, 0.0), seed=2024))
    return X, y


@pytest.fixture(scope="session")
def cox_matrices(cox_data):
    X, y = cox_data
    return X.to_numpy(), survival_matrix(y)


@pytest.fixture(scope="session")
def fitted_forest(cox_data):
    X, y = cox_data
    forest = Forest(n_estimators=20, oobag_eval_every=5, importance=True, random_state=7)
    return forest.fit(X, y)


@pytest.fixture
def rng():
    return np.random.default_rng(11)
