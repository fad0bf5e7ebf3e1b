import logging
import os

import numpy as np

from orsf import CoxControl, Forest
from orsf.data_generation import SynthConfig, generate_cox_data
from orsf.methods import storeForest


def train_forest():
    X, y = generate_cox_data(SynthConfig(n=400, beta=(1.0, -0.7, 0.0, 0.0), seed=1234))

    rsf = Forest(n_estimators=100,
                 n_split=5,
                 leaf_min_obs=5,
                 split_min_obs=10,
                 control=CoxControl(method='efron', iter_max=20),
                 oobag_eval_every=25,
                 importance=True,
                 random_state=1234,
                 verbose=True)

    rsf.fit(X, y)
    print(rsf.eval_oobag_)
    print(rsf.importance_.sort_values(ascending=False))

    grid = np.quantile(X['x0'], [0.1, 0.25, 0.5, 0.75, 0.9])
    print(rsf.partial_dependence(X, ['x0'], grid, oob=True))

    path = "orsf_models/"
    os.makedirs(path, exist_ok=True)
    model_path = os.path.join(path, "forest.pkl")
    storeForest(rsf, model_path)
    print(f"ORSF model saved at {model_path}")
    return model_path


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    print("Training oblique random survival forest...")
    train_forest()


if __name__ == "__main__":
    main()
