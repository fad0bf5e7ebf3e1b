import logging

import numpy as np
from sklearn.model_selection import StratifiedKFold

from orsf import CoxControl, Forest, NetControl
from orsf.data_generation import SynthConfig, generate_cox_data


def run_forest_evaluation(n_splits=5):
    """
    Cross-validated Harrell's C of forests using Cox and elastic-net splits
    """
    X, y = generate_cox_data(SynthConfig(n=600, beta=(0.8, -0.8, 0.5, 0.0, 0.0, 0.0), seed=1234))
    print(f"data size: {len(X)}")

    controls = {'cph': CoxControl(), 'net': NetControl(alpha=0.5)}
    kf = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=1234)

    results = {name: [] for name in controls}
    for fold, (train_index, test_index) in enumerate(kf.split(X, y['status'])):
        print(f"Processing fold {fold + 1}/{n_splits}...")
        X_train, X_test = X.iloc[train_index], X.iloc[test_index]
        y_train, y_test = y[train_index], y[test_index]

        for name, control in controls.items():
            rsf = Forest(n_estimators=50, control=control, oobag_pred=False, random_state=1234)
            rsf.fit(X_train, y_train)
            cindex = rsf.score(X_test, y_test)
            results[name].append(cindex)
            print(f"  {name}: C = {cindex:.4f}")

    print("\n" + "=" * 50)
    print("FINAL RESULTS (Mean ± Std)")
    print("=" * 50)
    for name, values in results.items():
        print(f"{name}: {np.nanmean(values):.4f} ± {np.nanstd(values):.4f}")
    return results


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    run_forest_evaluation()
