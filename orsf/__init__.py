"""
ORSF: Oblique Random Survival Forests

Survival trees whose splits compare a Cox-regression linear combination of
covariates to a log-rank optimal cut-point, grown into a bootstrap forest
with out-of-bag evaluation, permutation importance and partial dependence.
"""

from .control import CoxControl, CustomControl, NetControl, OobagEval
from .ObliqueSurvivalForest import (
    Forest,
    fit_forest,
    partial_dependence,
    permutation_importance,
    predict,
)
from .ObliqueTree import Node, Tree

__all__ = [
    'CoxControl',
    'CustomControl',
    'NetControl',
    'OobagEval',
    'Forest',
    'fit_forest',
    'partial_dependence',
    'permutation_importance',
    'predict',
    'Node',
    'Tree',
]
