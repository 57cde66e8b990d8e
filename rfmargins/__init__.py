"""
rfmargins

Predictive margins and contrasts for fitted random forests: the forest's
predicted outcome as a function of one or more target predictors, with every
other predictor averaged out using weights from the training data.
"""

from .models import ForestBackend, ForestMargins, forest_margins
from .models.margin_components import (
    ContrastTable,
    DecisionTreeNode,
    Diagnostics,
    GridSizeWarning,
    InvalidArgument,
    LevelNotFound,
    MarginsError,
    MatrixForestBackend,
    PredictionExtractionError,
    PredictionGrid,
    TraversalForestBackend,
    TreePredictionTable,
    WeightScheme,
    WeightTable,
    average,
    average_contrasts,
    build_grid,
    compute_weights,
    contrasts,
    extract
)
from .utils import SklearnForestBackend, traversal_backend_from_sklearn

__version__ = "0.1.0"

__all__ = [
    'ForestBackend',
    'ForestMargins',
    'forest_margins',
    'ContrastTable',
    'DecisionTreeNode',
    'Diagnostics',
    'GridSizeWarning',
    'InvalidArgument',
    'LevelNotFound',
    'MarginsError',
    'MatrixForestBackend',
    'PredictionExtractionError',
    'PredictionGrid',
    'TraversalForestBackend',
    'TreePredictionTable',
    'WeightScheme',
    'WeightTable',
    'average',
    'average_contrasts',
    'build_grid',
    'compute_weights',
    'contrasts',
    'extract',
    'SklearnForestBackend',
    'traversal_backend_from_sklearn'
]
