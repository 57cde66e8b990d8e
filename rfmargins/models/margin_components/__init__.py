"""
Margin Components Package

This package contains the components of the marginal-effects pipeline:
binning, grid construction, per-tree prediction extraction, weighting,
aggregation and contrasts.
"""

from .errors import (
    MarginsError,
    InvalidArgument,
    PredictionExtractionError,
    LevelNotFound,
    GridSizeWarning
)
from .binning import bin_midpoints, binned_values, snap_to_values
from .grid_builder import (
    DEFAULT_MAX_GRID_ROWS,
    PredictorSpec,
    PredictionGrid,
    build_predictor_specs,
    build_grid,
    check_names,
    check_reserved_names
)
from .tree_node import DecisionTreeNode
from .diagnostics import Diagnostics
from .forest_predictor import (
    DEFAULT_NUM_TREES,
    MatrixForestBackend,
    TraversalForestBackend,
    TreePredictionTable,
    sample_tree_ids,
    extract
)
from .weighting_strategies import WeightScheme, WeightTable, WeightEngine, compute_weights
from .aggregator import DEFAULT_INTERVAL, average, check_interval
from .contrasts import ContrastTable, contrasts, average_contrasts

__all__ = [
    'MarginsError',
    'InvalidArgument',
    'PredictionExtractionError',
    'LevelNotFound',
    'GridSizeWarning',
    'bin_midpoints',
    'binned_values',
    'snap_to_values',
    'DEFAULT_MAX_GRID_ROWS',
    'PredictorSpec',
    'PredictionGrid',
    'build_predictor_specs',
    'build_grid',
    'check_names',
    'check_reserved_names',
    'DecisionTreeNode',
    'Diagnostics',
    'DEFAULT_NUM_TREES',
    'MatrixForestBackend',
    'TraversalForestBackend',
    'TreePredictionTable',
    'sample_tree_ids',
    'extract',
    'WeightScheme',
    'WeightTable',
    'WeightEngine',
    'compute_weights',
    'DEFAULT_INTERVAL',
    'average',
    'check_interval',
    'ContrastTable',
    'contrasts',
    'average_contrasts'
]
