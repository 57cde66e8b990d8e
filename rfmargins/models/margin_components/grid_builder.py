"""
Prediction Grid Builder

This module builds the factorial grid of predictor values that the forest is
evaluated on. Categorical predictors contribute their observed levels,
continuous predictors contribute binned midpoints or explicit break values.
"""

import itertools
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

from .binning import binned_values
from .errors import GridSizeWarning, InvalidArgument

logger = logging.getLogger(__name__)

CATEGORICAL = "categorical"
CONTINUOUS = "continuous"

DEFAULT_MAX_GRID_ROWS = 1_000_000

# column names used by summaries, long/wide frames and joins
RESERVED_NAMES = (
    "prediction", "lower", "upper", "weight", "class", "contrast", "tree",
    "row_id", "proportion"
)


@dataclass(frozen=True)
class PredictorSpec:
    """
    Grid resolution for one predictor

    Attributes:
    -----------
    name : str
        Column name in the training data
    kind : str
        "categorical" or "continuous"
    values : tuple
        Candidate grid values in canonical order
    categories : tuple
        Full declared level set (categorical only); keeps category codes
        identical to the training data
    breaks : tuple or None
        Explicit override values, None when the values were binned
    n_breaks : int
        Bin count used when breaks is None
    """
    name: str
    kind: str
    values: Tuple = ()
    categories: Tuple = ()
    breaks: Optional[Tuple] = None
    n_breaks: int = 10

    @property
    def is_categorical(self) -> bool:
        return self.kind == CATEGORICAL

    @property
    def cardinality(self) -> int:
        return len(self.values)

    def dtype(self):
        if self.is_categorical:
            return pd.CategoricalDtype(categories=list(self.categories), ordered=False)
        return np.dtype(float)


def predictor_kind(column: pd.Series) -> str:
    """Categorical for category/object/bool/string dtypes, continuous for numbers"""
    if isinstance(column.dtype, pd.CategoricalDtype) or is_bool_dtype(column.dtype):
        return CATEGORICAL
    if is_numeric_dtype(column.dtype):
        return CONTINUOUS
    return CATEGORICAL


def canonical_levels(column: pd.Series) -> List:
    """Declared category order, or sorted unique values for plain columns"""
    if isinstance(column.dtype, pd.CategoricalDtype):
        return list(column.cat.categories)
    return sorted(column.dropna().unique().tolist())


def as_categorical(column: pd.Series) -> pd.Series:
    if isinstance(column.dtype, pd.CategoricalDtype):
        return column
    return pd.Series(
        pd.Categorical(column, categories=canonical_levels(column)),
        index=column.index,
        name=column.name,
    )


def check_names(names: Sequence[str], known: Sequence[str], what: str) -> List[str]:
    names = list(names)
    unknown = [n for n in names if n not in known]
    if unknown:
        raise InvalidArgument(f"Unknown variable(s) in {what}: {unknown}")
    return names


def check_reserved_names(predictors: Sequence[str]) -> None:
    clashes = [name for name in predictors if name in RESERVED_NAMES]
    if clashes:
        raise InvalidArgument(
            f"Predictor name(s) {clashes} clash with output columns {list(RESERVED_NAMES)}; "
            f"rename them in the training data"
        )


def build_predictor_specs(
    data: pd.DataFrame,
    predictors: Optional[Sequence[str]] = None,
    breaks: Optional[Mapping[str, Sequence]] = None,
    n_breaks: int = 10
) -> Dict[str, PredictorSpec]:
    """
    Resolve the candidate grid values of every modeled predictor

    Parameters:
    -----------
    data : pd.DataFrame
        Training data
    predictors : list of str, optional
        Modeled predictors (all columns if None)
    breaks : dict, optional
        predictor name -> explicit candidate values. Used verbatim (sorted,
        deduplicated) for continuous predictors; restricts the levels of
        categorical predictors.
    n_breaks : int, default=10
        Bin count for continuous predictors without explicit breaks

    Returns:
    --------
    specs : dict
        predictor name -> PredictorSpec, in predictor order
    """
    if predictors is None:
        predictors = list(data.columns)
    predictors = check_names(predictors, list(data.columns), "predictors")
    if not predictors:
        raise InvalidArgument("At least one predictor is required")
    check_reserved_names(predictors)
    breaks = dict(breaks or {})
    check_names(breaks.keys(), predictors, "breaks")

    specs = {}
    for name in predictors:
        column = data[name]
        kind = predictor_kind(column)
        override = breaks.get(name)

        if kind == CATEGORICAL:
            column = as_categorical(column)
            categories = tuple(column.cat.categories)
            observed = set(column.dropna().unique().tolist())
            values = [lvl for lvl in categories if lvl in observed]
            if override is not None:
                missing = [lvl for lvl in override if lvl not in categories]
                if missing:
                    raise InvalidArgument(f"Unknown level(s) for '{name}' in breaks: {missing}")
                wanted = set(override)
                values = [lvl for lvl in categories if lvl in wanted]
            spec = PredictorSpec(
                name=name,
                kind=kind,
                values=tuple(values),
                categories=categories,
                breaks=tuple(override) if override is not None else None,
                n_breaks=n_breaks
            )
        else:
            if override is not None:
                override = np.unique(np.asarray(list(override), dtype=float))
                override = override[~np.isnan(override)]
                values = override
            else:
                values = binned_values(column.to_numpy(dtype=float, na_value=np.nan), n_breaks)
            spec = PredictorSpec(
                name=name,
                kind=kind,
                values=tuple(float(v) for v in values),
                breaks=tuple(float(v) for v in override) if override is not None else None,
                n_breaks=n_breaks
            )

        if spec.cardinality == 0:
            raise InvalidArgument(f"Predictor '{name}' has no non-missing values")
        specs[name] = spec

    return specs


@dataclass(frozen=True)
class PredictionGrid:
    """
    Factorial grid of predictor values

    Attributes:
    -----------
    frame : pd.DataFrame
        One column per predictor, index is the stable row id
    specs : dict
        predictor name -> PredictorSpec
    size_warning : bool
        Whether the grid exceeded the practical size bound
    """
    frame: pd.DataFrame
    specs: Dict[str, PredictorSpec]
    size_warning: bool = field(default=False)

    @property
    def predictors(self) -> List[str]:
        return list(self.specs)

    @property
    def n_rows(self) -> int:
        return len(self.frame)

    def __len__(self) -> int:
        return self.n_rows

    def levels(self, name: str) -> Tuple:
        return self.specs[name].values


def grid_size(specs: Mapping[str, PredictorSpec]) -> int:
    return int(np.prod([spec.cardinality for spec in specs.values()], dtype=object))


def build_grid(
    data: pd.DataFrame,
    predictors: Optional[Sequence[str]] = None,
    breaks: Optional[Mapping[str, Sequence]] = None,
    n_breaks: int = 10,
    max_rows: int = DEFAULT_MAX_GRID_ROWS
) -> PredictionGrid:
    """
    Build the full factorial grid

    Parameters:
    -----------
    data : pd.DataFrame
        Training data
    predictors : list of str, optional
        Modeled predictors (all columns if None)
    breaks : dict, optional
        Explicit candidate values per predictor
    n_breaks : int, default=10
        Bin count for continuous predictors
    max_rows : int, default=1_000_000
        Soft bound; a GridSizeWarning is emitted above it

    Returns:
    --------
    grid : PredictionGrid
        Rows ordered predictor-major (first predictor varies slowest)
    """
    specs = build_predictor_specs(data, predictors, breaks, n_breaks)
    n_rows = grid_size(specs)

    too_big = n_rows > max_rows
    if too_big:
        warnings.warn(
            f"Prediction grid has {n_rows} rows (bound {max_rows}); "
            f"extraction time and memory grow with grid rows x trees",
            GridSizeWarning,
            stacklevel=2
        )

    rows = list(itertools.product(*(spec.values for spec in specs.values())))
    frame = pd.DataFrame(rows, columns=list(specs))
    for name, spec in specs.items():
        frame[name] = frame[name].astype(spec.dtype())
    frame.index = pd.RangeIndex(len(frame), name="row_id")

    logger.debug("Built grid: %d rows over %d predictors", len(frame), len(specs))
    return PredictionGrid(frame=frame, specs=specs, size_warning=too_big)
