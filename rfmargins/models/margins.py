"""
Forest Margins Module

This module contains the ForestMargins class that ties the pipeline
together: grid construction, per-tree prediction extraction (done once and
cached), then any number of margin and contrast summaries with different
target variables and weighting schemes.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import pandas as pd

from .base import ForestBackend
from .margin_components import (
    DEFAULT_INTERVAL,
    DEFAULT_MAX_GRID_ROWS,
    DEFAULT_NUM_TREES,
    ContrastTable,
    Diagnostics,
    InvalidArgument,
    PredictionGrid,
    TreePredictionTable,
    WeightEngine,
    WeightScheme,
    WeightTable,
    average,
    average_contrasts,
    build_grid,
    check_interval,
    check_names,
    check_reserved_names,
    contrasts,
    extract,
)
from .margin_components.binning import check_n_breaks
from ..utils.model_interface import as_forest_backend

logger = logging.getLogger(__name__)


class ForestMargins:
    """
    Predictive margins and contrasts of a fitted random forest

    Parameters:
    -----------
    forest : ForestBackend, fitted scikit-learn forest or list of DecisionTreeNode
        Model to summarise
    data : pd.DataFrame
        Training data; source of grid values and of the empirical weights
    predictors : list of str, optional
        Modeled predictors (the forest's feature names when known, otherwise
        every column of data)
    num_trees : int, default=500
        Trees sampled for extraction
    n_breaks : int, default=10
        Bins per continuous predictor
    breaks : dict, optional
        predictor -> explicit grid values
    wt : str, default="iso"
        Default weighting scheme, "iso" or "joint"
    equal_wt : list of str, default=()
        Default variables excluded from empirical weighting
    interval : (float, float), default=(0.05, 0.95)
        Default percentile interval
    random_state : int, optional
        Seed for tree sampling
    chunk_size : int, optional
        Grid rows per backend call
    n_jobs : int, default=1
        Parallel extraction workers
    max_grid_rows : int, default=1_000_000
        Grid size above which a GridSizeWarning is emitted
    verbose : bool, default=False
        Log extraction size and memory estimates
    """

    def __init__(self,
                 forest,
                 data: pd.DataFrame,
                 predictors: Optional[Sequence[str]] = None,
                 num_trees: int = DEFAULT_NUM_TREES,
                 n_breaks: int = 10,
                 breaks: Optional[Mapping[str, Sequence]] = None,
                 wt: Union[str, WeightScheme] = WeightScheme.ISO,
                 equal_wt: Sequence[str] = (),
                 interval=DEFAULT_INTERVAL,
                 random_state: Optional[int] = None,
                 chunk_size: Optional[int] = None,
                 n_jobs: Optional[int] = 1,
                 max_grid_rows: int = DEFAULT_MAX_GRID_ROWS,
                 verbose: bool = False):
        if not isinstance(data, pd.DataFrame):
            raise InvalidArgument(f"data must be a pandas DataFrame, got {type(data).__name__}")
        self.backend: ForestBackend = as_forest_backend(forest)
        self.data = data

        if predictors is None:
            predictors = self.backend.feature_names or list(data.columns)
        self.predictors = check_names(predictors, list(data.columns), "predictors")
        check_reserved_names(self.predictors)

        self.num_trees = num_trees
        self.n_breaks = check_n_breaks(n_breaks)
        self.breaks = dict(breaks or {})
        check_names(self.breaks.keys(), self.predictors, "breaks")
        self.wt = WeightScheme.parse(wt)
        self.equal_wt = self._as_list(equal_wt)
        check_names(self.equal_wt, self.predictors, "equal_wt")
        self.interval = check_interval(interval)
        self.random_state = random_state
        self.chunk_size = chunk_size
        self.n_jobs = n_jobs
        self.max_grid_rows = max_grid_rows
        self.verbose = verbose

        self.grid: Optional[PredictionGrid] = None
        self.predictions: Optional[TreePredictionTable] = None
        self._weight_engine: Optional[WeightEngine] = None

    @staticmethod
    def _as_list(names) -> list:
        if names is None:
            return []
        if isinstance(names, str):
            return [names]
        return list(names)

    def fit(self) -> 'ForestMargins':
        """
        Build the grid and extract per-tree predictions

        Returns:
        --------
        self : ForestMargins
        """
        self.grid = build_grid(
            self.data,
            predictors=self.predictors,
            breaks=self.breaks,
            n_breaks=self.n_breaks,
            max_rows=self.max_grid_rows
        )
        self.predictions = extract(
            self.backend,
            self.grid,
            num_trees=self.num_trees,
            random_state=self.random_state,
            chunk_size=self.chunk_size,
            n_jobs=self.n_jobs,
            verbose=self.verbose
        )
        self._weight_engine = WeightEngine(self.data, self.grid)
        return self

    def _ensure_fitted(self) -> None:
        if self.predictions is None:
            self.fit()

    @property
    def diagnostics(self) -> Diagnostics:
        self._ensure_fitted()
        return self.predictions.diagnostics

    def weights(self,
                vars: Sequence[str],
                wt: Union[str, WeightScheme, None] = None,
                equal_wt: Optional[Sequence[str]] = None) -> WeightTable:
        """
        Grid row weights for the given target variables

        Parameters:
        -----------
        vars : list of str
            Target variables (no weight contribution)
        wt : str, optional
            "iso" or "joint" (instance default if None)
        equal_wt : list of str, optional
            Flat-prior variables (instance default if None)

        Returns:
        --------
        weights : WeightTable
        """
        self._ensure_fitted()
        return self._weight_engine.compute_weights(
            self._as_list(vars),
            equal_wt=self.equal_wt if equal_wt is None else self._as_list(equal_wt),
            scheme=self.wt if wt is None else wt
        )

    def marginals(self,
                  vars: Sequence[str],
                  wt: Union[str, WeightScheme, None] = None,
                  equal_wt: Optional[Sequence[str]] = None,
                  interval=None,
                  output=None) -> pd.DataFrame:
        """
        Predictive margins of one or more target variables

        Parameters:
        -----------
        vars : list of str
            Target variables
        wt : str, optional
            Weighting scheme
        equal_wt : list of str, optional
            Flat-prior variables
        interval : (float, float), optional
            Percentile interval of the unweighted per-tree predictions
        output : label, optional
            Class to report for classification forests (all classes if None)

        Returns:
        --------
        summary : pd.DataFrame
            One row per target level combination (and class)
        """
        vars = self._as_list(vars)
        weights = self.weights(vars, wt=wt, equal_wt=equal_wt)
        summary = average(
            self.predictions,
            weights,
            vars,
            interval=self.interval if interval is None else interval,
            output=output
        )
        if weights.scheme == WeightScheme.JOINT and (summary["weight"] < 1 - 1e-9).any():
            logger.info(
                "Joint weights cover less than the full training mass for some groups "
                "(min %.3f); the grid omits observed peripheral combinations",
                summary["weight"].min()
            )
        return summary

    def contrasts(self, var: str, output=None) -> ContrastTable:
        """
        Per-tree pairwise contrasts of one variable

        Parameters:
        -----------
        var : str
            Variable whose levels are contrasted
        output : label, optional
            Class to contrast for classification forests

        Returns:
        --------
        contrasts : ContrastTable
            Later level minus earlier level; see ContrastTable.message
        """
        self._ensure_fitted()
        return contrasts(self.predictions, var, output=output)

    def avg_contrasts(self,
                      var: str,
                      by: Sequence[str] = (),
                      wt: Union[str, WeightScheme, None] = None,
                      equal_wt: Optional[Sequence[str]] = None,
                      interval=None,
                      output=None) -> pd.DataFrame:
        """
        Weighted average contrasts of one variable, grouped by `by`

        Parameters:
        -----------
        var : str
            Variable whose levels are contrasted
        by : list of str, default=()
            Secondary grouping variables
        wt : str, optional
            Weighting scheme
        equal_wt : list of str, optional
            Flat-prior variables
        interval : (float, float), optional
            Percentile interval of the unweighted per-tree contrasts
        output : label, optional
            Class to contrast for classification forests

        Returns:
        --------
        summary : pd.DataFrame
            by variables, contrast, prediction, lower, upper, weight
        """
        by = self._as_list(by)
        if var in by:
            raise InvalidArgument(f"'{var}' cannot be both contrasted and a by variable")
        contrast_table = self.contrasts(var, output=output)
        weights = self.weights([var] + by, wt=wt, equal_wt=equal_wt)
        return average_contrasts(
            contrast_table,
            weights,
            by=by,
            interval=self.interval if interval is None else interval
        )

    def get_info(self) -> Dict[str, Any]:
        info = {
            "predictors": list(self.predictors),
            "num_trees": self.num_trees,
            "n_breaks": self.n_breaks,
            "breaks": {name: list(values) for name, values in self.breaks.items()},
            "wt": self.wt.value,
            "equal_wt": list(self.equal_wt),
            "interval": list(self.interval),
            "backend": self.backend.get_info(),
            "is_fitted": self.predictions is not None,
        }
        if self.predictions is not None:
            info["diagnostics"] = self.predictions.diagnostics.to_dict()
        return info

    def __repr__(self) -> str:
        state = "fitted" if self.predictions is not None else "not fitted"
        return f"ForestMargins({state}, predictors={self.predictors}, num_trees={self.num_trees})"


def forest_margins(forest, data: pd.DataFrame, vars: Sequence[str], **kwargs) -> pd.DataFrame:
    """
    One-shot predictive margins

    Keyword arguments are split between the ForestMargins constructor and
    ForestMargins.marginals (output).
    """
    output = kwargs.pop("output", None)
    return ForestMargins(forest, data, **kwargs).fit().marginals(vars, output=output)
