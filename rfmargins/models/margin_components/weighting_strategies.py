"""
Weighting Strategies

This module computes, for every grid row, how typical its combination of
peripheral-variable values is in the training data. Two schemes are
available: "iso" (product of independent marginal proportions) and "joint"
(proportion of training rows with the exact combination).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .binning import bin_midpoints, snap_to_values
from .errors import InvalidArgument
from .grid_builder import PredictionGrid, PredictorSpec, check_names

logger = logging.getLogger(__name__)


class WeightScheme(str, Enum):
    ISO = "iso"
    JOINT = "joint"

    @classmethod
    def parse(cls, value: Union[str, "WeightScheme"]) -> "WeightScheme":
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgument(
                f"Unknown weighting scheme {value!r}; use one of {[s.value for s in cls]}"
            ) from None


@dataclass(frozen=True)
class WeightTable:
    """
    Grid row weights

    Attributes:
    -----------
    weights : pd.Series
        Non-negative weight per grid row_id
    target_vars : tuple of str
        Variables that carry no weight
    equal_wt : tuple of str
        Variables weighted by a flat prior
    peripheral_vars : tuple of str
        Variables weighted by the training distribution
    scheme : WeightScheme
        Scheme that produced the weights
    """
    weights: pd.Series
    target_vars: Tuple[str, ...]
    equal_wt: Tuple[str, ...]
    peripheral_vars: Tuple[str, ...]
    scheme: WeightScheme

    def group_mass(self, grid: PredictionGrid, by: Sequence[str] = None) -> pd.Series:
        """Total weight per combination of `by` (target vars if None)"""
        by = list(self.target_vars if by is None else by)
        if not by:
            return pd.Series([self.weights.sum()], index=["all"], name="weight")
        keys = [grid.frame[name] for name in by]
        return self.weights.groupby(keys, observed=True, sort=True).sum()


def bucket_training_column(column: pd.Series, spec: PredictorSpec) -> pd.Series:
    """
    Put training values on the grid's resolution

    Binned continuous predictors are mapped to their interval midpoint, those
    with explicit breaks to the nearest break value, categorical predictors
    are left as they are.
    """
    if spec.is_categorical:
        return column.astype(object)
    x = column.to_numpy(dtype=float, na_value=np.nan)
    if spec.breaks is None:
        bucketed = bin_midpoints(x, spec.n_breaks)
    else:
        bucketed = snap_to_values(x, spec.values)
    return pd.Series(bucketed, index=column.index, name=column.name)


class WeightEngine:
    """
    Computes grid row weights from the training data

    Attributes:
    -----------
    data : pd.DataFrame
        Training data
    grid : PredictionGrid
        Grid the weights are computed for
    """

    def __init__(self, data: pd.DataFrame, grid: PredictionGrid):
        self.data = data
        self.grid = grid
        self._bucketed: Dict[str, pd.Series] = {}

        self.available_schemes = {
            WeightScheme.ISO: self._compute_iso_weights,
            WeightScheme.JOINT: self._compute_joint_weights,
        }

    def _training_column(self, name: str) -> pd.Series:
        if name not in self._bucketed:
            self._bucketed[name] = bucket_training_column(self.data[name], self.grid.specs[name])
        return self._bucketed[name]

    def compute_weights(
        self,
        target_vars: Sequence[str],
        equal_wt: Sequence[str] = (),
        scheme: Union[str, WeightScheme] = WeightScheme.ISO
    ) -> WeightTable:
        """
        Weight every grid row

        Parameters:
        -----------
        target_vars : list of str
            Variables whose levels define the output groups; they carry no
            weight
        equal_wt : list of str, default=()
            Variables excluded from empirical weighting; each contributes
            1 / (number of its grid values)
        scheme : str or WeightScheme, default="iso"
            "iso" or "joint"

        Returns:
        --------
        weights : WeightTable
        """
        if isinstance(target_vars, str):
            target_vars = [target_vars]
        if isinstance(equal_wt, str):
            equal_wt = [equal_wt]
        predictors = self.grid.predictors
        target_vars = check_names(target_vars, predictors, "target variables")
        if not target_vars:
            raise InvalidArgument("At least one target variable is required")
        equal_wt = [v for v in check_names(equal_wt, predictors, "equal_wt") if v not in target_vars]
        scheme = WeightScheme.parse(scheme)

        peripheral = [v for v in predictors if v not in target_vars and v not in equal_wt]

        if peripheral:
            weights = self.available_schemes[scheme](peripheral)
        else:
            weights = np.ones(self.grid.n_rows)

        for name in equal_wt:
            weights = weights / self.grid.specs[name].cardinality

        logger.debug(
            "Computed %s weights: targets=%s equal_wt=%s peripheral=%s",
            scheme.value, target_vars, equal_wt, peripheral
        )
        return WeightTable(
            weights=pd.Series(weights, index=self.grid.frame.index, name="weight"),
            target_vars=tuple(target_vars),
            equal_wt=tuple(equal_wt),
            peripheral_vars=tuple(peripheral),
            scheme=scheme
        )

    def _grid_column(self, name: str) -> pd.Series:
        column = self.grid.frame[name]
        if self.grid.specs[name].is_categorical:
            return column.astype(object)
        return column.astype(float)

    def _compute_iso_weights(self, peripheral: List[str]) -> np.ndarray:
        """Product of each peripheral variable's marginal proportion"""
        weights = np.ones(self.grid.n_rows)
        for name in peripheral:
            proportions = self._training_column(name).value_counts(normalize=True, dropna=True)
            grid_values = self._grid_column(name)
            weights *= grid_values.map(proportions).fillna(0.0).to_numpy(dtype=float)
        return weights

    def _compute_joint_weights(self, peripheral: List[str]) -> np.ndarray:
        """Proportion of training rows matching the exact peripheral combination"""
        training = pd.DataFrame({name: self._training_column(name) for name in peripheral})
        training = training.dropna()
        if training.empty:
            logger.warning("No complete training rows over %s; all joint weights are 0", peripheral)
            return np.zeros(self.grid.n_rows)

        proportions = training.value_counts(normalize=True, dropna=True)
        proportions = proportions.rename("proportion").reset_index()

        grid_keys = pd.DataFrame({name: self._grid_column(name) for name in peripheral})
        grid_keys = grid_keys.rename_axis("row_id").reset_index()
        merged = grid_keys.merge(proportions, on=peripheral, how="left")
        merged = merged.set_index("row_id").reindex(self.grid.frame.index)
        return merged["proportion"].fillna(0.0).to_numpy(dtype=float)


def compute_weights(
    data: pd.DataFrame,
    grid: PredictionGrid,
    target_vars: Sequence[str],
    equal_wt: Sequence[str] = (),
    scheme: Union[str, WeightScheme] = WeightScheme.ISO
) -> WeightTable:
    """Functional wrapper around WeightEngine.compute_weights"""
    return WeightEngine(data, grid).compute_weights(target_vars, equal_wt, scheme)
