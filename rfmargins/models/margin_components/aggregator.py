"""
Predictive Margin Aggregation

This module turns a prediction table and a weight table into one summary row
per combination of target-variable levels.

The point estimate is the weighted mean over every (grid row, tree) value of
the group, each value carrying its row's weight. The interval is NOT weight
adjusted: lower/upper are plain percentiles of the pooled per-tree values of
the group, so they describe tree-to-tree (and row-to-row) variability.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidArgument
from .forest_predictor import TreePredictionTable
from .grid_builder import check_names
from .weighting_strategies import WeightTable

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = (0.05, 0.95)
SUMMARY_COLUMNS = ["prediction", "lower", "upper", "weight"]


def check_interval(interval) -> Tuple[float, float]:
    try:
        lower, upper = (float(q) for q in interval)
    except (TypeError, ValueError):
        raise InvalidArgument(f"interval must be a (lower, upper) pair, got {interval!r}") from None
    if not (0.0 <= lower <= upper <= 1.0):
        raise InvalidArgument(
            f"interval must satisfy 0 <= lower <= upper <= 1, got ({lower}, {upper})"
        )
    return lower, upper


def group_positions(frame: pd.DataFrame, by: Sequence[str]) -> List[Tuple[tuple, np.ndarray]]:
    """
    Row positions of every combination of `by`, in canonical order

    Categorical columns follow their category order, numeric columns sort
    ascending. With no `by` columns a single group holds every row.
    """
    if not by:
        return [((), np.arange(len(frame)))]
    groups = frame.groupby(list(by), observed=True, sort=True).indices
    out = []
    for key, positions in groups.items():
        if not isinstance(key, tuple):
            key = (key,)
        out.append((key, np.asarray(positions)))
    return _sort_groups(out, frame, by)


def _sort_groups(groups, frame: pd.DataFrame, by: Sequence[str]):
    def rank(key):
        ranks = []
        for name, value in zip(by, key):
            column = frame[name]
            if isinstance(column.dtype, pd.CategoricalDtype):
                ranks.append(list(column.cat.categories).index(value))
            else:
                ranks.append(value)
        return tuple(ranks)

    return sorted(groups, key=lambda item: rank(item[0]))


def summarize(values: np.ndarray, weights: np.ndarray, interval: Tuple[float, float]) -> dict:
    """
    Weighted mean and unweighted percentile interval of one group

    Parameters:
    -----------
    values : array-like, shape=(n_rows, n_trees)
        Per-tree predictions of the group's rows
    weights : array-like, shape=(n_rows,)
        Row weights, shared by every tree of the row
    interval : (float, float)
        Lower and upper quantile

    Returns:
    --------
    summary : dict
        prediction, lower, upper, weight
    """
    n_trees = values.shape[1]
    mass = float(weights.sum())
    if mass > 0:
        prediction = float(np.sum(weights[:, np.newaxis] * values) / (mass * n_trees))
    else:
        prediction = np.nan
    lower, upper = np.quantile(values.ravel(), interval)
    return {"prediction": prediction, "lower": float(lower), "upper": float(upper), "weight": mass}


def average(
    table: TreePredictionTable,
    weights: WeightTable,
    target_vars: Sequence[str],
    interval=DEFAULT_INTERVAL,
    output=None
) -> pd.DataFrame:
    """
    Predictive margins of the target variables

    Parameters:
    -----------
    table : TreePredictionTable
        Per-tree predictions on the grid
    weights : WeightTable
        Row weights (normally computed for the same target variables)
    target_vars : list of str
        Variables to group by
    interval : (float, float), default=(0.05, 0.95)
        Percentiles of the unweighted per-tree values
    output : label, optional
        Restrict a multi-output table to one output (class). With None every
        output is summarised and multi-output tables get a "class" column.

    Returns:
    --------
    summary : pd.DataFrame
        Target variables, [class], prediction, lower, upper, weight
    """
    if isinstance(target_vars, str):
        target_vars = [target_vars]
    target_vars = check_names(target_vars, table.grid.predictors, "target variables")
    if not target_vars:
        raise InvalidArgument("At least one target variable is required")
    interval = check_interval(interval)

    if output is not None:
        outputs = [table.output_index(output)]
    else:
        outputs = list(range(table.n_outputs))
    with_class = output is None and table.n_outputs > 1

    w = weights.weights.reindex(table.grid.frame.index).to_numpy(dtype=float)
    if np.isnan(w).any():
        raise InvalidArgument("Weight table does not cover every grid row")

    records = []
    for key, positions in group_positions(table.grid.frame, target_vars):
        group_w = w[positions]
        for k in outputs:
            record = dict(zip(target_vars, key))
            if with_class:
                record["class"] = table.output_names[k]
            record.update(summarize(table.values[positions, :, k], group_w, interval))
            if record["weight"] == 0:
                logger.warning(
                    "Group %s has zero weight mass; its prediction is undefined",
                    dict(zip(target_vars, key))
                )
            records.append(record)

    columns = list(target_vars) + (["class"] if with_class else []) + SUMMARY_COLUMNS
    summary = pd.DataFrame.from_records(records, columns=columns)
    return _restore_dtypes(summary, table, target_vars)


def _restore_dtypes(summary: pd.DataFrame, table: TreePredictionTable, names: Sequence[str]) -> pd.DataFrame:
    for name in names:
        summary[name] = summary[name].astype(table.grid.frame[name].dtype)
    return summary


def average_values(
    values: np.ndarray,
    frame: pd.DataFrame,
    weights: np.ndarray,
    by: Sequence[str],
    interval=DEFAULT_INTERVAL
) -> List[dict]:
    """
    Group-wise summaries of an arbitrary (rows x trees) value matrix

    Shared by the contrast averaging, where rows are peripheral combinations
    rather than grid rows.
    """
    interval = check_interval(interval)
    records = []
    for key, positions in group_positions(frame, by):
        record = dict(zip(by, key))
        record.update(summarize(values[positions], weights[positions], interval))
        records.append(record)
    return records

