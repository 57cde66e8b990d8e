"""
Predictive Contrasts

This module computes, for every pair of levels of a target variable, the
per-tree difference in prediction between the two levels while every other
predictor is held at the same grid values.

Direction: for levels l_i, l_j with i < j in canonical order the contrast is
prediction(l_j) - prediction(l_i), named "l_j - l_i".
"""

import itertools
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from .aggregator import DEFAULT_INTERVAL, SUMMARY_COLUMNS, average_values, check_interval
from .errors import InvalidArgument
from .forest_predictor import TreePredictionTable
from .grid_builder import check_names
from .weighting_strategies import WeightTable

logger = logging.getLogger(__name__)


def contrast_name(earlier, later) -> str:
    return f"{later} - {earlier}"


@dataclass(frozen=True)
class ContrastTable:
    """
    Per-tree level contrasts for every peripheral combination

    Attributes:
    -----------
    variable : str
        Contrasted variable
    levels : tuple
        Its levels in canonical order
    frame : pd.DataFrame
        One row per peripheral combination (peripheral predictor columns)
    row_ids : array-like, shape=(n_combinations, n_levels)
        Grid row of every (combination, level)
    values : array-like, shape=(n_combinations, n_trees, n_pairs)
        prediction(later) - prediction(earlier)
    pairs : tuple of (earlier, later)
        Level pairs in generation order
    names : tuple of str
        "later - earlier" contrast names
    output : label
        Output (class) the contrasts were taken on
    tree_ids : tuple of int
        Sampled trees
    message : str
        Human-readable subtraction direction
    """
    variable: str
    levels: Tuple
    frame: pd.DataFrame
    row_ids: np.ndarray
    values: np.ndarray
    pairs: Tuple[Tuple, ...]
    names: Tuple[str, ...]
    output: object
    tree_ids: Tuple[int, ...]
    message: str

    @property
    def n_pairs(self) -> int:
        return len(self.pairs)

    @property
    def peripheral_vars(self) -> List[str]:
        return list(self.frame.columns)

    def contrast(self, level_a, level_b) -> np.ndarray:
        """
        prediction(level_a) - prediction(level_b) for every combination and tree

        Returns:
        --------
        values : array-like, shape=(n_combinations, n_trees)
        """
        if (level_b, level_a) in self.pairs:
            return self.values[:, :, self.pairs.index((level_b, level_a))]
        if (level_a, level_b) in self.pairs:
            return -self.values[:, :, self.pairs.index((level_a, level_b))]
        raise InvalidArgument(
            f"No contrast between {level_a!r} and {level_b!r} of '{self.variable}'"
        )

    def to_frame(self) -> pd.DataFrame:
        """Wide form: peripheral columns, tree, one column per contrast"""
        n_comb, n_trees, _ = self.values.shape
        frame = self.frame.loc[self.frame.index.repeat(n_trees)].reset_index(drop=True)
        frame["tree"] = np.tile(np.asarray(self.tree_ids), n_comb)
        flat = self.values.reshape(n_comb * n_trees, -1)
        for k, name in enumerate(self.names):
            frame[name] = flat[:, k]
        return frame


def contrasts(table: TreePredictionTable, target_var: str, output=None) -> ContrastTable:
    """
    Pairwise level contrasts of one target variable

    Parameters:
    -----------
    table : TreePredictionTable
        Per-tree predictions on the grid
    target_var : str
        Variable whose levels are contrasted
    output : label, optional
        Output (class) to contrast; required for multi-output tables

    Returns:
    --------
    contrasts : ContrastTable
        k * (k - 1) / 2 contrasts for a k-level variable
    """
    check_names([target_var], table.grid.predictors, "contrast variable")
    if output is None and table.n_outputs > 1:
        raise InvalidArgument(
            f"Table has {table.n_outputs} outputs {list(table.output_names)}; choose one for contrasts"
        )
    predictions = table.output_values(output)
    output_name = table.output_names[table.output_index(output)] if output is not None else table.output_names[0]

    levels = tuple(table.grid.levels(target_var))
    if len(levels) < 2:
        raise InvalidArgument(f"'{target_var}' has {len(levels)} level(s); contrasts need at least 2")

    frame = table.grid.frame
    peripheral = [name for name in table.grid.predictors if name != target_var]

    # rows x levels matrix of grid row ids; full factorial, so never sparse
    keyed = frame.reset_index().set_index(peripheral + [target_var] if peripheral else [target_var])
    if peripheral:
        row_ids = keyed["row_id"].unstack(target_var)
        row_ids = row_ids[list(levels)]
        combos = row_ids.index.to_frame(index=False)
        for name in peripheral:
            combos[name] = combos[name].astype(frame[name].dtype)
        row_ids = row_ids.to_numpy(dtype=int)
    else:
        row_ids = keyed["row_id"].reindex(list(levels)).to_numpy(dtype=int)[np.newaxis, :]
        combos = pd.DataFrame(index=pd.RangeIndex(1))

    pairs = tuple(itertools.combinations(levels, 2))
    position = {level: i for i, level in enumerate(levels)}
    values = np.stack(
        [predictions[row_ids[:, position[later]]] - predictions[row_ids[:, position[earlier]]]
         for earlier, later in pairs],
        axis=2
    )
    values.flags.writeable = False

    names = tuple(contrast_name(earlier, later) for earlier, later in pairs)
    message = (
        f"Contrasts of '{target_var}' are later level minus earlier level "
        f"in the order {list(levels)}: " +
        ", ".join(f"'{n}' = prediction({later}) - prediction({earlier})"
                  for n, (earlier, later) in zip(names, pairs))
    )
    logger.info("%s", message)

    return ContrastTable(
        variable=target_var,
        levels=levels,
        frame=combos,
        row_ids=row_ids,
        values=values,
        pairs=pairs,
        names=names,
        output=output_name,
        tree_ids=table.tree_ids,
        message=message
    )


def average_contrasts(
    contrast_table: ContrastTable,
    weights: WeightTable,
    by: Sequence[str] = (),
    interval=DEFAULT_INTERVAL
) -> pd.DataFrame:
    """
    Weighted average of every contrast, grouped by secondary variables

    Parameters:
    -----------
    contrast_table : ContrastTable
        Per-tree contrasts
    weights : WeightTable
        Grid row weights whose targets include the contrasted variable and
        `by`; a combination takes the weight of its grid rows, which does not
        depend on the contrasted level
    by : list of str, default=()
        Peripheral variables to group by; one overall group when empty
    interval : (float, float), default=(0.05, 0.95)
        Percentiles of the unweighted per-tree contrasts

    Returns:
    --------
    summary : pd.DataFrame
        by variables, contrast, prediction, lower, upper, weight
    """
    if isinstance(by, str):
        by = [by]
    by = check_names(by, contrast_table.peripheral_vars, "by")
    interval = check_interval(interval)
    if contrast_table.variable not in weights.target_vars:
        raise InvalidArgument(
            f"Weights must treat '{contrast_table.variable}' as a target variable"
        )

    w = weights.weights.reindex(contrast_table.row_ids[:, 0]).to_numpy(dtype=float)

    records = []
    for k, name in enumerate(contrast_table.names):
        for record in average_values(contrast_table.values[:, :, k], contrast_table.frame, w, by, interval):
            record["contrast"] = name
            records.append(record)

    summary = pd.DataFrame.from_records(records, columns=list(by) + ["contrast"] + SUMMARY_COLUMNS)
    for name in by:
        summary[name] = summary[name].astype(contrast_table.frame[name].dtype)
    return summary
