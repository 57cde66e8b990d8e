"""
Per-Tree Prediction Extraction

This module contains the two forest backends (matrix-native and
traversal-based) and the extract() entry point that evaluates a sample of
trees on every row of a prediction grid.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.utils import check_random_state

from ..base import ForestBackend
from .diagnostics import Diagnostics
from .errors import InvalidArgument, PredictionExtractionError
from .grid_builder import PredictionGrid
from .tree_node import UNSEEN_POLICIES, UNSEEN_RAISE, DecisionTreeNode

logger = logging.getLogger(__name__)

DEFAULT_NUM_TREES = 500


class MatrixForestBackend(ForestBackend):
    """
    Forest exposing a batched "one value per tree" prediction primitive

    Parameters:
    -----------
    predict_all : callable
        predict_all(X) -> array of shape (n_samples, n_trees) or
        (n_samples, n_trees, n_outputs)
    n_trees : int
        Number of trees predict_all returns
    output_names : list, optional
        Output labels (["prediction"] if None)
    feature_names : list of str, optional
        Predictors the forest was fitted on
    encoder : callable, optional
        Turns the grid frame into whatever predict_all expects
    """

    def __init__(
        self,
        predict_all: Callable,
        n_trees: int,
        output_names: Optional[Sequence] = None,
        feature_names: Optional[Sequence[str]] = None,
        encoder: Optional[Callable] = None
    ):
        self._predict_all = predict_all
        self._n_trees = int(n_trees)
        self._output_names = list(output_names) if output_names is not None else ["prediction"]
        self._feature_names = list(feature_names) if feature_names is not None else None
        self.encoder = encoder

    @property
    def n_trees(self) -> int:
        return self._n_trees

    @property
    def output_names(self) -> List:
        return self._output_names

    @property
    def feature_names(self) -> Optional[List[str]]:
        return self._feature_names

    def predict_per_tree(self, X: pd.DataFrame, tree_ids: Sequence[int]) -> np.ndarray:
        batch = self.encoder(X) if self.encoder is not None else X
        matrix = np.asarray(self._predict_all(batch), dtype=float)
        if matrix.ndim == 2:
            matrix = matrix[:, :, np.newaxis]
        if matrix.ndim != 3 or matrix.shape[1] != self.n_trees:
            raise PredictionExtractionError(
                f"predict_all returned shape {matrix.shape}, expected "
                f"({X.shape[0]}, {self.n_trees}[, n_outputs])"
            )
        return matrix[:, list(tree_ids), :]


class TraversalForestBackend(ForestBackend):
    """
    Forest given as a collection of DecisionTreeNode roots

    Every selected tree is walked from its root for every grid row.

    Parameters:
    -----------
    trees : list of DecisionTreeNode
        Tree roots
    output_names : list, optional
        Output labels; ["prediction"] for single-output leaves, class indices
        otherwise
    feature_names : list of str, optional
        Predictors the forest was fitted on
    on_unseen_level : str, default="raise"
        "raise" or "majority", see DecisionTreeNode.predict
    """

    def __init__(
        self,
        trees: Sequence[DecisionTreeNode],
        output_names: Optional[Sequence] = None,
        feature_names: Optional[Sequence[str]] = None,
        on_unseen_level: str = UNSEEN_RAISE
    ):
        self.trees = list(trees)
        if not self.trees:
            raise InvalidArgument("A traversal forest needs at least one tree")
        if on_unseen_level not in UNSEEN_POLICIES:
            raise InvalidArgument(
                f"on_unseen_level must be one of {UNSEEN_POLICIES}, got {on_unseen_level!r}"
            )
        self.on_unseen_level = on_unseen_level
        # leaf width per tree, read once instead of at every split
        self.tree_widths = [tree.n_outputs for tree in self.trees]
        if output_names is None:
            n_outputs = self.tree_widths[0]
            output_names = ["prediction"] if n_outputs == 1 else list(range(n_outputs))
        self._output_names = list(output_names)
        self._feature_names = list(feature_names) if feature_names is not None else None

    @property
    def n_trees(self) -> int:
        return len(self.trees)

    @property
    def output_names(self) -> List:
        return self._output_names

    @property
    def feature_names(self) -> Optional[List[str]]:
        return self._feature_names

    def predict_per_tree(self, X: pd.DataFrame, tree_ids: Sequence[int]) -> np.ndarray:
        columns = [
            self.trees[tree_id].predict(
                X, on_unseen_level=self.on_unseen_level, n_outputs=self.tree_widths[tree_id]
            )
            for tree_id in tree_ids
        ]
        return np.stack(columns, axis=1)

    def get_info(self):
        info = super().get_info()
        info.update({
            "on_unseen_level": self.on_unseen_level,
            "max_depth": max(tree.get_depth() for tree in self.trees),
            "n_nodes": sum(tree.count_nodes() for tree in self.trees),
        })
        return info


@dataclass(frozen=True)
class TreePredictionTable:
    """
    Grid rows augmented with per-tree predictions

    Attributes:
    -----------
    grid : PredictionGrid
        Grid the predictions belong to
    values : array-like, shape=(n_rows, n_trees, n_outputs)
        Read-only prediction cube
    tree_ids : tuple of int
        Sampled trees, one per column of values
    output_names : tuple
        Output labels
    diagnostics : Diagnostics
        Extraction report
    """
    grid: PredictionGrid
    values: np.ndarray
    tree_ids: Tuple[int, ...]
    output_names: Tuple
    diagnostics: Diagnostics

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def n_trees(self) -> int:
        return self.values.shape[1]

    @property
    def n_outputs(self) -> int:
        return self.values.shape[2]

    def output_index(self, output) -> int:
        if output in self.output_names:
            return list(self.output_names).index(output)
        if isinstance(output, (int, np.integer)) and 0 <= output < self.n_outputs:
            return int(output)
        raise InvalidArgument(f"Unknown output {output!r}; available: {list(self.output_names)}")

    def output_values(self, output=None) -> np.ndarray:
        """
        Predictions of one output

        Returns:
        --------
        values : array-like, shape=(n_rows, n_trees)
        """
        if output is None:
            if self.n_outputs != 1:
                raise InvalidArgument(
                    f"Table has {self.n_outputs} outputs {list(self.output_names)}; choose one"
                )
            return self.values[:, :, 0]
        return self.values[:, :, self.output_index(output)]

    def to_frame(self) -> pd.DataFrame:
        """Long form: grid columns, row_id, tree, one column per output"""
        n_rows, n_trees, _ = self.values.shape
        frame = self.grid.frame.loc[np.repeat(self.grid.frame.index.to_numpy(), n_trees)]
        frame = frame.reset_index()
        frame["tree"] = np.tile(np.asarray(self.tree_ids), n_rows)
        flat = self.values.reshape(n_rows * n_trees, -1)
        for k, name in enumerate(self.output_names):
            frame[name] = flat[:, k]
        return frame


def sample_tree_ids(n_total: int, num_trees: int = DEFAULT_NUM_TREES, random_state=None) -> np.ndarray:
    """
    Choose which trees to evaluate

    Parameters:
    -----------
    n_total : int
        Trees in the forest
    num_trees : int, default=500
        Trees wanted; all trees are used when num_trees >= n_total
    random_state : int, RandomState or None
        Seed for uniform sampling without replacement

    Returns:
    --------
    tree_ids : array-like of int
        Ascending tree ids
    """
    if isinstance(num_trees, bool) or not isinstance(num_trees, (int, np.integer)) or num_trees < 1:
        raise InvalidArgument(f"num_trees must be a positive integer, got {num_trees!r}")
    if num_trees >= n_total:
        return np.arange(n_total)
    rng = check_random_state(random_state)
    return np.sort(rng.choice(n_total, size=num_trees, replace=False))


def _row_chunks(n_rows: int, chunk_size: Optional[int]) -> List[slice]:
    if chunk_size is None:
        return [slice(0, n_rows)]
    if chunk_size < 1:
        raise InvalidArgument(f"chunk_size must be >= 1, got {chunk_size}")
    return [slice(start, min(start + chunk_size, n_rows)) for start in range(0, n_rows, chunk_size)]


def _predict_chunk(backend: ForestBackend, X: pd.DataFrame, tree_ids: np.ndarray) -> np.ndarray:
    logger.debug("Predicting rows %d..%d with %d trees", X.index[0], X.index[-1], len(tree_ids))
    values = np.asarray(backend.predict_per_tree(X, tree_ids), dtype=float)
    if values.ndim == 2:
        values = values[:, :, np.newaxis]
    expected = (X.shape[0], len(tree_ids), backend.n_outputs)
    if values.shape != expected:
        raise PredictionExtractionError(
            f"{type(backend).__name__} returned shape {values.shape}, expected {expected}"
        )
    return values


def extract(
    forest,
    grid: PredictionGrid,
    num_trees: int = DEFAULT_NUM_TREES,
    random_state=None,
    chunk_size: Optional[int] = None,
    n_jobs: Optional[int] = 1,
    verbose: bool = False
) -> TreePredictionTable:
    """
    Evaluate a sample of trees on every grid row

    Parameters:
    -----------
    forest : ForestBackend or adaptable object
        A backend, a fitted scikit-learn forest, a list of DecisionTreeNode
        roots, or a predict_all callable (see as_forest_backend)
    grid : PredictionGrid
        Rows to evaluate
    num_trees : int, default=500
        Tree sample size
    random_state : int, RandomState or None
        Seed for tree sampling
    chunk_size : int, optional
        Grid rows per backend call (whole grid if None)
    n_jobs : int, default=1
        Parallel chunk workers (joblib threads); 1 runs inline
    verbose : bool, default=False
        Log grid size, tree count and estimated memory before extracting

    Returns:
    --------
    table : TreePredictionTable
        Complete table; any failure raises PredictionExtractionError and no
        partial table is returned
    """
    if not isinstance(forest, ForestBackend):
        from ...utils.model_interface import as_forest_backend
        forest = as_forest_backend(forest)

    tree_ids = sample_tree_ids(forest.n_trees, num_trees, random_state)
    chunks = _row_chunks(grid.n_rows, chunk_size)
    diagnostics = Diagnostics(
        grid_rows=grid.n_rows,
        n_trees=len(tree_ids),
        total_trees=forest.n_trees,
        n_outputs=forest.n_outputs,
        tree_ids=tuple(int(t) for t in tree_ids),
        estimated_bytes=Diagnostics.estimate_bytes(grid.n_rows, len(tree_ids), forest.n_outputs),
        grid_size_warning=grid.size_warning,
        n_chunks=len(chunks)
    )
    if num_trees > forest.n_trees:
        diagnostics.notes.append(
            f"num_trees={num_trees} exceeds forest size; using all {forest.n_trees} trees"
        )
    if verbose:
        logger.info("Extracting per-tree predictions: %s", diagnostics.summary())

    frame = grid.frame
    try:
        if n_jobs == 1 or len(chunks) == 1:
            parts = [_predict_chunk(forest, frame.iloc[rows], tree_ids) for rows in chunks]
        else:
            parts = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(_predict_chunk)(forest, frame.iloc[rows], tree_ids) for rows in chunks
            )
    except PredictionExtractionError:
        raise
    except Exception as exc:
        raise PredictionExtractionError(f"Per-tree prediction failed: {exc}") from exc

    values = np.concatenate(parts, axis=0)
    if np.isnan(values).any():
        raise PredictionExtractionError(
            f"{int(np.isnan(values).sum())} missing per-tree predictions"
        )
    values.flags.writeable = False

    if verbose:
        logger.info("Extracted %d x %d x %d prediction cube", *values.shape)

    return TreePredictionTable(
        grid=grid,
        values=values,
        tree_ids=diagnostics.tree_ids,
        output_names=tuple(forest.output_names),
        diagnostics=diagnostics
    )
