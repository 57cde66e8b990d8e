"""
Decision Tree Node Implementation

This module contains the DecisionTreeNode class used by the traversal-based
forest backend. A node either splits on a named feature (numeric threshold
or categorical subset membership) or is a leaf holding a numeric value or a
class-probability vector.
"""

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .errors import LevelNotFound, PredictionExtractionError

logger = logging.getLogger(__name__)

UNSEEN_RAISE = "raise"
UNSEEN_MAJORITY = "majority"
UNSEEN_POLICIES = (UNSEEN_RAISE, UNSEEN_MAJORITY)


class DecisionTreeNode:
    """
    Decision tree node

    Attributes:
    -----------
    feature : str or None
        Split variable name (None for leaves)
    threshold : float or None
        Numeric split: rows with value <= threshold go left
    left_levels : frozenset or None
        Categorical split: levels routed to the left child
    right_levels : frozenset or None
        Categorical split: levels routed to the right child. When None, every
        level not in left_levels goes right and no level is ever unseen.
    left : DecisionTreeNode or None
        Left child
    right : DecisionTreeNode or None
        Right child
    values : array-like, shape=(n_outputs,) or None
        Leaf prediction (one value for regression, class probabilities for
        classification)
    n_samples : int
        Training samples that reached this node
    node_id : int
        Node id
    depth : int
        Node depth
    """

    def __init__(
        self,
        feature: Optional[str] = None,
        threshold: Optional[float] = None,
        left_levels: Optional[Iterable] = None,
        right_levels: Optional[Iterable] = None,
        left: Optional["DecisionTreeNode"] = None,
        right: Optional["DecisionTreeNode"] = None,
        values=None,
        n_samples: int = 0,
        node_id: int = 0,
        depth: int = 0
    ):
        self.feature = feature
        self.threshold = threshold
        self.left_levels = frozenset(left_levels) if left_levels is not None else None
        self.right_levels = frozenset(right_levels) if right_levels is not None else None
        self.left = left
        self.right = right
        self.values = None if values is None else np.atleast_1d(np.asarray(values, dtype=float))
        self.n_samples = n_samples
        self.node_id = node_id
        self.depth = depth

    @classmethod
    def leaf(cls, values, n_samples: int = 0, **kwargs) -> "DecisionTreeNode":
        return cls(values=values, n_samples=n_samples, **kwargs)

    @property
    def is_leaf(self) -> bool:
        return self.feature is None

    @property
    def is_categorical_split(self) -> bool:
        return self.left_levels is not None

    @property
    def n_outputs(self) -> int:
        """Width of the first leaf reached by always going left"""
        node = self
        while not node.is_leaf:
            if node.left is None:
                raise PredictionExtractionError(
                    f"Split node {node.node_id} on '{node.feature}' has no left child"
                )
            node = node.left
        if node.values is None:
            raise PredictionExtractionError(f"Leaf {node.node_id} has no values")
        return node.values.size

    def _majority_goes_left(self) -> bool:
        left_n = self.left.n_samples if self.left is not None else 0
        right_n = self.right.n_samples if self.right is not None else 0
        return left_n >= right_n

    def _split_mask(self, column: pd.Series, on_unseen_level: str) -> np.ndarray:
        """Boolean mask of rows that go to the left child"""
        if not self.is_categorical_split:
            if self.threshold is None:
                raise PredictionExtractionError(
                    f"Split node {self.node_id} on '{self.feature}' has neither threshold nor levels"
                )
            try:
                x = column.to_numpy(dtype=float)
            except (TypeError, ValueError) as exc:
                raise PredictionExtractionError(
                    f"Numeric split on '{self.feature}' got non-numeric values"
                ) from exc
            return x <= self.threshold

        values = column.astype(object)
        mask = values.isin(list(self.left_levels)).to_numpy()
        if self.right_levels is None:
            return mask

        unseen = ~mask & ~values.isin(list(self.right_levels)).to_numpy()
        if np.any(unseen):
            levels = pd.unique(values[unseen])
            if on_unseen_level == UNSEEN_RAISE:
                raise LevelNotFound(self.feature, levels)
            go_left = self._majority_goes_left()
            logger.warning(
                "Routing %d row(s) with unseen level(s) %s of '%s' to the %s child of node %d",
                int(unseen.sum()), list(levels), self.feature,
                "left" if go_left else "right", self.node_id
            )
            if go_left:
                mask = mask | unseen
        return mask

    def predict(self, X: pd.DataFrame, on_unseen_level: str = UNSEEN_RAISE,
                n_outputs: Optional[int] = None) -> np.ndarray:
        """
        Route every row of X to a leaf and read its values

        Parameters:
        -----------
        X : pd.DataFrame, shape=(n_samples, n_features)
            Rows to evaluate; must contain every split feature
        on_unseen_level : str, default="raise"
            "raise" raises LevelNotFound for a categorical value that matches
            neither branch, "majority" routes it to the child with more
            training samples (left on ties)
        n_outputs : int, optional
            Leaf width shared by the whole tree; worked out once at the root
            when None and handed down to every child

        Returns:
        --------
        predictions : array-like, shape=(n_samples, n_outputs)
        """
        if self.is_leaf:
            if self.values is None:
                raise PredictionExtractionError(f"Leaf {self.node_id} has no values")
            return np.tile(self.values, (X.shape[0], 1))

        if self.left is None or self.right is None:
            raise PredictionExtractionError(
                f"Split node {self.node_id} on '{self.feature}' is missing a child"
            )
        if self.feature not in X.columns:
            raise PredictionExtractionError(f"Split feature '{self.feature}' not in grid")

        mask = self._split_mask(X[self.feature], on_unseen_level)
        if n_outputs is None:
            n_outputs = self.n_outputs
        predictions = np.empty((X.shape[0], n_outputs))

        for child, rows in ((self.left, mask), (self.right, ~mask)):
            if not np.any(rows):
                continue
            child_pred = child.predict(X[rows], on_unseen_level, n_outputs)
            if child_pred.shape[1] != n_outputs:
                raise PredictionExtractionError(
                    f"Leaves under node {self.node_id} disagree on output width "
                    f"({child_pred.shape[1]} vs {n_outputs})"
                )
            predictions[rows] = child_pred

        return predictions

    def get_depth(self) -> int:
        if self.is_leaf:
            return 0

        left_depth = self.left.get_depth() if self.left else 0
        right_depth = self.right.get_depth() if self.right else 0

        return 1 + max(left_depth, right_depth)

    def count_nodes(self) -> int:
        if self.is_leaf:
            return 1

        left_count = self.left.count_nodes() if self.left else 0
        right_count = self.right.count_nodes() if self.right else 0

        return 1 + left_count + right_count

    def __str__(self) -> str:
        if self.is_leaf:
            return f"Leaf(id={self.node_id}, depth={self.depth}, samples={self.n_samples}, values={self.values})"
        if self.is_categorical_split:
            return (f"Node(id={self.node_id}, depth={self.depth}, samples={self.n_samples}, "
                    f"feature={self.feature}, left_levels={sorted(map(str, self.left_levels))})")
        return (f"Node(id={self.node_id}, depth={self.depth}, samples={self.n_samples}, "
                f"feature={self.feature}, threshold={self.threshold:.4f})")

    def __repr__(self) -> str:
        return self.__str__()
