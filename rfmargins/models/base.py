"""
Forest Backend Base Class

This module provides the abstract base class every forest representation is
adapted to. The marginal-effects pipeline only ever talks to this interface,
so aggregation code never branches on the kind of forest.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd


class ForestBackend(ABC):
    """
    Abstract per-tree prediction capability

    Attributes:
    -----------
    n_trees : int
        Total number of trees in the forest
    output_names : list
        One name per output: ["prediction"] for regression, class labels for
        classification
    feature_names : list or None
        Predictors the forest was fitted on, when known
    """

    @property
    @abstractmethod
    def n_trees(self) -> int:
        pass

    @property
    @abstractmethod
    def output_names(self) -> List:
        pass

    @property
    def feature_names(self) -> Optional[List[str]]:
        return None

    @property
    def n_outputs(self) -> int:
        return len(self.output_names)

    @abstractmethod
    def predict_per_tree(self, X: pd.DataFrame, tree_ids: Sequence[int]) -> np.ndarray:
        """
        Predict every row with every selected tree

        Parameters:
        -----------
        X : pd.DataFrame, shape=(n_samples, n_features)
            Grid rows
        tree_ids : sequence of int
            Trees to evaluate

        Returns:
        --------
        predictions : array-like, shape=(n_samples, len(tree_ids), n_outputs)
        """
        pass

    def get_info(self):
        return {
            "backend": type(self).__name__,
            "n_trees": self.n_trees,
            "n_outputs": self.n_outputs,
            "output_names": list(self.output_names),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_trees={self.n_trees}, n_outputs={self.n_outputs})"
