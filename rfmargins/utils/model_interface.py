"""
Third-party forest adapters

This module adapts fitted scikit-learn forests to the ForestBackend
interface, either directly (one predict call per sampled estimator) or by
converting every fitted tree into DecisionTreeNode structures for the
traversal backend.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.base import is_classifier

from ..models.base import ForestBackend
from ..models.margin_components.errors import InvalidArgument
from ..models.margin_components.forest_predictor import TraversalForestBackend
from ..models.margin_components.tree_node import UNSEEN_RAISE, DecisionTreeNode

logger = logging.getLogger(__name__)


def encode_frame(X: pd.DataFrame, feature_names: Sequence[str]) -> np.ndarray:
    """
    Numeric matrix in feature order; categorical columns become category codes

    The codes follow the column's CategoricalDtype, which the grid copies from
    the training data, so they match codes used when the forest was fitted
    on `data[col].cat.codes`.
    """
    missing = [name for name in feature_names if name not in X.columns]
    if missing:
        raise InvalidArgument(f"Grid lacks forest feature(s): {missing}")
    columns = []
    for name in feature_names:
        column = X[name]
        if isinstance(column.dtype, pd.CategoricalDtype):
            columns.append(column.cat.codes.to_numpy(dtype=float))
        else:
            columns.append(column.to_numpy(dtype=float))
    return np.column_stack(columns)


def _check_fitted_forest(model) -> None:
    if not hasattr(model, "estimators_") or len(model.estimators_) == 0:
        raise InvalidArgument(f"{type(model).__name__} is not a fitted tree ensemble")


def _resolve_feature_names(model, feature_names: Optional[Sequence[str]]) -> Optional[List[str]]:
    if feature_names is not None:
        return list(feature_names)
    if hasattr(model, "feature_names_in_"):
        return [str(name) for name in model.feature_names_in_]
    return None


def _output_names(model) -> List:
    n_outputs = getattr(model, "n_outputs_", 1)
    if is_classifier(model):
        if n_outputs != 1:
            raise InvalidArgument("Multi-output classification forests are not supported")
        return list(model.classes_)
    if n_outputs == 1:
        return ["prediction"]
    return [f"prediction_{i}" for i in range(n_outputs)]


class SklearnForestBackend(ForestBackend):
    """
    Matrix-native backend for fitted scikit-learn forests

    Parameters:
    -----------
    model : RandomForestRegressor, RandomForestClassifier, ExtraTrees*, ...
        Fitted ensemble exposing estimators_
    feature_names : list of str, optional
        Column order the forest was fitted with (defaults to
        model.feature_names_in_)
    encoder : callable, optional
        encoder(frame, feature_names) -> numeric matrix (encode_frame if None)
    """

    def __init__(self, model, feature_names: Optional[Sequence[str]] = None, encoder=None):
        _check_fitted_forest(model)
        self.model = model
        self._feature_names = _resolve_feature_names(model, feature_names)
        self._output_names = _output_names(model)
        self.encoder = encoder or encode_frame
        self.is_classifier = is_classifier(model)

    @property
    def n_trees(self) -> int:
        return len(self.model.estimators_)

    @property
    def output_names(self) -> List:
        return self._output_names

    @property
    def feature_names(self) -> Optional[List[str]]:
        return self._feature_names

    def predict_per_tree(self, X: pd.DataFrame, tree_ids: Sequence[int]) -> np.ndarray:
        feature_names = self._feature_names or list(X.columns)
        matrix = self.encoder(X, feature_names)
        columns = []
        for tree_id in tree_ids:
            estimator = self.model.estimators_[tree_id]
            if self.is_classifier:
                pred = estimator.predict_proba(matrix)
            else:
                pred = estimator.predict(matrix)
            pred = np.asarray(pred, dtype=float)
            if pred.ndim == 1:
                pred = pred[:, np.newaxis]
            columns.append(pred)
        return np.stack(columns, axis=1)


def tree_from_sklearn(
    estimator,
    feature_names: Sequence[str],
    categories: Optional[Mapping[str, Sequence]] = None
) -> DecisionTreeNode:
    """
    Convert a fitted scikit-learn decision tree into DecisionTreeNode form

    Parameters:
    -----------
    estimator : DecisionTreeRegressor or DecisionTreeClassifier
        Fitted tree
    feature_names : list of str
        Name of every column of the training matrix
    categories : dict, optional
        feature name -> ordered levels for features fitted on category codes.
        Their threshold splits become subset splits: levels with code <=
        threshold go left, the remaining known levels go right, anything else
        is an unseen level.

    Returns:
    --------
    root : DecisionTreeNode
    """
    tree_ = estimator.tree_
    feature = tree_.feature
    threshold = tree_.threshold
    children_left = tree_.children_left
    children_right = tree_.children_right
    value = tree_.value
    n_node_samples = tree_.n_node_samples
    classifier = is_classifier(estimator)
    categories = dict(categories or {})

    def _leaf_values(node_id: int) -> np.ndarray:
        if classifier:
            counts = value[node_id, 0, :].astype(float)
            total = counts.sum()
            return counts / total if total > 0 else counts
        return value[node_id, :, 0].astype(float)

    def _build(node_id: int, depth: int) -> DecisionTreeNode:
        if children_left[node_id] == children_right[node_id]:
            return DecisionTreeNode.leaf(
                _leaf_values(node_id),
                n_samples=int(n_node_samples[node_id]),
                node_id=node_id,
                depth=depth
            )

        name = feature_names[feature[node_id]]
        thresh = float(threshold[node_id])
        split = {}
        if name in categories:
            levels = list(categories[name])
            split["left_levels"] = [lvl for code, lvl in enumerate(levels) if code <= thresh]
            split["right_levels"] = [lvl for code, lvl in enumerate(levels) if code > thresh]
        else:
            split["threshold"] = thresh

        return DecisionTreeNode(
            feature=name,
            left=_build(children_left[node_id], depth + 1),
            right=_build(children_right[node_id], depth + 1),
            n_samples=int(n_node_samples[node_id]),
            node_id=node_id,
            depth=depth,
            **split
        )

    return _build(0, 0)


def traversal_backend_from_sklearn(
    model,
    feature_names: Optional[Sequence[str]] = None,
    categories: Optional[Mapping[str, Sequence]] = None,
    on_unseen_level: str = UNSEEN_RAISE
) -> TraversalForestBackend:
    """
    Traversal backend equivalent of a fitted scikit-learn forest

    Parameters:
    -----------
    model : fitted scikit-learn forest
        Ensemble exposing estimators_
    feature_names : list of str, optional
        Training column order (defaults to model.feature_names_in_)
    categories : dict, optional
        See tree_from_sklearn
    on_unseen_level : str, default="raise"
        Policy for categorical levels outside a split's known levels

    Returns:
    --------
    backend : TraversalForestBackend
    """
    _check_fitted_forest(model)
    feature_names = _resolve_feature_names(model, feature_names)
    if feature_names is None:
        raise InvalidArgument("feature_names are required for forests fitted without column names")
    trees = [tree_from_sklearn(est, feature_names, categories) for est in model.estimators_]
    logger.debug("Converted %d scikit-learn trees to traversal form", len(trees))
    return TraversalForestBackend(
        trees,
        output_names=_output_names(model),
        feature_names=feature_names,
        on_unseen_level=on_unseen_level
    )


def categories_from_data(data: pd.DataFrame, feature_names: Sequence[str]) -> Dict[str, List]:
    """Declared levels of every categorical feature, in category-code order"""
    out = {}
    for name in feature_names:
        column = data[name]
        if isinstance(column.dtype, pd.CategoricalDtype):
            out[name] = list(column.cat.categories)
        elif not pd.api.types.is_numeric_dtype(column.dtype) or pd.api.types.is_bool_dtype(column.dtype):
            out[name] = sorted(column.dropna().unique().tolist())
    return out


def as_forest_backend(forest, feature_names: Optional[Sequence[str]] = None) -> ForestBackend:
    """
    Wrap a forest object into a ForestBackend

    Accepts an existing backend, a fitted scikit-learn ensemble or a list of
    DecisionTreeNode roots.
    """
    if isinstance(forest, ForestBackend):
        return forest
    if hasattr(forest, "estimators_"):
        return SklearnForestBackend(forest, feature_names=feature_names)
    if isinstance(forest, (list, tuple)) and forest and all(
            isinstance(tree, DecisionTreeNode) for tree in forest):
        return TraversalForestBackend(forest, feature_names=feature_names)
    raise InvalidArgument(
        f"Cannot use {type(forest).__name__} as a forest; pass a ForestBackend, "
        f"a fitted scikit-learn ensemble or a list of DecisionTreeNode"
    )
