"""
Shared pytest fixtures for the rfmargins test suite.

Provides small training datasets with known distributions, a hand-built
traversal forest with known per-tree predictions, and fitted scikit-learn
forests.
"""

import numpy as np
import pandas as pd
import pytest
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor

from rfmargins import DecisionTreeNode, TraversalForestBackend, build_grid, extract
from rfmargins.utils import categories_from_data, encode_frame


@pytest.fixture
def scenario_data() -> pd.DataFrame:
    """T in {A, B}; P in {x, y} with P(x) = 0.6, P(y) = 0.4"""
    return pd.DataFrame({
        "T": pd.Categorical(["A", "B"] * 5, categories=["A", "B"]),
        "P": pd.Categorical(["x"] * 6 + ["y"] * 4, categories=["x", "y"]),
    })


@pytest.fixture
def toy_forest() -> TraversalForestBackend:
    """
    Three trees with known outputs on the scenario grid
    (rows (A,x), (A,y), (B,x), (B,y)):

    tree 0: T == A -> 1.0, T == B -> 2.0
    tree 1: P == x -> 10.0, P == y -> 20.0
    tree 2: constant 0.5
    """
    tree_t = DecisionTreeNode(
        feature="T", left_levels=["A"], right_levels=["B"],
        left=DecisionTreeNode.leaf(1.0, n_samples=5),
        right=DecisionTreeNode.leaf(2.0, n_samples=5),
    )
    tree_p = DecisionTreeNode(
        feature="P", left_levels=["x"], right_levels=["y"],
        left=DecisionTreeNode.leaf(10.0, n_samples=6),
        right=DecisionTreeNode.leaf(20.0, n_samples=4),
    )
    tree_c = DecisionTreeNode.leaf(0.5, n_samples=10)
    return TraversalForestBackend([tree_t, tree_p, tree_c], feature_names=["T", "P"])


@pytest.fixture
def scenario_table(scenario_data, toy_forest):
    grid = build_grid(scenario_data, ["T", "P"])
    return extract(toy_forest, grid, num_trees=3)


@pytest.fixture
def mixed_data() -> pd.DataFrame:
    rng = np.random.RandomState(0)
    n = 200
    return pd.DataFrame({
        "group": pd.Categorical(rng.choice(["a", "b", "c"], size=n), categories=["a", "b", "c"]),
        "x": rng.uniform(0, 100, size=n),
        "flag": rng.rand(n) > 0.5,
    })


@pytest.fixture
def integer_data() -> pd.DataFrame:
    """Integer-valued features so scikit-learn thresholds never tie with grid values"""
    rng = np.random.RandomState(1)
    n = 300
    data = pd.DataFrame({
        "color": pd.Categorical(rng.choice(["red", "green", "blue"], size=n),
                                categories=["red", "green", "blue"]),
        "size": rng.randint(0, 10, size=n),
    })
    effect = data["color"].map({"red": 0.0, "green": 2.0, "blue": 5.0}).astype(float)
    data["y"] = effect + 0.5 * data["size"] + rng.normal(scale=0.1, size=n)
    data["label"] = np.where(effect + 0.5 * data["size"] > 4, "high", "low")
    return data


@pytest.fixture
def sklearn_regressor(integer_data):
    features = ["color", "size"]
    model = RandomForestRegressor(n_estimators=12, max_depth=4, random_state=0)
    model.fit(encode_frame(integer_data, features), integer_data["y"])
    return model


@pytest.fixture
def sklearn_classifier(integer_data):
    features = ["color", "size"]
    model = RandomForestClassifier(n_estimators=12, max_depth=4, random_state=0)
    model.fit(encode_frame(integer_data, features), integer_data["label"])
    return model


@pytest.fixture
def integer_categories(integer_data):
    return categories_from_data(integer_data, ["color", "size"])
