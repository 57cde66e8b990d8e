import logging

import numpy as np
import pandas as pd
import pytest

from rfmargins import (
    DecisionTreeNode,
    InvalidArgument,
    TraversalForestBackend,
    average_contrasts,
    build_grid,
    compute_weights,
    contrasts,
    extract,
)


def level_forest(levels, scale):
    """One tree per scale factor, predicting scale * (level position) on 'k'"""
    trees = []
    for s in scale:
        node = DecisionTreeNode.leaf(s * (len(levels) - 1))
        for i in reversed(range(len(levels) - 1)):
            node = DecisionTreeNode(
                feature="k", left_levels=[levels[i]], right_levels=levels[i + 1:],
                left=DecisionTreeNode.leaf(s * i), right=node,
            )
        trees.append(node)
    return TraversalForestBackend(trees)


@pytest.fixture
def four_level_table():
    levels = ["a", "b", "c", "d"]
    data = pd.DataFrame({
        "k": pd.Categorical(levels * 3, categories=levels),
        "m": ["u", "v", "w"] * 4,
    })
    return data, extract(level_forest(levels, [1.0, 2.0]), build_grid(data))


def test_pair_count_and_names(four_level_table):
    _, table = four_level_table
    result = contrasts(table, "k")
    assert result.n_pairs == 6
    assert result.names == ("b - a", "c - a", "d - a", "c - b", "d - b", "d - c")
    assert result.values.shape == (3, 2, 6)
    assert result.peripheral_vars == ["m"]


def test_values_and_antisymmetry(four_level_table):
    _, table = four_level_table
    result = contrasts(table, "k")
    # tree scale 1 and 2, level positions 0..3
    np.testing.assert_array_equal(result.contrast("d", "a"), [[3.0, 6.0]] * 3)
    np.testing.assert_array_equal(result.contrast("a", "d"), -result.contrast("d", "a"))
    np.testing.assert_array_equal(result.contrast("c", "b"), [[1.0, 2.0]] * 3)
    with pytest.raises(InvalidArgument):
        result.contrast("a", "zzz")


def test_contrast_values_read_only(four_level_table):
    _, table = four_level_table
    result = contrasts(table, "k")
    with pytest.raises(ValueError):
        result.values[0, 0, 0] = 1.0


def test_binary_sign(scenario_table):
    result = contrasts(scenario_table, "T")
    assert result.names == ("B - A",)
    # tree 0 moves from 1 to 2, the others ignore T
    np.testing.assert_array_equal(result.values[:, :, 0], [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    assert list(result.frame["P"]) == ["x", "y"]
    np.testing.assert_array_equal(result.row_ids, [[0, 2], [1, 3]])


def test_direction_message_logged(scenario_table, caplog):
    with caplog.at_level(logging.INFO, logger="rfmargins"):
        result = contrasts(scenario_table, "T")
    assert "later level minus earlier level" in result.message
    assert "'B - A' = prediction(B) - prediction(A)" in result.message
    assert result.message in caplog.text


def test_wide_frame(scenario_table):
    frame = contrasts(scenario_table, "T").to_frame()
    assert list(frame.columns) == ["P", "tree", "B - A"]
    assert len(frame) == 6
    assert frame["B - A"].tolist() == [1.0, 0.0, 0.0, 1.0, 0.0, 0.0]


def test_average_contrast_scenario(scenario_data, scenario_table):
    result = contrasts(scenario_table, "T")
    weights = compute_weights(scenario_data, scenario_table.grid, ["T"])
    summary = average_contrasts(result, weights, interval=(0.0, 1.0))
    assert list(summary.columns) == ["contrast", "prediction", "lower", "upper", "weight"]
    assert summary.loc[0, "prediction"] == pytest.approx(1.0 / 3.0)
    assert (summary.loc[0, "lower"], summary.loc[0, "upper"]) == (0.0, 1.0)
    assert summary.loc[0, "weight"] == pytest.approx(1.0)


def test_average_contrast_by(scenario_data, scenario_table):
    result = contrasts(scenario_table, "T")
    weights = compute_weights(scenario_data, scenario_table.grid, ["T", "P"])
    summary = average_contrasts(result, weights, by=["P"])
    assert list(summary["P"]) == ["x", "y"]
    assert summary["prediction"].tolist() == pytest.approx([1.0 / 3.0, 1.0 / 3.0])
    assert isinstance(summary["P"].dtype, pd.CategoricalDtype)


def test_median_contrast_zero_when_variable_unused():
    p_levels = [f"p{i:02d}" for i in range(50)]
    data = pd.DataFrame({
        "T": ["A", "B"] * 50,
        "P": np.repeat(p_levels, 2),
    })
    trees = []
    for shift in range(5):
        node = DecisionTreeNode.leaf(float(shift))
        for i in reversed(range(49)):
            node = DecisionTreeNode(
                feature="P", left_levels=[p_levels[i]], right_levels=p_levels[i + 1:],
                left=DecisionTreeNode.leaf(float(i * shift)), right=node,
            )
        trees.append(node)
    table = extract(TraversalForestBackend(trees), build_grid(data, ["T", "P"]))
    result = contrasts(table, "T")
    summary = average_contrasts(result, compute_weights(data, table.grid, ["T"]), interval=(0.5, 0.5))
    assert summary.loc[0, "lower"] == 0.0
    assert summary.loc[0, "prediction"] == pytest.approx(0.0)


def test_requires_contrasted_variable_in_targets(scenario_data, scenario_table):
    result = contrasts(scenario_table, "T")
    weights = compute_weights(scenario_data, scenario_table.grid, ["P"])
    with pytest.raises(InvalidArgument):
        average_contrasts(result, weights)


def test_invalid_contrast_requests(scenario_table):
    with pytest.raises(InvalidArgument):
        contrasts(scenario_table, "Q")

    data = pd.DataFrame({"g": ["a", "a"], "h": ["x", "y"]})
    single = extract(TraversalForestBackend([DecisionTreeNode.leaf(1.0)]), build_grid(data))
    with pytest.raises(InvalidArgument):
        contrasts(single, "g")


def test_multi_output_needs_output():
    tree = DecisionTreeNode(
        feature="g", left_levels=["a"], right_levels=["b"],
        left=DecisionTreeNode.leaf([0.9, 0.1]),
        right=DecisionTreeNode.leaf([0.3, 0.7]),
    )
    data = pd.DataFrame({"g": ["a", "b"]})
    table = extract(TraversalForestBackend([tree], output_names=["neg", "pos"]), build_grid(data))
    with pytest.raises(InvalidArgument):
        contrasts(table, "g")
    result = contrasts(table, "g", output="pos")
    assert result.output == "pos"
    np.testing.assert_allclose(result.values[:, :, 0], [[0.6]])
