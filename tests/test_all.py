"""
End-to-end tests of the ForestMargins pipeline

Fits small scikit-learn forests, then checks that margins, contrasts and
diagnostics are consistent with each other and with the forest itself.
"""

import logging

import numpy as np
import pandas as pd
import pytest

from rfmargins import (
    ForestMargins,
    GridSizeWarning,
    InvalidArgument,
    MatrixForestBackend,
    SklearnForestBackend,
    forest_margins,
)

FEATURES = ["color", "size"]


@pytest.fixture
def margins(integer_data, sklearn_regressor):
    backend = SklearnForestBackend(sklearn_regressor, feature_names=FEATURES)
    return ForestMargins(backend, integer_data, num_trees=8, random_state=0)


def test_predictors_default_to_forest_features(margins):
    assert margins.predictors == FEATURES
    assert margins.predictions is None
    assert "not fitted" in repr(margins)


def test_marginals_follow_effect(margins):
    summary = margins.marginals(["color"])
    assert list(summary["color"]) == ["red", "green", "blue"]
    prediction = summary["prediction"].to_numpy()
    # true effects 0, 2, 5
    assert prediction[0] < prediction[1] < prediction[2]
    assert np.all(summary["lower"] <= summary["upper"])
    np.testing.assert_allclose(summary["weight"], 1.0)


def test_extraction_is_reused(margins, monkeypatch):
    margins.fit()
    first = margins.predictions

    def fail(*args, **kwargs):
        raise AssertionError("per-tree predictions re-extracted")

    monkeypatch.setattr(margins.backend, "predict_per_tree", fail)
    margins.marginals(["color"])
    margins.marginals(["size"], wt="joint")
    margins.avg_contrasts("color", by=["size"])
    assert margins.predictions is first


def test_diagnostics(margins):
    diag = margins.diagnostics
    assert diag.grid_rows == 30
    assert diag.n_trees == 8
    assert diag.total_trees == 12
    assert len(diag.tree_ids) == 8
    assert diag.estimated_bytes == 30 * 8 * 8
    info = margins.get_info()
    assert info["is_fitted"]
    assert info["diagnostics"]["grid_rows"] == 30


def test_weighted_mean_matches_manual(margins, integer_data):
    summary = margins.marginals(["color"])
    size_share = integer_data["size"].astype(float).value_counts(normalize=True)
    table = margins.predictions
    frame = table.grid.frame
    rows = frame["color"] == "green"
    w = frame.loc[rows, "size"].map(size_share).to_numpy()
    tree_mean = table.output_values()[rows.to_numpy()].mean(axis=1)
    assert summary.loc[1, "prediction"] == pytest.approx(np.sum(w * tree_mean) / np.sum(w))


def test_equal_wt_changes_weights(margins):
    iso = margins.weights(["color"])
    flat = margins.weights(["color"], equal_wt=["size"])
    assert not np.allclose(iso.weights, flat.weights)
    np.testing.assert_allclose(flat.weights, 0.1)


def test_contrasts_and_average(margins):
    table = margins.contrasts("color")
    assert table.names == ("green - red", "blue - red", "blue - green")
    summary = margins.avg_contrasts("color")
    assert list(summary["contrast"]) == list(table.names)
    assert summary.set_index("contrast").loc["blue - red", "prediction"] > 0

    by_size = margins.avg_contrasts("color", by=["size"])
    assert len(by_size) == 3 * 10
    assert list(by_size.columns) == ["size", "contrast", "prediction", "lower", "upper", "weight"]


def test_avg_contrast_argument_checks(margins):
    with pytest.raises(InvalidArgument):
        margins.avg_contrasts("color", by=["color"])
    with pytest.raises(InvalidArgument):
        margins.marginals(["weight"])


def test_classifier_margins(integer_data, sklearn_classifier):
    backend = SklearnForestBackend(sklearn_classifier, feature_names=FEATURES)
    fm = ForestMargins(backend, integer_data)
    summary = fm.marginals(["color"])
    assert list(summary.columns) == ["color", "class", "prediction", "lower", "upper", "weight"]
    totals = summary.groupby("color", observed=True)["prediction"].sum()
    np.testing.assert_allclose(totals, 1.0)

    high = fm.marginals(["color"], output="high")
    assert len(high) == 3
    with pytest.raises(InvalidArgument):
        fm.contrasts("color")
    assert fm.contrasts("color", output="high").output == "high"


def test_forest_margins_function(integer_data, sklearn_regressor):
    summary = forest_margins(
        SklearnForestBackend(sklearn_regressor, feature_names=FEATURES),
        integer_data,
        ["size"],
        num_trees=5,
        random_state=1,
        interval=(0.1, 0.9)
    )
    assert list(summary["size"]) == [float(v) for v in range(10)]


def test_unnamed_sklearn_forest_with_explicit_predictors(integer_data, sklearn_regressor):
    fm = ForestMargins(sklearn_regressor, integer_data, predictors=FEATURES, num_trees=4)
    assert fm.marginals("color").shape[0] == 3


def test_grid_size_warning_surfaces(integer_data, sklearn_regressor):
    backend = SklearnForestBackend(sklearn_regressor, feature_names=FEATURES)
    fm = ForestMargins(backend, integer_data, num_trees=2, max_grid_rows=10)
    with pytest.warns(GridSizeWarning):
        fm.fit()
    assert fm.diagnostics.grid_size_warning


def test_joint_coverage_logged(caplog):
    data = pd.DataFrame({
        "T": ["A", "B", "A", "B"],
        "P": pd.Categorical(["x", "x", "y", "z"], categories=["x", "y", "z"]),
    })

    def predict_all(X):
        return np.ones((len(X), 3))

    fm = ForestMargins(MatrixForestBackend(predict_all, n_trees=3), data,
                       breaks={"P": ["x", "y"]}, wt="joint")
    with caplog.at_level(logging.INFO, logger="rfmargins"):
        summary = fm.marginals(["T"])
    np.testing.assert_allclose(summary["weight"], 0.75)
    assert "less than the full training mass" in caplog.text


@pytest.mark.parametrize("kwargs", [
    {"n_breaks": 1},
    {"wt": "flat"},
    {"equal_wt": ["nope"]},
    {"interval": (0.9, 0.1)},
    {"breaks": {"nope": [1]}},
    {"predictors": ["color", "nope"]},
])
def test_constructor_validation(integer_data, sklearn_regressor, kwargs):
    with pytest.raises(InvalidArgument):
        ForestMargins(sklearn_regressor, integer_data, **kwargs)


def test_data_must_be_frame(sklearn_regressor):
    with pytest.raises(InvalidArgument):
        ForestMargins(sklearn_regressor, np.zeros((3, 2)))


def test_reserved_predictor_name_rejected_up_front(toy_forest):
    data = pd.DataFrame({
        "weight": pd.Categorical(["light", "heavy"] * 3),
        "P": ["x", "y", "x", "y", "x", "x"],
    })
    with pytest.raises(InvalidArgument, match="weight"):
        ForestMargins(toy_forest, data, predictors=["weight", "P"])


def test_public_names_exported():
    import rfmargins

    assert "ForestMargins" in rfmargins.__all__
    for name in rfmargins.__all__:
        assert hasattr(rfmargins, name)
