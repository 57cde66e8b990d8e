import warnings

import numpy as np
import pandas as pd
import pytest

from rfmargins import GridSizeWarning, InvalidArgument, build_grid
from rfmargins.models.margin_components.grid_builder import (
    CATEGORICAL,
    CONTINUOUS,
    build_predictor_specs,
)


def test_grid_is_complete_and_distinct(mixed_data):
    grid = build_grid(mixed_data, ["group", "x", "flag"], n_breaks=4)
    cardinalities = [grid.specs[name].cardinality for name in grid.predictors]
    assert cardinalities == [3, 4, 2]
    assert grid.n_rows == 3 * 4 * 2
    assert not grid.frame.duplicated().any()
    assert not grid.frame.isna().any().any()
    assert list(grid.frame.index) == list(range(24))


def test_kinds(mixed_data):
    specs = build_predictor_specs(mixed_data, ["group", "x", "flag"])
    assert specs["group"].kind == CATEGORICAL
    assert specs["x"].kind == CONTINUOUS
    assert specs["flag"].kind == CATEGORICAL


def test_row_order_is_predictor_major(scenario_data):
    grid = build_grid(scenario_data, ["T", "P"])
    rows = [tuple(r) for r in grid.frame.astype(object).itertuples(index=False)]
    assert rows == [("A", "x"), ("A", "y"), ("B", "x"), ("B", "y")]


def test_categorical_order_follows_declared_categories():
    data = pd.DataFrame({"level": pd.Categorical(["hi", "lo", "mid", "lo"], categories=["lo", "mid", "hi"])})
    grid = build_grid(data)
    assert list(grid.frame["level"]) == ["lo", "mid", "hi"]
    assert list(grid.frame["level"].cat.categories) == ["lo", "mid", "hi"]


def test_unobserved_category_is_not_a_grid_value():
    data = pd.DataFrame({"c": pd.Categorical(["a", "a", "c"], categories=["a", "b", "c"])})
    grid = build_grid(data)
    assert grid.levels("c") == ("a", "c")
    # dtype still carries the full level set so category codes stay stable
    assert list(grid.frame["c"].cat.codes) == [0, 2]


def test_explicit_breaks_used_verbatim():
    data = pd.DataFrame({"z": np.linspace(0.0, 50.0, 40)})
    grid = build_grid(data, breaks={"z": [4, 1, 2, 3, 3]})
    assert grid.levels("z") == (1.0, 2.0, 3.0, 4.0)
    assert list(grid.frame["z"]) == [1.0, 2.0, 3.0, 4.0]


def test_breaks_restrict_categorical_levels(mixed_data):
    grid = build_grid(mixed_data, ["group"], breaks={"group": ["c", "a"]})
    assert grid.levels("group") == ("a", "c")


def test_unknown_names_rejected(mixed_data):
    with pytest.raises(InvalidArgument):
        build_grid(mixed_data, ["group", "nope"])
    with pytest.raises(InvalidArgument):
        build_grid(mixed_data, ["group"], breaks={"x": [1, 2]})
    with pytest.raises(InvalidArgument):
        build_grid(mixed_data, ["group"], breaks={"group": ["zzz"]})


def test_bad_n_breaks(mixed_data):
    with pytest.raises(InvalidArgument):
        build_grid(mixed_data, ["x"], n_breaks=1)


def test_size_warning_is_advisory(mixed_data):
    with pytest.warns(GridSizeWarning):
        grid = build_grid(mixed_data, ["group", "x", "flag"], n_breaks=4, max_rows=5)
    assert grid.n_rows == 24
    assert grid.size_warning


def test_no_warning_under_bound(mixed_data):
    with warnings.catch_warnings():
        warnings.simplefilter("error", GridSizeWarning)
        grid = build_grid(mixed_data, ["group"], max_rows=10)
    assert not grid.size_warning


def test_object_columns_are_categorical():
    data = pd.DataFrame({"s": ["b", "a", None, "b"], "n": [1.0, 2.0, 3.0, np.nan]})
    grid = build_grid(data)
    assert grid.levels("s") == ("a", "b")
    assert grid.levels("n") == (1.0, 2.0, 3.0)
    assert grid.n_rows == 6


@pytest.mark.parametrize("name", ["weight", "prediction", "lower", "upper", "class",
                                  "contrast", "tree", "row_id", "proportion"])
def test_output_column_names_rejected(name):
    data = pd.DataFrame({name: ["light", "heavy", "light"], "P": ["x", "y", "x"]})
    with pytest.raises(InvalidArgument, match="clash"):
        build_grid(data)
    # unmodeled columns with those names are fine
    grid = build_grid(data, ["P"])
    assert grid.predictors == ["P"]
