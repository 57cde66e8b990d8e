"""
Continuous Variable Binning

This module contains the equal-width binning used to turn continuous
predictors into a small ordered set of representative values.
"""

import numbers

import numpy as np

from .errors import InvalidArgument


def check_n_breaks(n_breaks) -> int:
    if isinstance(n_breaks, bool) or not isinstance(n_breaks, numbers.Integral):
        raise InvalidArgument(f"n_breaks must be an integer, got {n_breaks!r}")
    if n_breaks < 2:
        raise InvalidArgument(f"n_breaks must be >= 2, got {n_breaks}")
    return int(n_breaks)


def bin_midpoints(x, n_breaks: int = 10) -> np.ndarray:
    """
    Replace each value by the midpoint of its equal-width interval

    Parameters:
    -----------
    x : array-like, shape=(n_samples,)
        Continuous values (NaN allowed, kept as NaN)
    n_breaks : int, default=10
        Number of intervals spanning [min(x), max(x)]

    Returns:
    --------
    midpoints : array-like, shape=(n_samples,)
        Midpoint of the interval containing each value. Intervals are
        half-open [lo, hi) except the last one, which also holds max(x).

    Notes:
    ------
    Inputs with at most n_breaks distinct values are returned unchanged
    rather than mapped to equal-width midpoints, e.g. [0, 10] with
    n_breaks=2 stays [0, 10] instead of becoming [2.5, 7.5]. Such values are
    already at grid resolution, and this keeps re-binning of midpoints
    idempotent and integer-valued predictors exact.
    """
    n_breaks = check_n_breaks(n_breaks)
    x = np.asarray(x, dtype=float)
    finite = ~np.isnan(x)
    out = x.copy()
    if not np.any(finite):
        return out

    observed = x[finite]
    # already at grid resolution
    if np.unique(observed).size <= n_breaks:
        return out

    lo, hi = observed.min(), observed.max()
    width = (hi - lo) / n_breaks
    idx = np.floor((observed - lo) / width).astype(int)
    idx = np.clip(idx, 0, n_breaks - 1)
    out[finite] = lo + (idx + 0.5) * width
    return out


def binned_values(x, n_breaks: int = 10) -> np.ndarray:
    """
    Sorted, deduplicated midpoints used to seed grid values

    Parameters:
    -----------
    x : array-like, shape=(n_samples,)
        Continuous values
    n_breaks : int, default=10
        Number of intervals

    Returns:
    --------
    values : array-like, shape=(n_values,)
        At most n_breaks ascending values, NaN excluded
    """
    mids = bin_midpoints(x, n_breaks)
    return np.unique(mids[~np.isnan(mids)])


def snap_to_values(x, values) -> np.ndarray:
    """
    Map every value to the nearest candidate value

    Used for continuous predictors whose grid values were given explicitly,
    so training rows land on the same points as the grid.

    Parameters:
    -----------
    x : array-like, shape=(n_samples,)
        Continuous values (NaN kept as NaN)
    values : array-like, shape=(n_values,)
        Ascending candidate values

    Returns:
    --------
    snapped : array-like, shape=(n_samples,)
    """
    x = np.asarray(x, dtype=float)
    values = np.asarray(values, dtype=float)
    out = np.full_like(x, np.nan)
    finite = ~np.isnan(x)
    if values.size == 0 or not np.any(finite):
        return out

    pos = np.searchsorted(values, x[finite])
    pos = np.clip(pos, 1, max(values.size - 1, 1))
    if values.size == 1:
        out[finite] = values[0]
        return out
    left = values[pos - 1]
    right = values[pos]
    # ties go to the lower value
    out[finite] = np.where(x[finite] - left <= right - x[finite], left, right)
    return out
