"""
Error and Warning Types

This module contains the exceptions raised by the marginal-effects pipeline.
"""


class MarginsError(Exception):
    """Base class for all rfmargins errors"""


class InvalidArgument(MarginsError, ValueError):
    """
    Malformed input: bad break count, empty target set, unknown variable name,
    bad interval, etc.
    """


class PredictionExtractionError(MarginsError, RuntimeError):
    """
    Per-tree prediction extraction failed. No partial table is ever returned.
    """


class LevelNotFound(PredictionExtractionError):
    """
    A categorical grid value matched neither branch of a subset split.

    Attributes:
    -----------
    feature : str
        Split variable
    levels : list
        Offending values
    """

    def __init__(self, feature, levels):
        self.feature = feature
        self.levels = list(levels)
        super().__init__(
            f"Level(s) {self.levels} of '{feature}' not found in categorical split"
        )


class GridSizeWarning(UserWarning):
    """The factorial grid is larger than the configured practical bound"""
