"""
Extraction Diagnostics

Structured report returned alongside a prediction table instead of being
printed to the console.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Tuple

BYTES_PER_VALUE = 8


@dataclass
class Diagnostics:
    """
    Attributes:
    -----------
    grid_rows : int
        Rows in the prediction grid
    n_trees : int
        Sampled trees
    total_trees : int
        Trees available in the forest
    n_outputs : int
        Outputs per tree (1 for regression, n_classes for classification)
    tree_ids : tuple
        Sampled tree ids, ascending
    estimated_bytes : int
        Size of the (rows x trees x outputs) float64 prediction cube
    grid_size_warning : bool
        Whether the grid exceeded the practical size bound
    n_chunks : int
        Row chunks the extraction was split into
    notes : list of str
        Free-form messages
    """
    grid_rows: int = 0
    n_trees: int = 0
    total_trees: int = 0
    n_outputs: int = 0
    tree_ids: Tuple[int, ...] = ()
    estimated_bytes: int = 0
    grid_size_warning: bool = False
    n_chunks: int = 0
    notes: List[str] = field(default_factory=list)

    @staticmethod
    def estimate_bytes(grid_rows: int, n_trees: int, n_outputs: int) -> int:
        return int(grid_rows) * int(n_trees) * int(n_outputs) * BYTES_PER_VALUE

    @property
    def estimated_megabytes(self) -> float:
        return self.estimated_bytes / 1024 ** 2

    def summary(self) -> str:
        return (f"grid rows={self.grid_rows}, trees={self.n_trees}/{self.total_trees}, "
                f"outputs={self.n_outputs}, estimated memory={self.estimated_megabytes:.1f} MB")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
