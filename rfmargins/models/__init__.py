from .base import ForestBackend
from .margins import ForestMargins, forest_margins

__all__ = ['ForestBackend', 'ForestMargins', 'forest_margins']
