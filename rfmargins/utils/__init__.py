from .model_interface import (
    SklearnForestBackend,
    as_forest_backend,
    categories_from_data,
    encode_frame,
    traversal_backend_from_sklearn,
    tree_from_sklearn
)

__all__ = [
    'SklearnForestBackend',
    'as_forest_backend',
    'categories_from_data',
    'encode_frame',
    'traversal_backend_from_sklearn',
    'tree_from_sklearn'
]
