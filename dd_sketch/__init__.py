"""dd_sketch package public API."""
from ._metadata import __version__
from .dd_sketch import DDSketch
from .errors import InvalidArgumentError, SketchError, SketchIOError
from .flag import Flag, FlagType
from .mapping import IndexMapping, IndexMappingLayout
from .store import (
    BinEncodingMode,
    CollapsingHighestDenseStore,
    CollapsingLowestDenseStore,
    DenseStore,
    Store,
)

__all__ = [
    "BinEncodingMode",
    "CollapsingHighestDenseStore",
    "CollapsingLowestDenseStore",
    "DDSketch",
    "DenseStore",
    "Flag",
    "FlagType",
    "IndexMapping",
    "IndexMappingLayout",
    "InvalidArgumentError",
    "SketchError",
    "SketchIOError",
    "Store",
    "__version__",
]
