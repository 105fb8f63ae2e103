from .cache import GraphView, GraphViewCache
from .client import ProgressiveGraphClient
from .progressive import GraphSlice, ProgressiveRetrievalEngine, RetrievalMode

__all__ = [
    "GraphSlice",
    "GraphView",
    "GraphViewCache",
    "ProgressiveGraphClient",
    "ProgressiveRetrievalEngine",
    "RetrievalMode",
]
