from .engine import (
    FALLBACK_WEIGHTS,
    FULL_WEIGHTS,
    MetricsEngine,
    MetricsReport,
    composite_importance,
    normalize_by_max,
)

__all__ = [
    "FALLBACK_WEIGHTS",
    "FULL_WEIGHTS",
    "MetricsEngine",
    "MetricsReport",
    "composite_importance",
    "normalize_by_max",
]
