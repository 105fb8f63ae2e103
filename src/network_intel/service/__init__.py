from .app import create_app
from .wiring import Components, build_components

__all__ = ["Components", "build_components", "create_app"]
