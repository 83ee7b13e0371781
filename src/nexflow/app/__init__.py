"""Application wiring."""

from nexflow.app.container import App, build_app

__all__ = ["App", "build_app"]
