"""Application root and its global stage contract."""

from turnflow_core.app.stages import AppStage, REQUEST_SEQUENCE
from turnflow_core.app.application import App

__all__ = ["App", "AppStage", "REQUEST_SEQUENCE"]
