# Engine Core
# Stage dispatch, plugin tree, configuration and logging

from turnflow_core.core.errors import (
    TurnflowError,
    ConfigurationError,
    PluginConflictError,
    InvalidParentError,
    PluginNotFoundError,
    DispatchAmbiguityError,
    HandlerError,
    RouteNotFoundError,
)
from turnflow_core.core.stages import (
    StageRegistry,
    StageHandler,
    stage_label,
)
from turnflow_core.core.config import (
    Settings,
    get_settings,
    overlay,
)
from turnflow_core.core.logging import (
    LogFormat,
    setup_logging,
    get_logger,
)
from turnflow_core.core.plugin import (
    Plugin,
    Extensible,
)

__all__ = [
    # Errors
    "TurnflowError",
    "ConfigurationError",
    "PluginConflictError",
    "InvalidParentError",
    "PluginNotFoundError",
    "DispatchAmbiguityError",
    "HandlerError",
    "RouteNotFoundError",
    # Stages
    "StageRegistry",
    "StageHandler",
    "stage_label",
    # Config
    "Settings",
    "get_settings",
    "overlay",
    # Logging
    "LogFormat",
    "setup_logging",
    "get_logger",
    # Plugins
    "Plugin",
    "Extensible",
]
