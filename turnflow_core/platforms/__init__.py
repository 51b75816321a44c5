"""Platform base and the bundled core platform."""

from turnflow_core.platforms.base import (
    Platform,
    PlatformStage,
    PLATFORM_PROPAGATION,
    RequestView,
)
from turnflow_core.platforms.core import (
    ActionType,
    CorePlatform,
    CoreRequest,
    CoreStage,
    CoreTurn,
    CoreOutputConverter,
)

__all__ = [
    "Platform",
    "PlatformStage",
    "PLATFORM_PROPAGATION",
    "RequestView",
    "ActionType",
    "CorePlatform",
    "CoreRequest",
    "CoreStage",
    "CoreTurn",
    "CoreOutputConverter",
]
