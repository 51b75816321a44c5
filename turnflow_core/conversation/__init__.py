"""Per-turn conversation state and output templates."""

from turnflow_core.conversation.output import OutputTemplate, OutputConverter
from turnflow_core.conversation.context import (
    RequestType,
    SessionData,
    User,
    AsrData,
    Input,
    NluData,
    Route,
    RequestContext,
)

__all__ = [
    "OutputTemplate",
    "OutputConverter",
    "RequestType",
    "SessionData",
    "User",
    "AsrData",
    "Input",
    "NluData",
    "Route",
    "RequestContext",
]
