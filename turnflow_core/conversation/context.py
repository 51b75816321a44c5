"""
Request Context
===============

Per-turn state threaded by reference through every stage of one inbound
request. A context is created by the application for exactly one request
and is discarded once the response (or the failure) has been handed to the
host. Plugins must never keep a reference to it past that point.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

import structlog

from turnflow_core.conversation.output import OutputTemplate
from turnflow_core.core.errors import DispatchAmbiguityError

if TYPE_CHECKING:
    from turnflow_core.app.application import App
    from turnflow_core.platforms.base import Platform
    from turnflow_core.server.host import Host

logger = structlog.get_logger("turnflow.request")


# =============================================================================
# ENUMS
# =============================================================================


class RequestType(str, Enum):
    """Request type classification"""

    LAUNCH = "LAUNCH"
    INTENT = "INTENT"
    TRANSCRIPTION = "TRANSCRIPTION"
    END = "END"
    UNKNOWN = "UNKNOWN"


# =============================================================================
# CONTEXT PARTS
# =============================================================================


@dataclass
class SessionData:
    """Session-scoped data carried across the turns of one conversation"""

    id: Optional[str] = None
    is_new: bool = True
    data: Dict[str, Any] = field(default_factory=dict)
    end: bool = False


@dataclass
class User:
    """User-scoped data, built by the platform's user factory"""

    id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    is_new: bool = True


@dataclass
class AsrData:
    """Speech recognition result"""

    text: Optional[str] = None
    confidence: Optional[float] = None
    source: Optional[str] = None


@dataclass
class Input:
    """A named value extracted from the user's utterance"""

    name: str
    value: Any = None
    raw: Optional[str] = None


@dataclass
class NluData:
    """Language understanding result"""

    intent: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[float] = None
    source: Optional[str] = None


@dataclass
class Route:
    """Resolved dialogue route"""

    path: str
    type: RequestType
    intent: Optional[str] = None


# =============================================================================
# REQUEST CONTEXT
# =============================================================================


@dataclass
class RequestContext:
    """Mutable state of one conversational turn."""

    app: "App"
    host: "Host"
    payload: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"req_{uuid4().hex}")
    created_at: datetime = field(default_factory=datetime.utcnow)

    # Resolved by the platform
    platform_id: Optional[str] = None
    platform: Optional["Platform"] = None
    request: Any = None
    request_type: RequestType = RequestType.UNKNOWN
    session: SessionData = field(default_factory=SessionData)
    user: Optional[User] = None
    asr: AsrData = field(default_factory=AsrData)
    nlu: NluData = field(default_factory=NluData)
    inputs: Dict[str, Input] = field(default_factory=dict)

    # Dialogue and output
    route: Optional[Route] = None
    output: List[OutputTemplate] = field(default_factory=list)
    response: Any = None

    # Free-form scratch data for plugins and handlers
    data: Dict[str, Any] = field(default_factory=dict)

    # Pipeline bookkeeping
    stage: Optional[str] = None
    error: Optional[BaseException] = None
    failed_stage: Optional[str] = None

    _capabilities: Dict[str, Any] = field(default_factory=dict, repr=False)
    _started: float = field(default_factory=time.perf_counter, repr=False)

    def __post_init__(self) -> None:
        self.logger = logger.bind(request_id=self.id)

    # -------------------------------------------------------------------------
    # Platform identity and capabilities
    # -------------------------------------------------------------------------

    def assign_platform(self, platform: "Platform") -> None:
        """
        Record the platform that claimed this request.

        The identity is assigned once; a second, different platform is an
        ambiguity and raises DispatchAmbiguityError.
        """
        if self.platform_id is not None and self.platform_id != platform.platform_id:
            raise DispatchAmbiguityError([self.platform_id, platform.platform_id])

        self.platform_id = platform.platform_id
        self.platform = platform
        self.logger = self.logger.bind(platform=platform.platform_id)

    def attach_capability(self, platform_id: str, capability: Any) -> None:
        self._capabilities[platform_id] = capability

    def capability(self, platform_id: str) -> Optional[Any]:
        """Platform-specific helper object, or None for other platforms."""
        return self._capabilities.get(platform_id)

    # -------------------------------------------------------------------------
    # Output helpers
    # -------------------------------------------------------------------------

    def tell(self, message: str, **kwargs: Any) -> "RequestContext":
        """Say something and end the session."""
        self.output.append(OutputTemplate(message=message, listen=False, **kwargs))
        return self

    def ask(self, message: str, reprompt: Optional[str] = None, **kwargs: Any) -> "RequestContext":
        """Say something and keep listening."""
        self.output.append(
            OutputTemplate(message=message, reprompt=reprompt or message, listen=True, **kwargs)
        )
        return self

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def get_input(self, name: str, default: Any = None) -> Any:
        item = self.inputs.get(name)
        return item.value if item is not None else default

    @property
    def intent(self) -> Optional[str]:
        return self.nlu.intent

    @property
    def is_new_session(self) -> bool:
        return self.session.is_new

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Summary of the turn for logging and analytics."""
        return {
            "request_id": self.id,
            "platform": self.platform_id,
            "request_type": self.request_type.value,
            "intent": self.nlu.intent,
            "route": self.route.path if self.route else None,
            "session_id": self.session.id,
            "new_session": self.session.is_new,
            "user_id": self.user.id if self.user else None,
            "inputs": {name: item.value for name, item in self.inputs.items()},
            "error": repr(self.error) if self.error else None,
            "failed_stage": self.failed_stage,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


__all__ = [
    "RequestType",
    "SessionData",
    "User",
    "AsrData",
    "Input",
    "NluData",
    "Route",
    "RequestContext",
]
