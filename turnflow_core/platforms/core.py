"""
Core Platform
=============

Reference platform for a generic JSON voice/chat surface. Clients send the
already transcribed text, or an intent resolved on the device, and receive
a list of actions to perform.

Request:
    {
        "version": "3.2.0",
        "type": "core",
        "request": {"id": "...", "type": "INTENT", "locale": "en-US",
                    "body": {"text": "...", "nlu": {"intent": "...", "inputs": {}}}},
        "context": {"app_id": "...", "session": {"id": "...", "new": true, "data": {}},
                    "user": {"id": "...", "data": {}},
                    "device": {"capabilities": ["AUDIO", "TEXT"]}}
    }

Response:
    {
        "version": "3.2.0",
        "type": "core",
        "request_id": "...",
        "actions": [{"type": "SPEECH", "ssml": "<speak>...</speak>", "plain": "..."}],
        "reprompts": [...],
        "listen": true,
        "session": {"id": "...", "end": false, "data": {}},
        "user": {"id": "...", "data": {}}
    }
"""

import re
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from turnflow_core.app.stages import AppStage
from turnflow_core.conversation.context import (
    AsrData,
    Input,
    NluData,
    RequestContext,
    RequestType,
    SessionData,
    User,
)
from turnflow_core.conversation.output import OutputConverter, OutputTemplate
from turnflow_core.core.errors import ConfigurationError
from turnflow_core.core.plugin import Extensible
from turnflow_core.core.stages import StageId
from turnflow_core.platforms.base import PLATFORM_PROPAGATION, Platform, PlatformStage, RequestView

CORE_VERSION = "3.2.0"
CORE_TYPE = "core"

_TAG_PATTERN = re.compile(r"<[^>]+>")


# =============================================================================
# ENUMS
# =============================================================================


class ActionType(str, Enum):
    """Action types a core client can perform"""

    SPEECH = "SPEECH"
    TEXT = "TEXT"
    QUICK_REPLY = "QUICK_REPLY"
    CARD = "CARD"


class CoreRequestType(str, Enum):
    """Request types sent by core clients"""

    LAUNCH = "LAUNCH"
    INTENT = "INTENT"
    TEXT = "TEXT"
    END = "END"


class CoreStage(str, Enum):
    """Speech synthesis stages, run on response.output before conversion"""

    TTS_BEFORE = "$tts.before"
    TTS = "$tts"


REQUEST_TYPE_MAP: Dict[CoreRequestType, RequestType] = {
    CoreRequestType.LAUNCH: RequestType.LAUNCH,
    CoreRequestType.INTENT: RequestType.INTENT,
    CoreRequestType.TEXT: RequestType.TRANSCRIPTION,
    CoreRequestType.END: RequestType.END,
}

_OUTPUT_AT = list(PlatformStage).index(PlatformStage.OUTPUT_BEFORE)

CORE_STAGES: Tuple[StageId, ...] = (
    *tuple(PlatformStage)[:_OUTPUT_AT],
    *CoreStage,
    *tuple(PlatformStage)[_OUTPUT_AT:],
)

# TTS runs on response.output ahead of $output.before
CORE_PROPAGATION: Tuple[Tuple[AppStage, StageId], ...] = tuple(
    pair
    for app_stage, local_stage in PLATFORM_PROPAGATION
    for pair in (
        [(app_stage, stage) for stage in CoreStage] + [(app_stage, local_stage)]
        if local_stage == PlatformStage.OUTPUT_BEFORE
        else [(app_stage, local_stage)]
    )
)


# =============================================================================
# REQUEST MODELS
# =============================================================================


class CoreNlu(BaseModel):
    intent: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)


class CoreRequestBody(BaseModel):
    text: Optional[str] = None
    nlu: Optional[CoreNlu] = None


class CoreRequestDetails(BaseModel):
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: CoreRequestType = CoreRequestType.LAUNCH
    locale: str = "en-US"
    body: CoreRequestBody = Field(default_factory=CoreRequestBody)


class CoreSession(BaseModel):
    id: Optional[str] = None
    new: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)


class CoreUser(BaseModel):
    id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class CoreDevice(BaseModel):
    capabilities: List[str] = Field(default_factory=lambda: ["AUDIO", "TEXT"])


class CoreRequestContext(BaseModel):
    app_id: Optional[str] = None
    session: CoreSession = Field(default_factory=CoreSession)
    user: CoreUser = Field(default_factory=CoreUser)
    device: CoreDevice = Field(default_factory=CoreDevice)


class CoreRequest(RequestView):
    """Typed view over a core platform request"""

    version: str = CORE_VERSION
    type: str = CORE_TYPE
    request: CoreRequestDetails = Field(default_factory=CoreRequestDetails)
    context: CoreRequestContext = Field(default_factory=CoreRequestContext)


# =============================================================================
# TURN CAPABILITY
# =============================================================================


class CoreTurn:
    """
    Core-specific helpers for one turn.

    Looked up by handlers with context.capability(platform_id); extra
    actions are appended to the response after the converted output.
    """

    def __init__(self, context: RequestContext):
        self._context = context
        self.actions: List[Dict[str, Any]] = []

    @property
    def request(self) -> CoreRequest:
        return self._context.request

    @property
    def capabilities(self) -> List[str]:
        return list(self.request.context.device.capabilities)

    def supports(self, capability: str) -> bool:
        return capability.upper() in (item.upper() for item in self.capabilities)

    def add_action(self, action_type: str, **payload: Any) -> "CoreTurn":
        self.actions.append({"type": action_type, **payload})
        return self

    @property
    def locale(self) -> str:
        return self.request.request.locale


# =============================================================================
# OUTPUT
# =============================================================================


def to_ssml(message: str) -> str:
    message = message.strip()
    if message.startswith("<speak>"):
        return message
    return f"<speak>{message}</speak>"


def to_plain(message: str) -> str:
    return _TAG_PATTERN.sub("", message).strip()


class CoreOutputConverter(OutputConverter):
    """Turns output templates into core actions."""

    def __init__(self, default_action: ActionType = ActionType.SPEECH):
        self.default_action = ActionType(default_action)

    def _message_action(self, message: str) -> Dict[str, Any]:
        if self.default_action == ActionType.TEXT:
            return {"type": ActionType.TEXT.value, "text": to_plain(message)}
        return {
            "type": ActionType.SPEECH.value,
            "ssml": to_ssml(message),
            "plain": to_plain(message),
        }

    def to_response(self, output: OutputTemplate) -> Dict[str, Any]:
        actions: List[Dict[str, Any]] = []
        reprompts: List[Dict[str, Any]] = []

        if output.message:
            actions.append(self._message_action(output.message))
        if output.card:
            actions.append({"type": ActionType.CARD.value, "card": dict(output.card)})
        if output.quick_replies:
            actions.append(
                {"type": ActionType.QUICK_REPLY.value, "replies": list(output.quick_replies)}
            )
        if output.listen and output.reprompt:
            reprompts.append(self._message_action(output.reprompt))

        return {"actions": actions, "reprompts": reprompts, "listen": output.listen}


# =============================================================================
# PLATFORM
# =============================================================================


class CorePlatform(Platform):
    """
    Generic JSON platform.

    Config:
        default_output_action: "SPEECH" or "TEXT"
        app_id: when set, only requests carrying this app id are claimed
        handlers: route path -> handler, merged into the app on install
    """

    STAGES = CORE_STAGES

    request_class = CoreRequest

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ):
        super().__init__(config=config, name=name)

        configured = self.config["default_output_action"]
        try:
            action = ActionType(str(getattr(configured, "value", configured)).upper())
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported default_output_action: {configured}",
                details={"platform": self.name},
            ) from e
        if action not in (ActionType.SPEECH, ActionType.TEXT):
            raise ConfigurationError(
                f"Unsupported default_output_action: {action.value}",
                details={"platform": self.name},
            )
        self._converter = CoreOutputConverter(action)

        self.stages.use(PlatformStage.SESSION, self._build_session, owner=self)
        self.stages.use(PlatformStage.TYPE, self._resolve_type, owner=self)
        self.stages.use(PlatformStage.ASR, self._read_text, owner=self)
        self.stages.use(PlatformStage.NLU, self._read_nlu, owner=self)
        self.stages.use(PlatformStage.INPUTS, self._collect_inputs, owner=self)
        self.stages.use(PlatformStage.RESPONSE, self._attach_state, owner=self)

    def default_config(self) -> Dict[str, Any]:
        return {
            "enabled": True,
            "default_output_action": ActionType.SPEECH.value,
            "app_id": None,
            "handlers": {},
        }

    @property
    def output_converter(self) -> CoreOutputConverter:
        return self._converter

    def is_request_related(self, payload: Mapping[str, Any]) -> bool:
        if payload.get("type") != CORE_TYPE:
            return False

        app_id = self.config.get("app_id")
        if app_id is None:
            return True

        context = payload.get("context")
        return isinstance(context, Mapping) and context.get("app_id") == app_id

    def is_response_related(self, response: Any) -> bool:
        return isinstance(response, Mapping) and response.get("type") == CORE_TYPE

    # -------------------------------------------------------------------------
    # Installation
    # -------------------------------------------------------------------------

    @property
    def propagation(self) -> Sequence[Tuple[AppStage, StageId]]:
        return CORE_PROPAGATION

    def install(self, parent: Extensible) -> None:
        super().install(parent)
        if self.config["handlers"]:
            parent.set_handler(self.config["handlers"])

    def uninstall(self, parent: Extensible) -> None:
        for path, handler in self.config["handlers"].items():
            if parent.get_handler(path) is handler:
                parent.remove_handler(path)

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_turn(self, context: RequestContext) -> CoreTurn:
        return CoreTurn(context)

    def create_user(self, context: RequestContext) -> User:
        user = context.request.context.user
        return User(id=user.id, data=dict(user.data), is_new=not user.data)

    def finalize_response(self, response: Any, context: RequestContext) -> Dict[str, Any]:
        """Collapse the converted outputs of a turn into one response."""
        parts = response if isinstance(response, list) else [response]

        actions: List[Dict[str, Any]] = []
        reprompts: List[Dict[str, Any]] = []
        listen = False
        for part in parts:
            actions.extend(part.get("actions", []))
            reprompts.extend(part.get("reprompts", []))
            listen = part.get("listen", False)

        turn = context.capability(self.platform_id)
        if turn is not None:
            actions.extend(turn.actions)

        return {
            "version": CORE_VERSION,
            "type": CORE_TYPE,
            "actions": actions,
            "reprompts": reprompts,
            "listen": listen,
        }

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _build_session(self, context: RequestContext) -> None:
        session = context.request.context.session
        context.session = SessionData(id=session.id, is_new=session.new, data=dict(session.data))

    async def _resolve_type(self, context: RequestContext) -> None:
        context.request_type = REQUEST_TYPE_MAP.get(
            context.request.request.type, RequestType.UNKNOWN
        )

    async def _read_text(self, context: RequestContext) -> None:
        text = context.request.request.body.text
        if text:
            context.asr = AsrData(text=text, confidence=1.0, source=self.platform_id)

    async def _read_nlu(self, context: RequestContext) -> None:
        nlu = context.request.request.body.nlu
        if nlu is None or not nlu.intent:
            return
        context.nlu = NluData(
            intent=nlu.intent,
            inputs=dict(nlu.inputs),
            confidence=1.0,
            source="request",
        )

    async def _collect_inputs(self, context: RequestContext) -> None:
        for name, value in context.nlu.inputs.items():
            if name in context.inputs:
                continue
            if isinstance(value, Mapping):
                context.inputs[name] = Input(
                    name=name,
                    value=value.get("value"),
                    raw=value.get("raw", value.get("value")),
                )
            else:
                context.inputs[name] = Input(name=name, value=value, raw=value)

    async def _attach_state(self, context: RequestContext) -> None:
        response = context.response
        response["request_id"] = context.request.request.id
        response["session"] = {
            "id": context.session.id,
            "end": context.session.end or not response["listen"],
            "data": context.session.data,
        }
        if context.user is not None:
            response["user"] = {"id": context.user.id, "data": context.user.data}


__all__ = [
    "ActionType",
    "CoreRequestType",
    "CoreStage",
    "CoreRequest",
    "CoreTurn",
    "CoreOutputConverter",
    "CorePlatform",
]
