"""
Platform Base
=============

A platform represents one conversational surface (voice assistant, chat
channel) with its own fixed local stage sequence.

When installed into the application, a platform registers a propagation
shim on each application stage it pairs with. The shim checks whether the
request context belongs to this platform and, only then, runs the paired
local stage. Any number of platforms can share one application this way
without the application knowing their types.
"""

from __future__ import annotations

import inspect
from abc import abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict

from turnflow_core.app.stages import AppStage
from turnflow_core.conversation.context import RequestContext, User
from turnflow_core.conversation.output import OutputConverter
from turnflow_core.core.errors import InvalidParentError
from turnflow_core.core.plugin import Extensible
from turnflow_core.core.stages import StageId, stage_label


class PlatformStage(str, Enum):
    """Platform-local stages, in execution order"""

    SETUP = "setup"
    INIT = "$init"
    REQUEST = "$request"
    SESSION = "$session"
    USER = "$user"
    TYPE = "$type"
    ASR = "$asr"
    NLU = "$nlu"
    INPUTS = "$inputs"
    OUTPUT_BEFORE = "$output.before"
    OUTPUT = "$output"
    RESPONSE = "$response"


# (application stage, platform stage) pairs wired on install, in order
PLATFORM_PROPAGATION: Tuple[Tuple[AppStage, PlatformStage], ...] = (
    (AppStage.SETUP, PlatformStage.SETUP),
    (AppStage.PLATFORM_INIT, PlatformStage.INIT),
    (AppStage.PLATFORM_REQUEST, PlatformStage.REQUEST),
    (AppStage.PLATFORM_SESSION, PlatformStage.SESSION),
    (AppStage.PLATFORM_USER, PlatformStage.USER),
    (AppStage.PLATFORM_TYPE, PlatformStage.TYPE),
    (AppStage.INTERPRETATION_ASR, PlatformStage.ASR),
    (AppStage.INTERPRETATION_NLU, PlatformStage.NLU),
    (AppStage.INTERPRETATION_INPUTS, PlatformStage.INPUTS),
    (AppStage.RESPONSE_OUTPUT, PlatformStage.OUTPUT_BEFORE),
    (AppStage.RESPONSE_OUTPUT, PlatformStage.OUTPUT),
    (AppStage.RESPONSE_ASSEMBLE, PlatformStage.RESPONSE),
)

# Application stages whose shims run without a claim check
UNCLAIMED_STAGES = frozenset({AppStage.SETUP})


class RequestView(BaseModel):
    """Typed view over a raw request payload. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")


class Platform(Extensible):
    """
    Abstract base class for platforms.

    Subclasses provide:
    - request_class: RequestView subclass whose fields all have defaults
    - output_converter: OutputConverter for this platform's responses
    - is_request_related(): the claim predicate over a raw payload
    - is_response_related(): whether a finalized response is this platform's

    Optional overrides:
    - user_class / create_user(): the user factory
    - create_turn(): platform capability object attached to the context
    - finalize_response(): post-process one or several pending responses
    """

    STAGES = tuple(PlatformStage)

    request_class: Type[RequestView] = RequestView
    user_class: Type[User] = User

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ):
        super().__init__(config=config, name=name)
        self._register_base_handlers()

    # -------------------------------------------------------------------------
    # Identity and claim
    # -------------------------------------------------------------------------

    @property
    def platform_id(self) -> str:
        """Identity token, unique among the application's plugins."""
        return self.name

    @property
    @abstractmethod
    def output_converter(self) -> OutputConverter:
        """Output conversion strategy"""

    @abstractmethod
    def is_request_related(self, payload: Mapping[str, Any]) -> bool:
        """Whether a raw request payload belongs to this platform."""

    @abstractmethod
    def is_response_related(self, response: Any) -> bool:
        """Whether a finalized response payload belongs to this platform."""

    def claims(self, context: Any) -> bool:
        """Whether a context was assigned to this platform."""
        return getattr(context, "platform_id", None) == self.platform_id

    # -------------------------------------------------------------------------
    # Installation
    # -------------------------------------------------------------------------

    @property
    def propagation(self) -> Sequence[Tuple[AppStage, StageId]]:
        return PLATFORM_PROPAGATION

    def install(self, parent: Extensible) -> None:
        from turnflow_core.app.application import App

        if not isinstance(parent, App):
            raise InvalidParentError(self.name, App.__name__, type(parent).__name__)

        for app_stage, local_stage in self.propagation:
            self.hook(parent, app_stage, self._propagate(app_stage, local_stage))

    def _propagate(
        self,
        app_stage: AppStage,
        local_stage: StageId,
    ) -> Callable[..., Any]:
        check_claim = app_stage not in UNCLAIMED_STAGES

        async def propagate(context: Any, *args: Any, **kwargs: Any) -> None:
            if check_claim and not self.claims(context):
                return
            await self.stages.run(local_stage, context, *args, **kwargs)

        propagate.__qualname__ = (
            f"{type(self).__name__}.propagate"
            f"[{stage_label(app_stage)}->{stage_label(local_stage)}]"
        )
        return propagate

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_request_view(self, payload: Mapping[str, Any]) -> RequestView:
        """
        Build the typed request view.

        The request class defaults are merged one level deep with the
        payload, payload keys winning, and the result is validated.
        """
        merged: Dict[str, Any] = self.request_class().model_dump()
        merged.update(payload)
        return self.request_class.model_validate(merged)

    def create_turn(self, context: RequestContext) -> Any:
        """Platform capability object for one turn, None for none."""
        return None

    def create_user(self, context: RequestContext) -> User:
        return self.user_class()

    def finalize_response(self, response: Any, context: RequestContext) -> Any:
        """Post-process the converted response(s) before they are flushed."""
        return response

    # -------------------------------------------------------------------------
    # Base handlers
    # -------------------------------------------------------------------------

    def _register_base_handlers(self) -> None:
        self.stages.use(PlatformStage.INIT, self._attach_turn, owner=self)
        self.stages.use(PlatformStage.REQUEST, self._build_request, owner=self)
        self.stages.use(PlatformStage.USER, self._build_user, owner=self)
        self.stages.use(PlatformStage.OUTPUT, self._convert_output, owner=self)
        self.stages.use(PlatformStage.RESPONSE, self._finalize, owner=self)

    async def _attach_turn(self, context: RequestContext) -> None:
        turn = self.create_turn(context)
        if turn is not None:
            context.attach_capability(self.platform_id, turn)

    async def _build_request(self, context: RequestContext) -> None:
        context.request = self.create_request_view(context.payload)

    async def _build_user(self, context: RequestContext) -> None:
        context.user = self.create_user(context)

    async def _convert_output(self, context: RequestContext) -> None:
        context.response = self.output_converter.convert(context.output, self.platform_id)

    async def _finalize(self, context: RequestContext) -> None:
        response = self.finalize_response(context.response, context)
        if inspect.isawaitable(response):
            response = await response
        context.response = response

        if not self.is_response_related(response):
            context.logger.warning(
                "response_not_platform_related",
                platform=self.platform_id,
                response_type=type(response).__name__,
            )


__all__ = [
    "PlatformStage",
    "PLATFORM_PROPAGATION",
    "RequestView",
    "Platform",
]
