"""
Application Root
================

The process-wide node of the plugin tree. The application owns the global
stage sequence and drives it once per inbound request:

    setup (once) -> platform.init -> platform.request -> platform.session
    -> platform.user -> platform.type -> interpretation.asr
    -> interpretation.nlu -> interpretation.inputs -> dialogue.router
    -> dialogue.handler -> response.output -> response.assemble
    -> response.flush

Any error raised by a stage stops the sequence and dispatches the "fail"
stage instead.

Usage:
    app = App()
    app.use(CorePlatform())

    @app.intent("LAUNCH")
    async def launch(context):
        context.ask("What's your name?")

    await app.handle(host)
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import structlog

from turnflow_core.app.stages import REQUEST_SEQUENCE, AppStage
from turnflow_core.conversation.context import RequestContext, RequestType, Route
from turnflow_core.core.errors import DispatchAmbiguityError, HandlerError, RouteNotFoundError
from turnflow_core.core.plugin import Extensible
from turnflow_core.core.stages import StageId, stage_label
from turnflow_core.server.host import Host

logger = structlog.get_logger(__name__)

IntentHandler = Callable[[RequestContext], Union[Awaitable[None], None]]

LAUNCH_ROUTE = "LAUNCH"
END_ROUTE = "END"

# Reported as the failed step when a claim predicate raises
CLAIM_STEP = "platform.claim"


class App(Extensible):
    """
    Application root.

    Platforms and cross-cutting plugins are installed once, during
    configuration, and then shared by every request. All state of one
    request lives on its RequestContext.
    """

    STAGES = tuple(AppStage)

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ):
        super().__init__(config=config, name=name or "app")
        self._handlers: Dict[str, IntentHandler] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._register_builtin_handlers()

    def default_config(self) -> Dict[str, Any]:
        return {
            "enabled": True,
            # NLU intent name -> route path, e.g. {"AMAZON.StopIntent": "END"}
            "intent_map": {},
            "unhandled": "Unhandled",
        }

    @property
    def platforms(self) -> List[Any]:
        from turnflow_core.platforms.base import Platform

        return [plugin for plugin in self._plugins.values() if isinstance(plugin, Platform)]

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -------------------------------------------------------------------------
    # Dialogue handlers
    # -------------------------------------------------------------------------

    def set_handler(self, handlers: Mapping[str, IntentHandler]) -> "App":
        """Register application handlers by route path."""
        self._handlers.update(handlers)
        return self

    def intent(self, path: str) -> Callable[[IntentHandler], IntentHandler]:
        """
        Decorator registering an application handler.

        Usage:
            @app.intent("NameIntent")
            async def name(context):
                context.tell(f"Hello {context.get_input('name')}")
        """
        def decorator(func: IntentHandler) -> IntentHandler:
            self._handlers[path] = func
            return func

        return decorator

    def get_handler(self, path: str) -> Optional[IntentHandler]:
        return self._handlers.get(path)

    def remove_handler(self, path: str) -> Optional[IntentHandler]:
        return self._handlers.pop(path, None)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Dispatch the setup stage, once per process."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            await self.stages.run(AppStage.SETUP, self)
            self._initialized = True

            logger.info(
                "app_initialized",
                app=self.name,
                platforms=[platform.platform_id for platform in self.platforms],
                plugins=list(self._plugins),
            )

    def shutdown(self) -> None:
        """Remove every plugin, most recently installed first."""
        for name in reversed(list(self._plugins)):
            self.remove(name)
        self._initialized = False
        logger.info("app_shutdown", app=self.name)

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    async def handle(self, host: Host) -> RequestContext:
        """
        Run one request through the stage sequence.

        Returns the finished context. Errors never escape: they are routed
        to the fail stage and then to the host's error reporting.
        """
        payload = host.get_request_object()
        context = RequestContext(
            app=self,
            host=host,
            payload=dict(payload) if isinstance(payload, Mapping) else {},
            headers=dict(host.get_request_headers() or {}),
        )
        log = context.logger

        try:
            await self.initialize()
        except Exception as error:
            # setup is retried by the next request
            context.error = error
            context.failed_stage = stage_label(AppStage.SETUP)
            log.error("app_initialize_failed", error=str(error), exc_info=error)
            await host.fail(HandlerError(context.failed_stage, error))
            return context

        try:
            self._claim(context)
        except DispatchAmbiguityError as error:
            context.error = error
            log.critical(
                "platform_dispatch_ambiguous",
                claimants=error.claimants,
                error=error.message,
            )
            await host.fail(error)
            return context
        except Exception as error:
            context.error = error
            context.failed_stage = CLAIM_STEP
            log.error("platform_claim_failed", error=str(error), exc_info=error)
            await host.fail(HandlerError(CLAIM_STEP, error))
            return context

        stage: Optional[StageId] = None
        try:
            for stage in REQUEST_SEQUENCE:
                context.stage = stage
                await self.stages.run(stage, context)
        except Exception as error:
            await self._fail(context, stage, error)
        else:
            log.info(
                "request_handled",
                route=context.route.path if context.route else None,
                elapsed_ms=round(context.elapsed_ms, 2),
            )

        return context

    def _claim(self, context: RequestContext) -> None:
        """Assign the one platform whose claim predicate accepts the payload."""
        claimants = [
            platform
            for platform in self.platforms
            if platform.is_request_related(context.payload)
        ]
        if len(claimants) != 1:
            raise DispatchAmbiguityError(platform.platform_id for platform in claimants)

        context.assign_platform(claimants[0])

    async def _fail(
        self,
        context: RequestContext,
        stage: Optional[StageId],
        error: Exception,
    ) -> None:
        stage_name = stage_label(stage) if stage is not None else "unknown"
        context.error = error
        context.failed_stage = stage_name
        context.stage = AppStage.FAIL
        log = context.logger

        log.error("stage_failed", stage=stage_name, error=str(error), exc_info=error)

        if not self.stages.has_handlers(AppStage.FAIL):
            await context.host.fail(HandlerError(stage_name, error))
            return

        # only a response produced by a fail handler is sent
        context.response = None
        try:
            await self.stages.run(AppStage.FAIL, context, error)
        except Exception as secondary:
            log.error("fail_stage_failed", error=str(secondary), exc_info=secondary)
            await context.host.fail(secondary)
            return

        if context.response is not None:
            await context.host.set_response(context.response)
        else:
            await context.host.fail(HandlerError(stage_name, error))

    # -------------------------------------------------------------------------
    # Built-in handlers
    # -------------------------------------------------------------------------

    def _register_builtin_handlers(self) -> None:
        self.stages.use(AppStage.DIALOGUE_ROUTER, self._resolve_route, owner=self)
        self.stages.use(AppStage.DIALOGUE_HANDLER, self._run_handler, owner=self)
        self.stages.use(AppStage.RESPONSE_FLUSH, self._flush_response, owner=self)

    async def _resolve_route(self, context: RequestContext) -> None:
        request_type = context.request_type
        intent = context.nlu.intent

        if request_type == RequestType.LAUNCH:
            path = LAUNCH_ROUTE
        elif request_type == RequestType.END:
            path = END_ROUTE
        else:
            path = self.config["intent_map"].get(intent, intent) or self.config["unhandled"]

        context.route = Route(path=path, type=request_type, intent=intent)

    async def _run_handler(self, context: RequestContext) -> None:
        route = context.route
        if route is None:
            raise RouteNotFoundError("<unresolved>")

        handler = self._handlers.get(route.path)
        if handler is None and route.path != END_ROUTE:
            handler = self._handlers.get(self.config["unhandled"])

        if handler is None:
            if route.path == END_ROUTE:
                return
            raise RouteNotFoundError(route.path)

        result = handler(context)
        if inspect.isawaitable(result):
            await result

    async def _flush_response(self, context: RequestContext) -> None:
        await context.host.set_response(context.response)


__all__ = ["App", "IntentHandler"]
