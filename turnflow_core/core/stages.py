"""
Stage Registry
==============

An ordered, fixed set of named stages with an ordered handler list per
stage. Dispatching a stage runs its handlers one after another, awaiting
each before the next starts.

Usage:
    registry = StageRegistry("request", "response")
    registry.use("request", parse_request)
    await registry.run("request", context)
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, List, Tuple
from uuid import uuid4

import structlog

from turnflow_core.core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

StageId = Hashable
Handler = Callable[..., Any]


def stage_label(stage: StageId) -> str:
    """Printable name of a stage identifier (enum members print their value)"""
    return str(getattr(stage, "value", stage))


@dataclass
class StageHandler:
    """Registered stage handler"""

    stage: StageId
    handler: Handler
    owner: Any = None
    id: str = field(default_factory=lambda: f"hdl_{uuid4().hex[:12]}")
    registered_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))


class StageRegistry:
    """
    Fixed set of stages, each with an ordered list of handlers.

    The legal stage identifiers are set at construction and cannot change.
    Registering on or dispatching an unknown identifier raises
    ConfigurationError; dispatching a known stage without handlers is a
    no-op.
    """

    def __init__(self, *stages: StageId, name: str = ""):
        self.name = name
        self._handlers: Dict[StageId, List[StageHandler]] = {}
        for stage in stages:
            if stage in self._handlers:
                raise ConfigurationError(
                    f"Stage '{stage_label(stage)}' declared twice in registry '{name}'",
                    details={"stage": stage_label(stage), "registry": name},
                )
            self._handlers[stage] = []

    @property
    def stages(self) -> Tuple[StageId, ...]:
        return tuple(self._handlers)

    def __contains__(self, stage: object) -> bool:
        try:
            return stage in self._handlers
        except TypeError:
            return False

    def _check(self, stage: StageId) -> List[StageHandler]:
        if stage not in self:
            available = ", ".join(stage_label(s) for s in self._handlers)
            raise ConfigurationError(
                f"Unknown stage '{stage_label(stage)}' in registry '{self.name}'. "
                f"Available stages: {available}",
                details={"stage": stage_label(stage), "registry": self.name},
            )
        return self._handlers[stage]

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def use(self, stage: StageId, handler: Handler, owner: Any = None) -> str:
        """
        Register a handler on a stage.

        Args:
            stage: Stage identifier, must be part of this registry
            handler: Callable invoked as handler(context, *args, **kwargs);
                may be a coroutine function
            owner: Optional object the registration belongs to, used to
                withdraw it later with remove_owner()

        Returns:
            Handler ID
        """
        handlers = self._check(stage)
        entry = StageHandler(stage=stage, handler=handler, owner=owner)
        handlers.append(entry)

        logger.debug(
            "stage_handler_registered",
            registry=self.name,
            stage=stage_label(stage),
            handler=entry.name,
            handler_id=entry.id,
        )
        return entry.id

    def remove(self, handler_id: str) -> bool:
        """Unregister a handler by ID"""
        for handlers in self._handlers.values():
            for i, entry in enumerate(handlers):
                if entry.id == handler_id:
                    handlers.pop(i)
                    return True
        return False

    def remove_owner(self, owner: Any) -> int:
        """Unregister every handler registered with the given owner"""
        removed = 0
        for stage, handlers in self._handlers.items():
            kept = [entry for entry in handlers if entry.owner is not owner]
            removed += len(handlers) - len(kept)
            self._handlers[stage] = kept
        return removed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def handlers(self, stage: StageId) -> List[StageHandler]:
        return list(self._check(stage))

    def has_handlers(self, stage: StageId) -> bool:
        return bool(self._check(stage))

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def run(self, stage: StageId, context: Any, *args: Any, **kwargs: Any) -> None:
        """
        Run every handler of a stage in registration order.

        The handler list is snapshotted when dispatch starts. The first
        exception raised by a handler stops the dispatch and propagates
        unchanged to the caller.
        """
        handlers = list(self._check(stage))

        for entry in handlers:
            result = entry.handler(context, *args, **kwargs)
            if inspect.isawaitable(result):
                await result


__all__ = ["StageRegistry", "StageHandler", "StageId", "Handler", "stage_label"]
