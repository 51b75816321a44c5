"""
Webhook Analytics
=================

Posts one JSON event per turn to an HTTP collector: a "turn" event after
the response was flushed and an "error" event when a turn failed.

Delivery problems are logged and never affect the turn itself.

Usage:
    app.use(WebhookAnalytics({"endpoint": "https://collector.example.com/events"}))
"""

from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import structlog

from turnflow_core.app.stages import AppStage
from turnflow_core.conversation.context import RequestContext
from turnflow_core.core.errors import ConfigurationError
from turnflow_core.core.plugin import Extensible, Plugin

logger = structlog.get_logger(__name__)


class WebhookAnalytics(Plugin):
    """Turn analytics delivered to an HTTP endpoint."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config=config, name=name)
        self._transport = transport

    def default_config(self) -> Dict[str, Any]:
        return {
            "enabled": True,
            "endpoint": None,
            "headers": {},
            "timeout": 10.0,
            "track_errors": True,
        }

    def install(self, parent: Extensible) -> None:
        if not self.config.get("endpoint"):
            raise ConfigurationError(
                "endpoint has to be set",
                details={"plugin": self.name},
            )

        self.hook(parent, AppStage.RESPONSE_FLUSH, self.track)
        if self.config["track_errors"]:
            self.hook(parent, AppStage.FAIL, self.track_error)

    async def track(self, context: RequestContext) -> None:
        await self.send(self.build_event("turn", context))

    async def track_error(self, context: RequestContext, error: BaseException) -> None:
        event = self.build_event("error", context)
        event["error"] = {"type": type(error).__name__, "message": str(error)}
        await self.send(event)

    def build_event(self, event_type: str, context: RequestContext) -> Dict[str, Any]:
        return {
            "event": event_type,
            "timestamp": datetime.utcnow().isoformat(),
            **context.to_dict(),
        }

    async def send(self, event: Dict[str, Any]) -> bool:
        """Deliver one event. Returns whether the collector accepted it."""
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.config["timeout"]),
            ) as client:
                response = await client.post(
                    self.config["endpoint"],
                    json=event,
                    headers=self.config["headers"],
                )
        except httpx.HTTPError as e:
            logger.warning(
                "analytics_delivery_failed",
                endpoint=self.config["endpoint"],
                event_type=event["event"],
                error=str(e),
            )
            return False

        if response.status_code >= 400:
            logger.warning(
                "analytics_rejected",
                endpoint=self.config["endpoint"],
                event_type=event["event"],
                status_code=response.status_code,
            )
            return False

        logger.debug("analytics_sent", event_type=event["event"], request_id=event["request_id"])
        return True


__all__ = ["WebhookAnalytics"]
