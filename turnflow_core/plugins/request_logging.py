"""Request and response logging for quick testing."""

from typing import Any, Dict, Iterable

from turnflow_core.app.stages import AppStage
from turnflow_core.conversation.context import RequestContext
from turnflow_core.core.plugin import Extensible, Plugin

MASK = "***"


def mask(value: Any, keys: Iterable[str]) -> Any:
    """Copy of a JSON-like value with the listed keys masked at any depth."""
    keys = set(keys)
    if isinstance(value, dict):
        return {
            key: MASK if key in keys else mask(item, keys)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [mask(item, keys) for item in value]
    return value


class RequestLogging(Plugin):
    """Logs every inbound payload and outbound response."""

    def default_config(self) -> Dict[str, Any]:
        return {
            "enabled": True,
            "request": True,
            "response": True,
            "masked_keys": [],
        }

    def install(self, parent: Extensible) -> None:
        if self.config["request"]:
            self.hook(parent, AppStage.PLATFORM_INIT, self.log_request)
        if self.config["response"]:
            self.hook(parent, AppStage.RESPONSE_FLUSH, self.log_response)

    async def log_request(self, context: RequestContext) -> None:
        context.logger.info(
            "request_received",
            payload=mask(context.payload, self.config["masked_keys"]),
        )

    async def log_response(self, context: RequestContext) -> None:
        context.logger.info(
            "response_sent",
            response=mask(context.response, self.config["masked_keys"]),
            elapsed_ms=round(context.elapsed_ms, 2),
        )


__all__ = ["RequestLogging", "mask"]
