"""
Engine Exceptions
=================

Error hierarchy shared by the stage registry, the plugin tree, platforms
and the request pipeline.
"""

from typing import Any, Dict, Iterable, Optional


class TurnflowError(Exception):
    """Base exception for engine errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "TURNFLOW_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ConfigurationError(TurnflowError):
    """Invalid wiring: unknown stage, duplicate stage or misused plugin."""

    def __init__(self, message: str, code: str = "CONFIGURATION_ERROR", **kwargs):
        super().__init__(message, code=code, **kwargs)


class PluginConflictError(ConfigurationError):
    """A plugin with the same name is already installed on the node."""

    def __init__(self, name: str, node: str):
        super().__init__(
            f"Plugin '{name}' is already installed on '{node}'. "
            f"Remove it before installing it again.",
            code="PLUGIN_CONFLICT",
            details={"plugin": name, "node": node},
        )
        self.name = name


class InvalidParentError(ConfigurationError):
    """A plugin was installed into a node type it cannot live in."""

    def __init__(self, plugin: str, expected: str, actual: str):
        super().__init__(
            f"'{plugin}' can only be installed into '{expected}', not '{actual}'",
            code="INVALID_PARENT",
            details={"plugin": plugin, "expected": expected, "actual": actual},
        )


class PluginNotFoundError(TurnflowError):
    """Removing a plugin name that is not installed."""

    def __init__(self, name: str, node: str):
        super().__init__(
            f"Plugin '{name}' is not installed on '{node}'",
            code="PLUGIN_NOT_FOUND",
            details={"plugin": name, "node": node},
        )
        self.name = name


class DispatchAmbiguityError(TurnflowError):
    """Zero or more than one installed platform claimed a request."""

    def __init__(self, claimants: Iterable[str]):
        self.claimants = list(claimants)
        if self.claimants:
            message = (
                "Request claimed by more than one platform: "
                + ", ".join(self.claimants)
            )
        else:
            message = "No installed platform claims this request"
        super().__init__(
            message,
            code="DISPATCH_AMBIGUITY",
            details={"claimants": self.claimants},
        )


class HandlerError(TurnflowError):
    """A stage handler raised while the request sequence was running."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(
            f"Stage '{stage}' failed: {cause}",
            code="HANDLER_ERROR",
            details={"stage": stage, "cause": type(cause).__name__},
        )
        self.stage = stage
        self.cause = cause
        self.__cause__ = cause


class RouteNotFoundError(TurnflowError):
    """No application handler matches the resolved route."""

    def __init__(self, path: str):
        super().__init__(
            f"No handler registered for route '{path}'",
            code="ROUTE_NOT_FOUND",
            details={"path": path},
        )
        self.path = path


__all__ = [
    "TurnflowError",
    "ConfigurationError",
    "PluginConflictError",
    "InvalidParentError",
    "PluginNotFoundError",
    "DispatchAmbiguityError",
    "HandlerError",
    "RouteNotFoundError",
]
