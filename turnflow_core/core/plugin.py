"""
Plugin Architecture
===================

Plugins and extensible nodes forming the process-wide plugin tree.

A Plugin is anything with an install hook. An Extensible is a plugin that
can itself host plugins and owns a stage registry, so trees of any depth
can be composed: application -> platform -> platform-local plugin.

Usage:
    class RequestCounter(Plugin):
        def install(self, parent: Extensible) -> None:
            self.hook(parent, "platform.init", self.count)

        async def count(self, context) -> None:
            context.data["counted"] = True

    app.use(RequestCounter())
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

import structlog

from turnflow_core.core.config import overlay
from turnflow_core.core.errors import (
    ConfigurationError,
    PluginConflictError,
    PluginNotFoundError,
)
from turnflow_core.core.stages import Handler, StageId, StageRegistry, stage_label


# =============================================================================
# PLUGIN BASE
# =============================================================================


class Plugin(ABC):
    """
    Abstract base class for all plugins.

    Subclasses implement install() and register their handlers on the
    hosting node there. Plugin instances are shared by every request the
    application serves: per-request values belong on the request context
    passed to the handlers, never on the plugin itself.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ):
        self.config: Dict[str, Any] = overlay(self.default_config(), config)
        self.name: str = name or self.config.get("name") or type(self).__name__
        self.parent: Optional[Extensible] = None

    def default_config(self) -> Dict[str, Any]:
        """Configuration defaults, overlaid by the constructor argument."""
        return {"enabled": True}

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("enabled", True))

    @abstractmethod
    def install(self, parent: "Extensible") -> None:
        """
        Wire the plugin into its hosting node.

        Called synchronously by Extensible.use(). Asynchronous set-up work
        belongs in a handler on the "setup" stage.
        """

    def uninstall(self, parent: "Extensible") -> None:
        """Called by Extensible.remove() before the registration is deleted."""

    def hook(self, node: "Extensible", stage: StageId, handler: Handler) -> str:
        """Register a handler on a node's stage, owned by this plugin."""
        return node.stages.use(stage, handler, owner=self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


# =============================================================================
# EXTENSIBLE NODE
# =============================================================================


class Extensible(Plugin):
    """
    Plugin tree node with its own stage registry.

    Stage names are scoped to the node: two nodes may both declare a stage
    called "setup" without the two ever being confused.
    """

    STAGES: Sequence[StageId] = ()

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
    ):
        super().__init__(config=config, name=name)
        self._plugins: Dict[str, Plugin] = {}
        self.stages: StageRegistry = self.initialize_stages()
        self._logger = structlog.get_logger(f"node.{self.name}")

    def initialize_stages(self) -> StageRegistry:
        return StageRegistry(*self.STAGES, name=self.name)

    def install(self, parent: "Extensible") -> None:
        """Plain nodes need no wiring in their parent."""

    # -------------------------------------------------------------------------
    # Plugin Registry
    # -------------------------------------------------------------------------

    @property
    def plugins(self) -> Mapping[str, Plugin]:
        return MappingProxyType(self._plugins)

    def use(self, *plugins: Plugin) -> "Extensible":
        """
        Install plugins into this node.

        Raises:
            PluginConflictError: A plugin with the same name is installed
            ConfigurationError: The plugin is installed in another node
        """
        for plugin in plugins:
            if plugin.name in self._plugins:
                raise PluginConflictError(plugin.name, self.name)

            if plugin.parent is not None:
                raise ConfigurationError(
                    f"Plugin '{plugin.name}' is already installed on "
                    f"'{plugin.parent.name}'",
                    details={"plugin": plugin.name, "node": plugin.parent.name},
                )

            if not plugin.enabled:
                self._logger.info("plugin_disabled_skipped", plugin=plugin.name)
                continue

            try:
                plugin.install(self)
            except Exception:
                withdrawn = self.stages.remove_owner(plugin)
                self._logger.warning(
                    "plugin_install_failed",
                    plugin=plugin.name,
                    handlers_withdrawn=withdrawn,
                )
                raise

            self._plugins[plugin.name] = plugin
            plugin.parent = self

            self._logger.info(
                "plugin_installed",
                plugin=plugin.name,
                type=type(plugin).__name__,
            )

        return self

    def remove(self, name: str) -> Plugin:
        """
        Uninstall a plugin and withdraw the handlers it registered here.

        Raises:
            PluginNotFoundError: No plugin with this name is installed
        """
        plugin = self._plugins.get(name)
        if plugin is None:
            raise PluginNotFoundError(name, self.name)

        plugin.uninstall(self)
        withdrawn = self.stages.remove_owner(plugin)
        del self._plugins[name]
        plugin.parent = None

        self._logger.info("plugin_removed", plugin=name, handlers_withdrawn=withdrawn)
        return plugin

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self._plugins.get(name)

    def has_plugin(self, name: str) -> bool:
        return name in self._plugins

    def walk(self) -> Iterator[Plugin]:
        """Depth-first iteration over every descendant plugin."""
        for plugin in self._plugins.values():
            yield plugin
            if isinstance(plugin, Extensible):
                yield from plugin.walk()

    def describe(self) -> Dict[str, Any]:
        """Nested description of this node and its plugins."""
        return {
            "name": self.name,
            "type": type(self).__name__,
            "stages": {
                stage_label(stage): len(self.stages.handlers(stage))
                for stage in self.stages.stages
            },
            "plugins": [
                plugin.describe()
                if isinstance(plugin, Extensible)
                else {"name": plugin.name, "type": type(plugin).__name__}
                for plugin in self._plugins.values()
            ],
        }


__all__ = ["Plugin", "Extensible"]
