"""
Hosts adapting the engine to a transport.

The FastAPI webhook lives in turnflow_core.server.webhook and is imported
explicitly, since it depends on the application root.
"""

from turnflow_core.server.host import Host, InMemoryHost

__all__ = ["Host", "InMemoryHost"]
