"""
Turnflow
========

Extensible middleware engine for multi-platform conversational apps.

This package provides:
- A stage registry with ordered, sequential async dispatch
- A plugin tree of extensible nodes
- Platforms that propagate their local stages into the application
- The application root running one request pipeline per turn
- Hosts adapting the engine to a transport (in-memory, FastAPI webhook)
"""

__version__ = "1.0.0"
