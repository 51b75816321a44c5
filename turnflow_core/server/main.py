"""
Hello World Service
===================

Runs a minimal app on the core platform behind the webhook server:
LAUNCH asks for the user's name, NameIntent greets them.

    python -m turnflow_core.server.main

Then post a core request:
    {"type": "core", "request": {"type": "INTENT",
     "body": {"nlu": {"intent": "NameIntent", "inputs": {"name": "John"}}}}}
"""

from typing import Optional

from fastapi import FastAPI

from turnflow_core.app.application import App
from turnflow_core.conversation.context import RequestContext
from turnflow_core.core.config import Settings, get_settings
from turnflow_core.core.logging import setup_logging
from turnflow_core.platforms.core import CorePlatform
from turnflow_core.plugins.keyword_nlu import KeywordNlu
from turnflow_core.plugins.request_logging import RequestLogging
from turnflow_core.server.webhook import create_webhook_app


async def launch(context: RequestContext) -> None:
    context.ask("What's your name?", "Tell me your name, please.")


async def name_intent(context: RequestContext) -> None:
    context.tell(f"Hello {context.get_input('name')}")


async def unhandled(context: RequestContext) -> None:
    context.ask("Sorry, I didn't get that. What's your name?")


def build_app(settings: Optional[Settings] = None) -> App:
    settings = settings or get_settings()

    platform = CorePlatform()
    platform.use(
        KeywordNlu({
            "intents": {
                "NameIntent": [r"my name is (?P<name>\w+)", r"^(?P<name>\w+)$"],
            },
        })
    )

    app = App()
    app.use(platform)
    if settings.request_logging or settings.response_logging:
        app.use(
            RequestLogging({
                "request": settings.request_logging,
                "response": settings.response_logging,
            })
        )

    app.set_handler({
        "LAUNCH": launch,
        "NameIntent": name_intent,
        "Unhandled": unhandled,
    })
    return app


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(
        level=settings.log_level,
        format=settings.log_format,
        service_name=settings.service_name,
    )
    return create_webhook_app(build_app(settings), settings)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
    )
