"""
Webhook Server
==============

FastAPI adapter exposing an application over HTTP.

    POST {webhook_path}  JSON request body -> App.handle() -> JSON response
    GET  /health         liveness and installed platforms

Usage:
    app = App()
    app.use(CorePlatform())
    api = create_webhook_app(app)
"""

import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from turnflow_core import __version__
from turnflow_core.app.application import App
from turnflow_core.core.config import Settings, get_settings
from turnflow_core.server.host import Host

logger = structlog.get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    platforms: List[str]


class WebhookHost(Host):
    """Host for one HTTP request; the outcome becomes a JSONResponse."""

    def __init__(
        self,
        body: Mapping[str, Any],
        headers: Optional[Dict[str, str]] = None,
        query: Optional[Dict[str, str]] = None,
        debug: bool = False,
    ):
        super().__init__()
        self.body = body
        self.headers = headers or {}
        self.query = query or {}
        self.debug = debug
        self.result: Optional[Response] = None

    def get_request_object(self) -> Mapping[str, Any]:
        return self.body

    def get_request_headers(self) -> Dict[str, str]:
        return self.headers

    def get_query_params(self) -> Dict[str, str]:
        return self.query

    async def send_response(self, response: Any) -> None:
        self.result = JSONResponse(content=response)

    async def send_error(self, error: BaseException) -> None:
        content: Dict[str, Any] = {"code": 500, "msg": str(error)}
        if self.debug:
            content["stack"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        self.result = JSONResponse(status_code=500, content=content)


def create_webhook_app(app: App, settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application serving an App."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(
            "webhook_starting",
            service=settings.service_name,
            path=settings.webhook_path,
            environment=settings.environment,
        )
        await app.initialize()

        yield

        logger.info("webhook_stopping", service=settings.service_name)
        app.shutdown()

    api = FastAPI(
        title=settings.service_name,
        version=__version__,
        lifespan=lifespan,
    )

    @api.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=__version__,
            platforms=[platform.platform_id for platform in app.platforms],
        )

    @api.post(settings.webhook_path)
    async def webhook(request: Request):
        """Handle one conversational turn."""
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body is not valid JSON")

        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")

        host = WebhookHost(
            body,
            headers=dict(request.headers),
            query=dict(request.query_params),
            debug=settings.debug,
        )
        await app.handle(host)
        return host.result

    return api


__all__ = ["WebhookHost", "HealthResponse", "create_webhook_app"]
