"""Shared pytest fixtures for testing."""

from collections import Counter
from typing import Any, Callable, Dict, List, Optional

import pytest

from turnflow_core.app.application import App
from turnflow_core.app.stages import REQUEST_SEQUENCE
from turnflow_core.conversation.context import NluData, RequestContext, RequestType
from turnflow_core.conversation.output import OutputConverter, OutputTemplate
from turnflow_core.core.plugin import Extensible, Plugin
from turnflow_core.platforms.base import Platform, PlatformStage
from turnflow_core.platforms.core import CorePlatform


# =============================================================================
# Test Platforms and Plugins
# =============================================================================


class EchoOutputConverter(OutputConverter):
    """Converts templates into {"text", "listen"} payloads."""

    def to_response(self, output: OutputTemplate) -> Dict[str, Any]:
        return {"text": output.message, "listen": output.listen}


class RecordingPlatform(Platform):
    """
    Platform counting every local stage it runs.

    Claims payloads whose "platform" key equals its claim key, reads the
    request type from "type" and the intent from "intent".
    """

    def __init__(self, name: str, claim_key: Optional[str] = None, journal: Optional[List[str]] = None):
        super().__init__(name=name)
        self.claim_key = claim_key or name
        self.journal = journal if journal is not None else []
        self.calls: Counter = Counter()
        self._converter = EchoOutputConverter()

        for stage in PlatformStage:
            self.stages.use(stage, self._recorder(stage), owner=self)
        self.stages.use(PlatformStage.TYPE, self._read_type, owner=self)
        self.stages.use(PlatformStage.NLU, self._read_intent, owner=self)

    @property
    def output_converter(self) -> OutputConverter:
        return self._converter

    def is_request_related(self, payload) -> bool:
        return payload.get("platform") == self.claim_key

    def is_response_related(self, response) -> bool:
        parts = response if isinstance(response, list) else [response]
        return all(isinstance(part, dict) and "text" in part for part in parts)

    def _recorder(self, stage: PlatformStage) -> Callable[..., Any]:
        async def record(context, *args):
            self.calls[stage.value] += 1
            self.journal.append(f"{self.name}:{stage.value}")

        return record

    async def _read_type(self, context: RequestContext) -> None:
        context.request_type = RequestType(context.payload.get("type", "INTENT"))

    async def _read_intent(self, context: RequestContext) -> None:
        intent = context.payload.get("intent")
        if intent:
            context.nlu = NluData(intent=intent, inputs=dict(context.payload.get("inputs", {})))


class StageRecorder(Plugin):
    """Appends "app:<stage>" to a journal for every request stage."""

    def __init__(self, journal: List[str], name: Optional[str] = None):
        super().__init__(name=name)
        self.journal = journal

    def install(self, parent: Extensible) -> None:
        for stage in REQUEST_SEQUENCE:
            self.hook(parent, stage, self._recorder(stage.value))

    def _recorder(self, label: str) -> Callable[..., Any]:
        def record(context):
            self.journal.append(f"app:{label}")

        return record


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def journal() -> List[str]:
    """Shared execution journal."""
    return []


@pytest.fixture
def recording_platform(journal: List[str]) -> Callable[..., RecordingPlatform]:
    """Factory for recording platforms writing to the shared journal."""
    def factory(name: str, claim_key: Optional[str] = None) -> RecordingPlatform:
        return RecordingPlatform(name, claim_key=claim_key, journal=journal)

    return factory


@pytest.fixture
def stage_recorder(journal: List[str]) -> StageRecorder:
    return StageRecorder(journal)


@pytest.fixture
def app() -> App:
    """Fresh application root."""
    return App()


@pytest.fixture
def core_app() -> App:
    """Application with the core platform and a hello world dialogue."""
    app = App()
    app.use(CorePlatform())

    @app.intent("LAUNCH")
    async def launch(context):
        context.ask("What's your name?", "Tell me your name, please.")

    @app.intent("NameIntent")
    async def name_intent(context):
        context.tell(f"Hello {context.get_input('name')}")

    return app


@pytest.fixture
def core_payload() -> Callable[..., Dict[str, Any]]:
    """Factory for core platform request payloads."""
    def factory(
        request_type: str = "LAUNCH",
        intent: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        text: Optional[str] = None,
        session: Optional[Dict[str, Any]] = None,
        user: Optional[Dict[str, Any]] = None,
        app_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if text is not None:
            body["text"] = text
        if intent is not None:
            body["nlu"] = {"intent": intent, "inputs": inputs or {}}

        return {
            "version": "3.2.0",
            "type": "core",
            "request": {
                "id": "req-test-1",
                "timestamp": "2026-10-17T10:00:00Z",
                "type": request_type,
                "locale": "en-US",
                "body": body,
            },
            "context": {
                "app_id": app_id,
                "session": session or {"id": "sess-1", "new": True, "data": {}},
                "user": user or {"id": "user-1", "data": {}},
                "device": {"capabilities": ["AUDIO", "TEXT"]},
            },
        }

    return factory
