"""Integration tests for the request pipeline through the application root."""

import asyncio
import random

import pytest

from turnflow_core.app.application import App
from turnflow_core.app.stages import REQUEST_SEQUENCE, AppStage
from turnflow_core.core.errors import (
    DispatchAmbiguityError,
    HandlerError,
    RouteNotFoundError,
)
from turnflow_core.platforms.base import PLATFORM_PROPAGATION, PlatformStage
from turnflow_core.server.host import InMemoryHost

REQUEST_STAGES = [stage.value for stage in PlatformStage if stage != PlatformStage.SETUP]


def expected_journal(platform_name):
    """Global and local stages of one turn, in execution order."""
    entries = []
    for app_stage in REQUEST_SEQUENCE:
        for paired, local in PLATFORM_PROPAGATION:
            if paired == app_stage:
                entries.append(f"{platform_name}:{local.value}")
        entries.append(f"app:{app_stage.value}")
    return entries


# =============================================================================
# Happy path
# =============================================================================


class TestSinglePlatform:
    """One platform claiming every request."""

    @pytest.mark.asyncio
    async def test_every_stage_runs_once_in_order(self, recording_platform, stage_recorder, journal):
        """Test that every global and local stage runs exactly once, in order."""
        app = App()
        platform = recording_platform("voice")
        app.use(platform, stage_recorder)

        @app.intent("NameIntent")
        async def name_intent(context):
            context.tell(f"Hello {context.nlu.inputs['name']}")

        host = InMemoryHost({"platform": "voice", "intent": "NameIntent", "inputs": {"name": "John"}})

        context = await app.handle(host)

        assert journal == ["voice:setup"] + expected_journal("voice")
        assert all(platform.calls[stage.value] == 1 for stage in PlatformStage)
        assert context.platform_id == "voice"
        assert context.route.path == "NameIntent"
        assert host.response == {"text": "Hello John", "listen": False}

    @pytest.mark.asyncio
    async def test_setup_runs_once(self, recording_platform):
        """Test that setup is dispatched once per process."""
        app = App()
        platform = recording_platform("voice")
        app.use(platform)
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})

        await asyncio.gather(*(app.initialize() for _ in range(5)))
        await app.handle(InMemoryHost({"platform": "voice", "type": "LAUNCH"}))
        await app.handle(InMemoryHost({"platform": "voice", "type": "LAUNCH"}))

        assert app.initialized is True
        assert platform.calls["setup"] == 1
        assert platform.calls["$init"] == 2

    @pytest.mark.asyncio
    async def test_setup_receives_app(self):
        """Test that setup handlers receive the application."""
        app = App()
        received = []
        app.stages.use(AppStage.SETUP, received.append)

        await app.initialize()

        assert received == [app]

    @pytest.mark.asyncio
    async def test_intent_map(self, recording_platform):
        """Test mapping NLU intents to route paths."""
        app = App({"intent_map": {"AMAZON.StopIntent": "END"}})
        app.use(recording_platform("voice"))

        context = await app.handle(InMemoryHost({"platform": "voice", "intent": "AMAZON.StopIntent"}))

        assert context.route.path == "END"
        assert context.route.intent == "AMAZON.StopIntent"

    @pytest.mark.asyncio
    async def test_unhandled_fallback(self, recording_platform):
        """Test falling back to the Unhandled handler."""
        app = App()
        app.use(recording_platform("voice"))
        app.set_handler({"Unhandled": lambda context: context.tell("Sorry")})

        host = InMemoryHost({"platform": "voice", "intent": "UnknownIntent"})

        context = await app.handle(host)

        assert context.route.path == "UnknownIntent"
        assert host.response == {"text": "Sorry", "listen": False}

    @pytest.mark.asyncio
    async def test_missing_handler(self, recording_platform):
        """Test a route without any handler."""
        app = App()
        app.use(recording_platform("voice"))
        host = InMemoryHost({"platform": "voice", "intent": "UnknownIntent"})

        await app.handle(host)

        assert isinstance(host.error, HandlerError)
        assert isinstance(host.error.cause, RouteNotFoundError)
        assert host.error.stage == "dialogue.handler"

    @pytest.mark.asyncio
    async def test_host_ignores_late_calls(self, recording_platform):
        """Test that only the first response reaches the host."""
        app = App()
        app.use(recording_platform("voice"))

        @app.intent("LAUNCH")
        async def launch(context):
            await context.host.set_response({"early": True})
            context.tell("late")

        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        await app.handle(host)

        assert host.response == {"early": True}


# =============================================================================
# Several platforms
# =============================================================================


class TestPlatformDispatch:
    """Several platforms sharing one application."""

    @pytest.mark.asyncio
    async def test_only_claiming_platform_runs(self, recording_platform):
        """Test that only the claiming platform's local sequence runs."""
        app = App()
        alpha = recording_platform("alpha")
        beta = recording_platform("beta")
        app.use(alpha, beta)
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})

        await app.initialize()
        alpha.calls.clear()
        beta.calls.clear()

        await app.handle(InMemoryHost({"platform": "beta", "type": "LAUNCH"}))

        assert sum(alpha.calls.values()) == 0
        assert all(beta.calls[stage] == 1 for stage in REQUEST_STAGES)

    @pytest.mark.asyncio
    async def test_same_type_distinct_identity(self, recording_platform):
        """Test two instances of one platform type told apart by name."""
        app = App()
        first = recording_platform("first", claim_key="shop")
        second = recording_platform("second", claim_key="bank")
        app.use(first, second)
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})

        context = await app.handle(InMemoryHost({"platform": "bank", "type": "LAUNCH"}))

        assert context.platform_id == "second"
        assert first.calls["$init"] == 0
        assert second.calls["$init"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_claims_fatal(self, recording_platform):
        """Test that two claimants abort the request without running it."""
        app = App()
        first = recording_platform("first", claim_key="shared")
        second = recording_platform("second", claim_key="shared")
        app.use(first, second)
        failures = []
        app.stages.use(AppStage.FAIL, lambda context, error: failures.append(error))

        host = InMemoryHost({"platform": "shared", "type": "LAUNCH"})
        context = await app.handle(host)

        assert isinstance(host.error, DispatchAmbiguityError)
        assert host.error.claimants == ["first", "second"]
        assert context.error is host.error
        assert context.platform_id is None
        assert first.calls["$init"] == 0
        assert second.calls["$init"] == 0
        assert failures == []

    @pytest.mark.asyncio
    async def test_no_claimant(self, recording_platform):
        """Test a payload no platform claims."""
        app = App()
        app.use(recording_platform("voice"))
        host = InMemoryHost({"platform": "fax"})

        await app.handle(host)

        assert isinstance(host.error, DispatchAmbiguityError)
        assert host.error.claimants == []
        assert host.status_code == 500

    @pytest.mark.asyncio
    async def test_remove_and_reinstall_platform(self, recording_platform):
        """Test that a removed platform stops claiming and can be reinstalled."""
        app = App()
        app.use(recording_platform("voice"))
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})
        payload = {"platform": "voice", "type": "LAUNCH"}

        app.remove("voice")
        removed_host = InMemoryHost(payload)
        await app.handle(removed_host)

        replacement = recording_platform("voice")
        app.use(replacement)
        host = InMemoryHost(payload)
        await app.handle(host)

        assert isinstance(removed_host.error, DispatchAmbiguityError)
        assert host.response == {"text": "Hi", "listen": True}
        assert replacement.calls["$init"] == 1


# =============================================================================
# Failure path
# =============================================================================


class TestFailurePath:
    """Errors raised by stage handlers."""

    @pytest.fixture
    def nlu_error(self):
        return ValueError("nlu unavailable")

    @pytest.fixture
    def failing_app(self, recording_platform, stage_recorder, nlu_error):
        app = App()
        app.use(recording_platform("voice"), stage_recorder)
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})

        def broken_nlu(context):
            if context.payload.get("explode", True):
                raise nlu_error

        app.stages.use(AppStage.INTERPRETATION_NLU, broken_nlu)
        return app

    @pytest.mark.asyncio
    async def test_fail_stage_runs_once_with_original_error(self, failing_app, journal, nlu_error):
        """Test that an understanding failure skips output and runs fail once."""
        calls = []
        failing_app.stages.use(AppStage.FAIL, lambda context, error: calls.append(error))
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        context = await failing_app.handle(host)

        assert calls == [nlu_error]
        assert context.error is nlu_error
        assert context.failed_stage == "interpretation.nlu"
        assert not any(
            entry.endswith(("$output.before", "$output", "$response"))
            or entry.startswith(("app:response.", "app:dialogue."))
            for entry in journal
        )
        assert host.response is None
        assert isinstance(host.error, HandlerError)
        assert host.error.cause is nlu_error

    @pytest.mark.asyncio
    async def test_without_fail_handlers(self, failing_app, nlu_error):
        """Test that the wrapped error is reported when nothing handles it."""
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        await failing_app.handle(host)

        assert isinstance(host.error, HandlerError)
        assert host.error.stage == "interpretation.nlu"
        assert host.error.__cause__ is nlu_error

    @pytest.mark.asyncio
    async def test_fail_handler_recovers(self, failing_app):
        """Test flushing a response set by a fail handler."""
        def recover(context, error):
            context.response = {"text": "Something went wrong", "listen": False}

        failing_app.stages.use(AppStage.FAIL, recover)
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        await failing_app.handle(host)

        assert host.error is None
        assert host.response == {"text": "Something went wrong", "listen": False}

    @pytest.mark.asyncio
    async def test_fail_handler_error(self, failing_app):
        """Test that an error raised by a fail handler reaches the host."""
        secondary = RuntimeError("fail handler broke")

        def broken(context, error):
            raise secondary

        failing_app.stages.use(AppStage.FAIL, broken)
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        await failing_app.handle(host)

        assert host.error is secondary

    @pytest.mark.asyncio
    async def test_app_keeps_serving_after_failure(self, failing_app):
        """Test that one failed request does not affect the next."""
        failed = InMemoryHost({"platform": "voice", "type": "LAUNCH"})
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH", "explode": False})

        await failing_app.handle(failed)
        await failing_app.handle(host)

        assert failed.error is not None
        assert host.error is None
        assert host.response == {"text": "Hi", "listen": True}

    @pytest.mark.asyncio
    async def test_failure_after_output_conversion(self, recording_platform):
        """Test that a response converted before a late failure is never sent."""
        app = App()
        app.use(recording_platform("voice"))
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})
        assemble_error = RuntimeError("assemble broke")
        observed = []

        def broken_assemble(context):
            raise assemble_error

        app.stages.use(AppStage.RESPONSE_ASSEMBLE, broken_assemble)
        app.stages.use(AppStage.FAIL, lambda context, error: observed.append(error))
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        context = await app.handle(host)

        assert observed == [assemble_error]
        assert context.failed_stage == "response.assemble"
        assert host.response is None
        assert host.status_code == 500
        assert isinstance(host.error, HandlerError)
        assert host.error.cause is assemble_error


class TestSetupAndClaimFailures:
    """Errors raised before the request sequence starts."""

    @pytest.mark.asyncio
    async def test_setup_failure_reported_and_retried(self, recording_platform):
        """Test that a failing setup is reported to the host and retried."""
        app = App()
        app.use(recording_platform("voice"))
        app.set_handler({"LAUNCH": lambda context: context.ask("Hi")})
        setup_error = RuntimeError("setup broke")
        attempts = []

        def flaky_setup(target):
            attempts.append(target)
            if len(attempts) == 1:
                raise setup_error

        app.stages.use(AppStage.SETUP, flaky_setup)
        failed = InMemoryHost({"platform": "voice", "type": "LAUNCH"})
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        context = await app.handle(failed)

        assert isinstance(failed.error, HandlerError)
        assert failed.error.stage == "setup"
        assert failed.error.cause is setup_error
        assert context.failed_stage == "setup"
        assert app.initialized is False

        await app.handle(host)

        assert len(attempts) == 2
        assert app.initialized is True
        assert host.response == {"text": "Hi", "listen": True}

    @pytest.mark.asyncio
    async def test_claim_predicate_error(self, recording_platform):
        """Test that a raising claim predicate fails the request."""
        app = App()
        platform = recording_platform("voice")
        app.use(platform)
        claim_error = KeyError("platform")

        def broken_claim(payload):
            raise claim_error

        platform.is_request_related = broken_claim
        host = InMemoryHost({"platform": "voice", "type": "LAUNCH"})

        context = await app.handle(host)

        assert isinstance(host.error, HandlerError)
        assert host.error.stage == "platform.claim"
        assert host.error.cause is claim_error
        assert context.failed_stage == "platform.claim"
        assert context.platform_id is None
        assert platform.calls["$init"] == 0


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    """Concurrent requests through shared plugin instances."""

    @pytest.mark.asyncio
    async def test_markers_never_cross(self, recording_platform):
        """Test that concurrent contexts keep their own state."""
        app = App()
        app.use(recording_platform("voice"))

        async def remember(context):
            context.data["marker"] = context.payload["marker"]
            await asyncio.sleep(random.uniform(0, 0.01))

        async def answer(context):
            await asyncio.sleep(random.uniform(0, 0.01))
            context.tell(f"marker {context.data['marker']}")

        app.stages.use(AppStage.PLATFORM_INIT, remember)
        app.set_handler({"LAUNCH": answer})

        hosts = [
            InMemoryHost({"platform": "voice", "type": "LAUNCH", "marker": index})
            for index in range(25)
        ]

        contexts = await asyncio.gather(*(app.handle(host) for host in hosts))

        assert len({context.id for context in contexts}) == 25
        for index, (context, host) in enumerate(zip(contexts, hosts)):
            assert context.data["marker"] == index
            assert host.response == {"text": f"marker {index}", "listen": False}
