"""Unit tests for the stage registry."""

import asyncio

import pytest

from turnflow_core.core.errors import ConfigurationError
from turnflow_core.core.stages import StageRegistry, stage_label
from turnflow_core.app.stages import AppStage


# =============================================================================
# Construction
# =============================================================================


class TestStageRegistryConstruction:
    """Tests for building a registry."""

    def test_stages_keep_declaration_order(self):
        """Test that stages are kept in declaration order."""
        registry = StageRegistry("request", "response", "fail")

        assert registry.stages == ("request", "response", "fail")
        assert "response" in registry
        assert "unknown" not in registry

    def test_duplicate_stage_rejected(self):
        """Test that declaring a stage twice fails."""
        with pytest.raises(ConfigurationError):
            StageRegistry("request", "request")

    def test_unhashable_lookup_is_not_contained(self):
        """Test membership with an unhashable identifier."""
        registry = StageRegistry("request")

        assert ["request"] not in registry

    def test_stage_label_for_enum(self):
        """Test printable labels of enum stages."""
        assert stage_label(AppStage.PLATFORM_INIT) == "platform.init"
        assert stage_label("custom") == "custom"


# =============================================================================
# Registration
# =============================================================================


class TestStageRegistration:
    """Tests for registering and removing handlers."""

    def test_use_unknown_stage_fails(self):
        """Test registering on an undeclared stage."""
        registry = StageRegistry("request")

        with pytest.raises(ConfigurationError) as exc_info:
            registry.use("response", lambda context: None)

        assert exc_info.value.details["stage"] == "response"

    def test_use_returns_handler_id(self):
        """Test that registration returns an id usable for removal."""
        registry = StageRegistry("request")

        handler_id = registry.use("request", lambda context: None)

        assert handler_id.startswith("hdl_")
        assert registry.has_handlers("request")
        assert registry.remove(handler_id) is True
        assert not registry.has_handlers("request")
        assert registry.remove(handler_id) is False

    def test_remove_owner(self):
        """Test withdrawing every handler of one owner."""
        registry = StageRegistry("request", "response")
        owner, other = object(), object()

        registry.use("request", lambda context: None, owner=owner)
        registry.use("response", lambda context: None, owner=owner)
        registry.use("response", lambda context: None, owner=other)

        assert registry.remove_owner(owner) == 2
        assert registry.handlers("request") == []
        assert [entry.owner for entry in registry.handlers("response")] == [other]

    def test_handlers_returns_copy(self):
        """Test that the handler list cannot be mutated from outside."""
        registry = StageRegistry("request")
        registry.use("request", lambda context: None)

        registry.handlers("request").clear()

        assert len(registry.handlers("request")) == 1


# =============================================================================
# Dispatch
# =============================================================================


class TestStageDispatch:
    """Tests for running a stage."""

    @pytest.mark.asyncio
    async def test_run_unknown_stage_fails(self):
        """Test dispatching an undeclared stage, even with other stages populated."""
        registry = StageRegistry("request")
        registry.use("request", lambda context: None)

        with pytest.raises(ConfigurationError):
            await registry.run("response", {})

    @pytest.mark.asyncio
    async def test_run_empty_stage_is_noop(self):
        """Test dispatching a stage without handlers."""
        registry = StageRegistry("request")

        await registry.run("request", {})

    @pytest.mark.asyncio
    async def test_handlers_run_sequentially_in_order(self):
        """Test that each handler completes before the next starts."""
        registry = StageRegistry("request")
        events = []

        def make_handler(index, delay):
            async def handler(context):
                events.append(("start", index))
                await asyncio.sleep(delay)
                events.append(("end", index))
            return handler

        registry.use("request", make_handler(1, 0.02))
        registry.use("request", make_handler(2, 0.0))
        registry.use("request", make_handler(3, 0.01))

        await registry.run("request", {})

        assert events == [
            ("start", 1), ("end", 1),
            ("start", 2), ("end", 2),
            ("start", 3), ("end", 3),
        ]

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers_mix(self):
        """Test that plain functions and coroutines are both supported."""
        registry = StageRegistry("request")
        context = {"seen": []}

        registry.use("request", lambda ctx: ctx["seen"].append("sync"))

        async def async_handler(ctx):
            ctx["seen"].append("async")

        registry.use("request", async_handler)

        await registry.run("request", context)

        assert context["seen"] == ["sync", "async"]

    @pytest.mark.asyncio
    async def test_extra_arguments_forwarded(self):
        """Test that positional and keyword arguments reach handlers."""
        registry = StageRegistry("fail")
        received = []

        registry.use("fail", lambda context, error, retry=False: received.append((error, retry)))

        await registry.run("fail", {}, "boom", retry=True)

        assert received == [("boom", True)]

    @pytest.mark.asyncio
    async def test_first_error_stops_dispatch(self):
        """Test that an error propagates unchanged and later handlers are skipped."""
        registry = StageRegistry("request")
        ran = []
        error = RuntimeError("broken")

        def failing(context):
            raise error

        registry.use("request", lambda context: ran.append(1))
        registry.use("request", failing)
        registry.use("request", lambda context: ran.append(3))

        with pytest.raises(RuntimeError) as exc_info:
            await registry.run("request", {})

        assert exc_info.value is error
        assert ran == [1]

    @pytest.mark.asyncio
    async def test_registration_during_dispatch_applies_next_time(self):
        """Test that dispatch runs against the list snapshotted at start."""
        registry = StageRegistry("request")
        ran = []

        def late(context):
            ran.append("late")

        def registering(context):
            ran.append("first")
            registry.use("request", late)

        registry.use("request", registering)

        await registry.run("request", {})
        assert ran == ["first"]

        await registry.run("request", {})
        assert ran == ["first", "first", "late"]
