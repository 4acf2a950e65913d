"""
Layered scheduling (scheduler.py, declarations.py).

Tests the resolved ResourceMap, layer ordering and concurrency,
reverse-order disposal, failure and cancellation unwinding, visibility,
timeouts and acquire-result coercion.
"""

import asyncio
from collections import Counter

import pytest

from booture import BootConfig, Declaration, Hook, bootstrap, provides
from booture.declarations import as_hook
from booture.faults import (
    AcquisitionFault,
    AcquisitionTimeoutFault,
    ReleaseFault,
    UnresolvableFault,
)
from booture.scheduler import schedule
from booture.testing import ProbeError


def make(name, needs):
    return Declaration(name, tuple(needs), lambda _: Hook.acquire(lambda: 42))


async def resolve_all(declarations, **kwargs):
    return await bootstrap(declarations, **kwargs).run(dict)


# ============================================================================
# Resolved resources
# ============================================================================

class TestResolvedResources:

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await resolve_all([]) == {}

    @pytest.mark.asyncio
    async def test_single(self):
        assert await resolve_all([make("x", [])]) == {"x": 42}

    @pytest.mark.asyncio
    async def test_dependency(self):
        assert await resolve_all([make("x", ["y"]), make("y", [])]) == {"x": 42, "y": 42}

    @pytest.mark.asyncio
    async def test_one_entry_per_declaration(self, probe, app_graph):
        resources = await resolve_all(app_graph)
        assert resources == {
            "config": {"postgres": "pg://", "redis": "redis://"},
            "postgres": "postgres",
            "redis": "redis",
            "app": "app",
        }

    @pytest.mark.asyncio
    async def test_resource_map_is_read_only(self):
        async def consume(resources):
            with pytest.raises(TypeError):
                resources["y"] = 1
            return dict(resources)

        assert await bootstrap([make("x", [])]).run(consume) == {"x": 42}

    @pytest.mark.asyncio
    async def test_acquire_called_once_per_run(self):
        calls = Counter()

        def acquire(name):
            def _acquire(resources):
                calls[name] += 1
                return Hook.of(name)
            return _acquire

        services = bootstrap([
            Declaration("a", (), acquire("a")),
            Declaration("b", ("a",), acquire("b")),
            Declaration("c", ("a",), acquire("c")),
        ])
        await services.run(dict)
        assert calls == {"a": 1, "b": 1, "c": 1}

        await services.run(dict)
        assert calls == {"a": 2, "b": 2, "c": 2}


# ============================================================================
# Layers
# ============================================================================

class TestLayers:

    @pytest.mark.asyncio
    async def test_layer_members_acquired_concurrently(self, probe, app_graph):
        await resolve_all(app_graph)
        assert probe.peak_in_flight == 2

    @pytest.mark.asyncio
    async def test_next_layer_waits_for_previous(self, probe, app_graph):
        await resolve_all(app_graph)
        start_app = probe.index("start", "app")
        assert start_app > probe.index("acquire", "postgres")
        assert start_app > probe.index("acquire", "redis")
        assert probe.index("start", "postgres") > probe.index("acquire", "config")

    @pytest.mark.asyncio
    async def test_released_in_reverse_layer_order(self, probe, app_graph):
        await resolve_all(app_graph)
        released = probe.released
        assert released[0] == "app"
        assert set(released[1:3]) == {"postgres", "redis"}
        assert released[3] == "config"

    @pytest.mark.asyncio
    async def test_everything_released_exactly_once(self, probe, app_graph):
        await resolve_all(app_graph)
        assert Counter(probe.released) == Counter(probe.acquired)
        assert len(probe.released) == 4


# ============================================================================
# Visibility
# ============================================================================

class TestVisibility:

    @pytest.mark.asyncio
    async def test_strict_only_declared_needs(self, probe, app_graph):
        await resolve_all(app_graph)
        assert set(probe.seen["app"]) == {"postgres", "redis"}
        assert set(probe.seen["postgres"]) == {"config"}
        assert set(probe.seen["config"]) == set()

    @pytest.mark.asyncio
    async def test_relaxed_sees_everything_so_far(self, probe, app_graph):
        await resolve_all(app_graph, config=BootConfig(strict_visibility=False))
        assert set(probe.seen["app"]) == {"config", "postgres", "redis"}
        assert set(probe.seen["postgres"]) == {"config"}

    @pytest.mark.asyncio
    async def test_acquire_receives_read_only_map(self, probe):
        await resolve_all([probe.declare("a"), probe.declare("b", ["a"])])
        with pytest.raises(TypeError):
            probe.seen["b"]["c"] = 1


# ============================================================================
# Failures
# ============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_failure_mid_layer_unwinds_everything(self, probe):
        declarations = [
            probe.declare("base"),
            probe.declare("quick", ["base"]),
            probe.declare("broken", ["base"], delay=0.01, fail_acquire=True),
            probe.declare("stuck", ["base"], delay=10),
            probe.declare("top", ["quick", "broken", "stuck"]),
        ]

        with pytest.raises(AcquisitionFault) as excinfo:
            await resolve_all(declarations)

        fault = excinfo.value
        assert fault.service == "broken"
        assert isinstance(fault.__cause__, ProbeError)
        assert probe.released == ["quick", "base"]
        assert probe.names("cancel") == ["stuck"]
        assert probe.index("start", "top") is None

    @pytest.mark.asyncio
    async def test_sync_acquire_error(self):
        def explode(resources):
            raise ZeroDivisionError("boom")

        with pytest.raises(AcquisitionFault) as excinfo:
            await resolve_all([Declaration("x", (), explode)])
        assert excinfo.value.service == "x"
        assert isinstance(excinfo.value.cause, ZeroDivisionError)

    @pytest.mark.asyncio
    async def test_consumer_error_releases_and_propagates(self, probe, app_graph):
        def consume(resources):
            raise ValueError("app crashed")

        with pytest.raises(ValueError, match="app crashed"):
            await bootstrap(app_graph).run(consume)
        assert Counter(probe.released) == Counter(probe.acquired)
        assert probe.released[-1] == "config"

    @pytest.mark.asyncio
    async def test_release_failure_still_releases_earlier_layers(self, probe):
        declarations = [
            probe.declare("base"),
            probe.declare("flaky", ["base"], fail_release=True),
        ]

        with pytest.raises(ReleaseFault):
            await resolve_all(declarations)
        assert probe.released == ["flaky", "base"]

    @pytest.mark.asyncio
    async def test_unresolvable_without_validation(self):
        with pytest.raises(UnresolvableFault) as excinfo:
            await schedule([make("a", []), make("x", ["y"]), make("z", ["x"])]).run(dict)
        assert excinfo.value.pending == ("x", "z")
        assert excinfo.value.message == "Cannot bootstrap: unable to provide for: x; z"

    @pytest.mark.asyncio
    async def test_unresolvable_releases_acquired(self, probe):
        with pytest.raises(UnresolvableFault):
            await schedule([probe.declare("a"), probe.declare("x", ["y"])]).run(dict)
        assert probe.released == ["a"]


# ============================================================================
# Timeouts & cancellation
# ============================================================================

class TestTimeoutsAndCancellation:

    @pytest.mark.asyncio
    async def test_layer_timeout(self, probe):
        declarations = [
            probe.declare("base"),
            probe.declare("quick", ["base"]),
            probe.declare("stuck", ["base"], delay=10),
        ]

        with pytest.raises(AcquisitionTimeoutFault) as excinfo:
            await resolve_all(declarations, config=BootConfig(acquire_timeout=0.05))

        assert excinfo.value.services == ("quick", "stuck")
        assert probe.released == ["quick", "base"]

    @pytest.mark.asyncio
    async def test_member_timeout_error_is_acquisition_failure(self):
        async def times_out():
            raise asyncio.TimeoutError()

        declarations = [Declaration("x", (), lambda _: Hook.acquire(times_out))]
        with pytest.raises(AcquisitionFault):
            await resolve_all(declarations, config=BootConfig(acquire_timeout=5))

    @pytest.mark.asyncio
    async def test_cancel_consumer(self, probe, app_graph):
        ready = asyncio.Event()

        async def consume(resources):
            ready.set()
            await asyncio.sleep(10)

        task = asyncio.ensure_future(bootstrap(app_graph).run(consume))
        await ready.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        released = probe.released
        assert released[0] == "app"
        assert set(released[1:3]) == {"postgres", "redis"}
        assert released[3] == "config"

    @pytest.mark.asyncio
    async def test_cancel_during_acquisition(self, probe):
        declarations = [
            probe.declare("base"),
            probe.declare("stuck", ["base"], delay=10),
        ]
        task = asyncio.ensure_future(resolve_all(declarations))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert probe.released == ["base"]
        assert probe.names("cancel") == ["stuck"]


# ============================================================================
# Acquire results
# ============================================================================

class TestAcquireResults:

    @pytest.mark.asyncio
    async def test_async_generator(self):
        events = []

        @provides(needs=["config"])
        async def db(resources):
            events.append(f"connect:{resources['config']}")
            yield "conn"
            events.append("close")

        config = Declaration("config", (), lambda _: "pg://")

        async def consume(resources):
            events.append(f"use:{resources['db']}")

        await bootstrap([db, config]).run(consume)
        assert events == ["connect:pg://", "use:conn", "close"]

    @pytest.mark.asyncio
    async def test_async_generator_released_when_later_layer_fails(self):
        events = []

        @provides()
        async def database(resources):
            events.append("open")
            yield "pool"
            events.append("close")

        def refuse(resources):
            raise ConnectionError("refused")

        app = Declaration("app", ("database",), refuse)

        with pytest.raises(AcquisitionFault) as excinfo:
            await resolve_all([database, app])
        assert excinfo.value.service == "app"
        assert events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_async_generator_released_when_sibling_fails(self):
        events = []

        @provides()
        async def database(resources):
            events.append("open")
            yield "pool"
            events.append("close")

        async def slow_failure():
            await asyncio.sleep(0.01)
            raise ConnectionError("refused")

        cache = Declaration("cache", (), lambda _: Hook.acquire(slow_failure))

        with pytest.raises(AcquisitionFault) as excinfo:
            await resolve_all([database, cache])
        assert excinfo.value.service == "cache"
        assert events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_async_generator_released_when_consumer_fails(self):
        events = []

        @provides()
        async def database(resources):
            events.append("open")
            yield "pool"
            events.append("close")

        def consume(resources):
            raise ValueError("bad request")

        with pytest.raises(ValueError, match="bad request"):
            await bootstrap([database]).run(consume)
        assert events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_async_generator_released_on_cancellation(self):
        events = []
        ready = asyncio.Event()

        @provides()
        async def database(resources):
            events.append("open")
            yield "pool"
            events.append("close")

        async def consume(resources):
            ready.set()
            await asyncio.sleep(10)

        task = asyncio.ensure_future(bootstrap([database]).run(consume))
        await ready.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_async_generator_must_yield(self):
        @provides()
        async def database(resources):
            return
            yield  # pragma: no cover

        with pytest.raises(AcquisitionFault) as excinfo:
            await resolve_all([database])
        assert isinstance(excinfo.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_async_generator_yielding_twice(self):
        @provides()
        async def database(resources):
            yield "primary"
            yield "replica"

        with pytest.raises(ReleaseFault, match="yielded more than once"):
            await resolve_all([database])

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        events = []

        class Pool:
            async def __aenter__(self):
                events.append("open")
                return "pool"

            async def __aexit__(self, *exc):
                events.append("close")
                return False

        resources = await resolve_all([Declaration("pool", (), lambda _: Pool())])
        assert resources == {"pool": "pool"}
        assert events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_coroutine(self):
        @provides("settings")
        async def load(resources):
            await asyncio.sleep(0)
            return {"debug": True}

        assert await resolve_all([load]) == {"settings": {"debug": True}}

    @pytest.mark.asyncio
    async def test_plain_value(self):
        assert await resolve_all([Declaration("x", (), lambda _: 42)]) == {"x": 42}

    def test_as_hook_keeps_hooks(self):
        hook = Hook.of(1)
        assert as_hook(hook) is hook

    def test_provides_defaults_name(self):
        @provides(needs=("a", "b"))
        def cache(resources):
            return None

        assert isinstance(cache, Declaration)
        assert cache.name == "cache"
        assert cache.needs == ("a", "b")


# ============================================================================
# Declarations
# ============================================================================

class TestDeclaration:

    def test_needs_become_tuple(self):
        assert Declaration("x", ["a", "b"], lambda _: 1).needs == ("a", "b")

    def test_rejects_string_needs(self):
        with pytest.raises(TypeError, match="not a string"):
            Declaration("x", "config", lambda _: 1)

    def test_rejects_non_string_name(self):
        with pytest.raises(TypeError):
            Declaration(1, (), lambda _: 1)

    def test_rejects_non_callable_acquire(self):
        with pytest.raises(TypeError, match="callable"):
            Declaration("x", (), 42)
