"""Tests for the single-check evaluator and the aggregate health engine."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any

import pytest

from tests.fakes import BlockingChecker, CooperativeChecker, StaticChecker
from vitals.health.context import CheckContext
from vitals.health.engine import ENGINE_CLOSED, HealthEngine, evaluate
from vitals.health.models import (
    DEADLINE_EXCEEDED,
    ComponentNotFound,
    ComponentResult,
    DeadlineExceeded,
    Status,
)
from vitals.health.registry import CheckerRegistry, func_checker


def _evaluate(checker: Any, timeout: float, ctx: CheckContext | None = None) -> ComponentResult:
    async def run() -> ComponentResult:
        result = await evaluate(checker, "c", timeout, ctx)
        await asyncio.sleep(0.01)  # let cancellation reach detached tasks
        return result

    return asyncio.run(run())


# ── Single-check evaluator ───────────────────────────────────────────────────


class TestEvaluateOutcomes:
    def test_success(self) -> None:
        r = _evaluate(StaticChecker({"latencyMs": 10}), timeout=1.0)
        assert r.status == Status.UP
        assert r.error_message is None
        assert r.details == {"latencyMs": 10}
        assert r.name == "c"

    def test_check_error_keeps_details(self) -> None:
        r = _evaluate(StaticChecker({"attempts": 3}, error="connection refused"), timeout=1.0)
        assert r.status == Status.DOWN
        assert r.error_message == "connection refused"
        assert r.details == {"attempts": 3}
        assert not r.timed_out

    def test_arbitrary_exception(self) -> None:
        def boom(ctx: CheckContext) -> dict[str, Any]:
            raise RuntimeError("disk full")

        r = _evaluate(func_checker(boom), timeout=1.0)
        assert r.status == Status.DOWN
        assert r.error_message == "disk full"
        assert isinstance(r.error, RuntimeError)
        assert r.details == {}

    def test_none_means_empty_details(self) -> None:
        r = _evaluate(func_checker(lambda ctx: None), timeout=1.0)
        assert r.status == Status.UP
        assert r.details == {}

    def test_non_mapping_return_is_failure(self) -> None:
        r = _evaluate(func_checker(lambda ctx: ["not", "a", "dict"]), timeout=1.0)
        assert r.status == Status.DOWN
        assert "expected a mapping" in r.error_message

    def test_sync_checker_runs_on_its_own_thread(self) -> None:
        seen: list[str] = []

        def record_thread(ctx: CheckContext) -> dict[str, Any]:
            seen.append(threading.current_thread().name)
            return {"n": 1}

        r = _evaluate(func_checker(record_thread), timeout=1.0)
        assert r.status == Status.UP
        assert r.details == {"n": 1}
        assert seen == ["vitals-check-c"]

    def test_duration_recorded(self) -> None:
        r = _evaluate(StaticChecker(delay=0.05), timeout=1.0)
        assert r.duration_ms >= 40


class TestEvaluateDeadline:
    def test_slow_async_checker_times_out(self) -> None:
        checker = StaticChecker({"never": "seen"}, delay=5.0)
        t0 = time.perf_counter()
        r = _evaluate(checker, timeout=0.05)
        assert time.perf_counter() - t0 < 1.0
        assert r.status == Status.DOWN
        assert r.error_message == DEADLINE_EXCEEDED
        assert isinstance(r.error, DeadlineExceeded)
        assert r.details == {}
        assert checker.saw_cancel  # task cancellation was propagated

    def test_zero_timeout_never_invokes_checker(self) -> None:
        checker = StaticChecker()
        r = _evaluate(checker, timeout=0)
        assert r.timed_out
        assert checker.calls == 0

    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(ValueError):
            _evaluate(StaticChecker(), timeout=-1)

    def test_non_cooperative_thread_is_abandoned(self) -> None:
        checker = BlockingChecker(0.3)
        t0 = time.perf_counter()
        r = _evaluate(checker, timeout=0.05)
        assert time.perf_counter() - t0 < 0.25
        assert r.timed_out
        assert not checker.finished.is_set()
        # leaked work runs to completion on its own
        assert checker.finished.wait(2.0)

    def test_deadline_cancels_checker_context(self) -> None:
        checker = CooperativeChecker(wait=5.0)
        r = _evaluate(checker, timeout=0.05)
        assert r.timed_out
        assert checker.cancelled.wait(2.0)
        assert checker.reason == DEADLINE_EXCEEDED

    def test_late_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        def slow_fail(ctx: CheckContext) -> dict[str, Any]:
            time.sleep(0.15)
            raise RuntimeError("late boom")

        with caplog.at_level(logging.WARNING, logger="vitals.health.engine"):
            r = _evaluate(func_checker(slow_fail), timeout=0.05)
            assert r.timed_out
            deadline = time.monotonic() + 2.0
            while time.monotonic() < deadline:
                if any("failed after its deadline" in m for m in caplog.messages):
                    break
                time.sleep(0.02)
        assert any("late boom" in m for m in caplog.messages)


class TestEvaluateCancellation:
    def test_caller_cancel_reaches_checker(self) -> None:
        checker = CooperativeChecker(wait=5.0)
        ctx = CheckContext()

        async def run() -> ComponentResult:
            asyncio.get_running_loop().call_later(0.05, ctx.cancel)
            return await evaluate(checker, "c", 2.0, ctx)

        r = asyncio.run(run())
        assert r.status == Status.DOWN
        assert r.error_message == "aborted: context canceled"
        assert not r.timed_out

    def test_cancelled_caller_context_does_not_shorten_timeout(self) -> None:
        ctx = CheckContext()
        ctx.cancel()
        # checker ignores the context and finishes well inside the timeout
        r = _evaluate(StaticChecker({"ok": 1}, delay=0.05), timeout=1.0, ctx=ctx)
        assert r.status == Status.UP

    def test_cancelling_evaluation_cancels_check(self) -> None:
        checker = CooperativeChecker(wait=5.0)

        async def run() -> None:
            task = asyncio.ensure_future(evaluate(checker, "c", 2.0))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert checker.cancelled.wait(2.0)


# ── Aggregate engine ─────────────────────────────────────────────────────────


class TestCheckAll:
    def test_one_result_per_component(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("ok", StaticChecker())
        registry.register("bad", StaticChecker(error="nope"))
        registry.register("slow", StaticChecker(delay=5.0))
        registry.register("sync", BlockingChecker(0.01))

        result = asyncio.run(engine.check_all())
        assert set(result.components) == {"ok", "bad", "slow", "sync"}
        assert result.status == Status.DOWN
        assert result.components["ok"].ok
        assert result.components["sync"].ok
        assert result.components["bad"].error_message == "nope"
        assert result.components["slow"].timed_out

    def test_empty_registry_is_up(self, engine: HealthEngine) -> None:
        result = asyncio.run(engine.check_all())
        assert result.status == Status.UP
        assert len(result.components) == 0

    def test_all_up(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        for n in ("a", "b", "c"):
            registry.register(n, StaticChecker({"n": n}))
        result = asyncio.run(engine.check_all())
        assert result.ok
        assert result.components["b"].details == {"n": "b"}

    def test_db_cache_scenario(self, registry: CheckerRegistry) -> None:
        registry.register("db", StaticChecker({"latencyMs": 10}, delay=0.01))
        registry.register("cache", StaticChecker(delay=0.1))

        with HealthEngine(registry, timeout=0.05) as eng:
            result = asyncio.run(eng.check_all())

        assert result.components["db"] == ComponentResult(
            name="db", status=Status.UP, details={"latencyMs": 10},
        )
        cache = result.components["cache"]
        assert cache.status == Status.DOWN
        assert cache.error_message == "deadline exceeded"
        assert result.status == Status.DOWN

    def test_runs_in_parallel(self, registry: CheckerRegistry) -> None:
        for i in range(100):
            registry.register(f"c{i}", StaticChecker(delay=0.05))

        with HealthEngine(registry, timeout=1.0) as eng:
            t0 = time.perf_counter()
            result = asyncio.run(eng.check_all())
            elapsed = time.perf_counter() - t0

        assert len(result.components) == 100
        assert result.ok
        assert elapsed < 1.0  # serial would take ~5s

    def test_one_slow_component_bounds_latency(self, registry: CheckerRegistry) -> None:
        for i in range(99):
            registry.register(f"fast{i}", StaticChecker())
        registry.register("edge", StaticChecker(delay=0.2))

        with HealthEngine(registry, timeout=0.2) as eng:
            t0 = time.perf_counter()
            result = asyncio.run(eng.check_all())
            elapsed = time.perf_counter() - t0

        assert len(result.components) == 100
        assert all(result.components[f"fast{i}"].ok for i in range(99))
        assert elapsed < 0.2 * 3

    def test_sync_checkers_run_in_parallel(self, registry: CheckerRegistry) -> None:
        for i in range(50):
            registry.register(f"s{i}", BlockingChecker(0.1))

        with HealthEngine(registry, timeout=1.0) as eng:
            t0 = time.perf_counter()
            result = asyncio.run(eng.check_all())
            elapsed = time.perf_counter() - t0

        assert result.ok
        assert elapsed < 1.0  # serial would take ~5s

    def test_hung_blocking_checks_do_not_starve_a_fast_one(self, registry: CheckerRegistry) -> None:
        for i in range(40):
            registry.register(f"hung{i}", BlockingChecker(1.0))
        registry.register("instant", BlockingChecker(0.0, {"ok": True}))

        with HealthEngine(registry, timeout=0.2) as eng:
            result = asyncio.run(eng.check_all())

        assert result.components["instant"].ok
        assert result.components["instant"].details == {"ok": True}
        assert all(result.components[f"hung{i}"].timed_out for i in range(40))

    def test_leaked_threads_do_not_affect_later_queries(self, registry: CheckerRegistry) -> None:
        hung = [BlockingChecker(1.0) for _ in range(40)]
        for i, c in enumerate(hung):
            registry.register(f"hung{i}", c)
        registry.register("instant", BlockingChecker(0.0))

        with HealthEngine(registry, timeout=0.2) as eng:
            first = asyncio.run(eng.check_all())
            assert first.status == Status.DOWN
            for i in range(40):
                registry.unregister(f"hung{i}")

            # the hung threads are still sleeping
            assert not any(c.finished.is_set() for c in hung)
            r = asyncio.run(eng.check_one("instant"))
            again = asyncio.run(eng.check_all())

        assert r.ok
        assert again.ok

    def test_idempotent(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("ok", StaticChecker({"v": 1}))
        registry.register("bad", StaticChecker({"v": 2}, error="broken"))
        registry.register("slow", StaticChecker(delay=5.0))

        first = asyncio.run(engine.check_all())
        second = asyncio.run(engine.check_all())
        assert first == second

    def test_caller_context_is_shared_parent(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        checkers = [CooperativeChecker(wait=5.0) for _ in range(3)]
        for i, c in enumerate(checkers):
            registry.register(f"coop{i}", c)
        ctx = CheckContext()

        async def run():
            asyncio.get_running_loop().call_later(0.05, ctx.cancel, "shutdown")
            return await engine.check_all(ctx)

        result = asyncio.run(run())
        assert result.status == Status.DOWN
        for c in checkers:
            assert c.reason == "shutdown"

    def test_registration_not_blocked_by_inflight_checks(
        self, registry: CheckerRegistry, engine: HealthEngine,
    ) -> None:
        def registers(ctx: CheckContext) -> dict[str, Any]:
            registry.register("late", StaticChecker())
            registry.unregister("victim")
            return {"registered": True}

        registry.register("registrar", func_checker(registers))
        registry.register("victim", StaticChecker(delay=0.02))

        result = asyncio.run(engine.check_all())
        # scope is fixed at invocation time
        assert set(result.components) == {"registrar", "victim"}
        assert result.components["registrar"].ok  # did not deadlock on the lock
        assert result.components["victim"].ok
        assert registry.names() == ["late", "registrar"]


class TestCheckOne:
    def test_found(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("db", StaticChecker({"latencyMs": 3}))
        r = asyncio.run(engine.check_one("db"))
        assert r.name == "db"
        assert r.ok
        assert r.details == {"latencyMs": 3}

    def test_not_found(self, engine: HealthEngine) -> None:
        with pytest.raises(ComponentNotFound) as exc:
            asyncio.run(engine.check_one("ghost"))
        assert exc.value.name == "ghost"

    def test_unregistered_is_not_found(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("db", StaticChecker())
        registry.unregister("db")
        with pytest.raises(ComponentNotFound):
            asyncio.run(engine.check_one("db"))

    def test_uses_shared_timeout(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("slow", StaticChecker(delay=5.0))
        t0 = time.perf_counter()
        r = asyncio.run(engine.check_one("slow"))
        assert time.perf_counter() - t0 < 1.0
        assert r.timed_out


class TestEngineConfig:
    def test_negative_timeout_rejected(self, registry: CheckerRegistry) -> None:
        with pytest.raises(ValueError):
            HealthEngine(registry, timeout=-0.1)

    def test_timeout_is_read_only(self, engine: HealthEngine) -> None:
        assert engine.timeout == 0.2
        with pytest.raises(AttributeError):
            engine.timeout = 1.0  # type: ignore[misc]

    def test_zero_timeout_engine(self, registry: CheckerRegistry) -> None:
        checker = StaticChecker()
        registry.register("db", checker)
        with HealthEngine(registry, timeout=0) as eng:
            result = asyncio.run(eng.check_all())
        assert result.components["db"].timed_out
        assert checker.calls == 0

    def test_names(self, registry: CheckerRegistry, engine: HealthEngine) -> None:
        registry.register("b", StaticChecker())
        registry.register("a", StaticChecker())
        assert engine.names() == ["a", "b"]


class TestEngineClose:
    def test_closed_engine_rejects_queries(self, registry: CheckerRegistry) -> None:
        registry.register("db", BlockingChecker(0.0))
        eng = HealthEngine(registry, timeout=0.2)
        eng.close()
        eng.close()  # idempotent
        assert eng.closed
        with pytest.raises(RuntimeError, match="closed"):
            asyncio.run(eng.check_all())
        with pytest.raises(RuntimeError, match="closed"):
            asyncio.run(eng.check_one("db"))

    def test_close_cancels_inflight_checks(self, registry: CheckerRegistry) -> None:
        checker = CooperativeChecker(wait=5.0)
        registry.register("coop", checker)
        eng = HealthEngine(registry, timeout=2.0)

        async def run():
            asyncio.get_running_loop().call_later(0.05, eng.close)
            return await eng.check_all()

        result = asyncio.run(run())
        assert result.components["coop"].error_message == f"aborted: {ENGINE_CLOSED}"
        assert checker.reason == ENGINE_CLOSED
