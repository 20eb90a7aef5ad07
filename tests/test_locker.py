# ============================================================================
# LOCKER TESTS
# ============================================================================
# STATUS: Tests - Lock orchestration
# PURPOSE: Verify mutual exclusion, wait bounds, cancellation and cleanup
# CREATED: 19 OCT 2026
# ============================================================================
"""
Locker Tests

Covers:
1. Protected function runs once and its result is returned
2. Mutual exclusion between two contenders on one lease
3. Wait timeout: ElectionTimeout, protected function never runs
4. Wait timeout shorter than the renew deadline
5. External cancellation while electing and while leading
6. Cleanup runs exactly once, only if the function was entered
7. A supervised command signalled on stop, killed after its grace period
8. Leadership lost while the function runs
9. Lease deletion on exit and error joining
10. Construction-time validation

All contenders share a MemoryLeaseRepository and fast timings.

Run with:
    pytest tests/test_locker.py -v
"""

import asyncio
import signal
import sys
import time

import pytest

from core.config import ElectionTimings
from core.contracts import LockState
from core.errors import (
    CleanupFailure,
    ElectionTimeout,
    ExternalCancellation,
    InvalidConfiguration,
    LockErrorGroup,
    SubprocessFailure,
    find_error,
)
from core.labels import MANAGED_BY
from orchestrator import Locker
from process import ProcessSupervisor
from repositories import LeaseStoreError, MemoryLeaseRepository

FAST_TIMINGS = ElectionTimings(lease_duration=2.0, renew_deadline=1.0, retry_period=0.1)


def make_locker(repo, identity="holder-a", name="exclusive", **kwargs) -> Locker:
    return Locker("default", name, identity, repo, timings=FAST_TIMINGS, **kwargs)


class FailingDeleteRepository(MemoryLeaseRepository):
    """Memory store whose deletes always fail."""

    async def delete(self, namespace, name, uid, resource_version=None):
        raise LeaseStoreError("store unavailable")


# ============================================================================
# BASIC RUNS
# ============================================================================

class TestAcquireAndRun:
    """Single contender runs."""

    def test_returns_function_result(self):
        async def scenario():
            repo = MemoryLeaseRepository()

            async def fn(stop):
                return 42

            result = await make_locker(repo).acquire_and_run(fn)
            return result, await repo.get("default", "exclusive")

        result, lease = asyncio.run(scenario())
        assert result == 42
        assert lease is not None
        assert lease.holder_identity == ""
        assert lease.lease_duration_seconds == 1

    def test_sync_function_supported(self):
        async def scenario():
            return await make_locker(MemoryLeaseRepository()).acquire_and_run(lambda stop: "ok")

        assert asyncio.run(scenario()) == "ok"

    def test_lease_labels_include_managed_by(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            await make_locker(repo, labels={"team": "infra"}).acquire_and_run(lambda stop: None)
            return await repo.get("default", "exclusive")

        lease = asyncio.run(scenario())
        assert lease.labels == {"team": "infra", MANAGED_BY: "leaselock"}

    def test_function_receives_unset_stop_event(self):
        seen = []

        async def scenario():
            async def fn(stop):
                seen.append(stop.is_set())

            await make_locker(MemoryLeaseRepository()).acquire_and_run(fn)

        asyncio.run(scenario())
        assert seen == [False]

    def test_function_error_raised_verbatim(self):
        async def scenario():
            async def fn(stop):
                raise RuntimeError("boom")

            await make_locker(MemoryLeaseRepository()).acquire_and_run(fn)

        with pytest.raises(RuntimeError, match="boom"):
            asyncio.run(scenario())

    def test_lease_released_after_function_error(self):
        async def scenario():
            repo = MemoryLeaseRepository()

            async def fn(stop):
                raise RuntimeError("boom")

            with pytest.raises(RuntimeError):
                await make_locker(repo).acquire_and_run(fn)
            return await repo.get("default", "exclusive")

        assert asyncio.run(scenario()).holder_identity == ""


# ============================================================================
# MUTUAL EXCLUSION
# ============================================================================

class TestMutualExclusion:
    """Two contenders on the same lease."""

    def test_second_contender_starts_after_first_returns(self):
        marks = {}

        async def scenario():
            repo = MemoryLeaseRepository()
            a = make_locker(repo, "holder-a")
            b = make_locker(repo, "holder-b")
            a_started = asyncio.Event()

            async def fn_a(stop):
                marks["a_start"] = time.monotonic()
                a_started.set()
                await asyncio.sleep(1.2)
                marks["a_end"] = time.monotonic()

            async def fn_b(stop):
                marks["b_start"] = time.monotonic()

            async def run_b():
                await a_started.wait()
                await b.acquire_and_run(fn_b, wait_timeout=0)

            await asyncio.gather(a.acquire_and_run(fn_a), run_b())

        asyncio.run(scenario())
        assert marks["b_start"] >= marks["a_start"] + 1.2
        assert marks["b_start"] >= marks["a_end"]

    def test_serial_contenders_both_succeed(self):
        order = []

        async def scenario():
            repo = MemoryLeaseRepository()
            a_started = asyncio.Event()

            async def fn_a(stop):
                a_started.set()
                await asyncio.sleep(1.2)
                order.append("a")
                return "a"

            async def fn_b(stop):
                order.append("b")
                return "b"

            async def run_b():
                await a_started.wait()
                return await make_locker(repo, "holder-b").acquire_and_run(fn_b, wait_timeout=3600)

            return await asyncio.gather(
                make_locker(repo, "holder-a").acquire_and_run(fn_a, wait_timeout=0),
                run_b(),
            )

        assert asyncio.run(scenario()) == ["a", "b"]
        assert order == ["a", "b"]

    def test_holders_recorded_as_transitions(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            await make_locker(repo, "holder-a").acquire_and_run(lambda stop: None)
            await make_locker(repo, "holder-b").acquire_and_run(lambda stop: None)
            return await repo.get("default", "exclusive")

        lease = asyncio.run(scenario())
        # created by a, then taken over by b after release
        assert lease.lease_transitions == 1


# ============================================================================
# WAIT TIMEOUT
# ============================================================================

class TestWaitTimeout:
    """Bounded waits for a held lease."""

    def test_times_out_without_running_function(self):
        ran_b = []

        async def scenario():
            repo = MemoryLeaseRepository()
            a_started = asyncio.Event()

            async def fn_a(stop):
                a_started.set()
                await asyncio.sleep(2.0)

            async def run_b():
                await a_started.wait()
                begin = time.monotonic()
                with pytest.raises(ElectionTimeout) as exc_info:
                    await make_locker(repo, "holder-b").acquire_and_run(
                        lambda stop: ran_b.append(True), wait_timeout=1.0
                    )
                return time.monotonic() - begin, exc_info.value

            _, (elapsed, error) = await asyncio.gather(make_locker(repo, "holder-a").acquire_and_run(fn_a), run_b())
            return elapsed, error

        elapsed, error = asyncio.run(scenario())
        assert ran_b == []
        assert 0.9 <= elapsed < 1.9
        assert error.timeout == 1.0

    def test_timeout_shorter_than_renew_deadline(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            a_started = asyncio.Event()

            async def fn_a(stop):
                a_started.set()
                await asyncio.sleep(1.0)

            async def run_b():
                await a_started.wait()
                begin = time.monotonic()
                with pytest.raises(ElectionTimeout):
                    await make_locker(repo, "holder-b").acquire_and_run(lambda stop: None, wait_timeout=0.3)
                return time.monotonic() - begin

            results = await asyncio.gather(make_locker(repo, "holder-a").acquire_and_run(fn_a), run_b())
            return results[1]

        elapsed = asyncio.run(scenario())
        assert elapsed < FAST_TIMINGS.renew_deadline

    def test_timeout_does_not_fire_once_leading(self):
        async def scenario():
            async def fn(stop):
                await asyncio.sleep(0.5)
                return stop.is_set()

            return await make_locker(MemoryLeaseRepository()).acquire_and_run(fn, wait_timeout=0.2)

        assert asyncio.run(scenario()) is False

    def test_negative_timeout_rejected(self):
        async def scenario():
            await make_locker(MemoryLeaseRepository()).acquire_and_run(lambda stop: None, wait_timeout=-1)

        with pytest.raises(InvalidConfiguration):
            asyncio.run(scenario())


# ============================================================================
# CANCELLATION AND CLEANUP
# ============================================================================

class TestCancellation:
    """External stop event and the cleanup function."""

    def test_stop_already_set(self):
        calls = []

        async def scenario():
            stop = asyncio.Event()
            stop.set()
            await make_locker(MemoryLeaseRepository()).acquire_and_run(
                lambda s: calls.append("fn"), cleanup=lambda: calls.append("cleanup"), stop=stop
            )

        with pytest.raises(ExternalCancellation):
            asyncio.run(scenario())
        assert calls == []

    def test_cancel_while_electing(self):
        calls = []

        async def scenario():
            repo = MemoryLeaseRepository()
            a_started = asyncio.Event()
            stop = asyncio.Event()

            async def fn_a(s):
                a_started.set()
                await asyncio.sleep(1.0)

            async def run_b():
                await a_started.wait()
                asyncio.get_running_loop().call_later(0.2, stop.set)
                with pytest.raises(ExternalCancellation):
                    await make_locker(repo, "holder-b").acquire_and_run(
                        lambda s: calls.append("fn"),
                        cleanup=lambda: calls.append("cleanup"),
                        stop=stop,
                    )

            await asyncio.gather(make_locker(repo, "holder-a").acquire_and_run(fn_a), run_b())

        asyncio.run(scenario())
        assert calls == []

    def test_cleanup_once_after_cancel_while_leading(self):
        calls = []

        async def scenario():
            stop = asyncio.Event()

            async def fn(leader_stop):
                stop.set()
                await leader_stop.wait()
                calls.append("fn-stopped")

            await make_locker(MemoryLeaseRepository()).acquire_and_run(
                fn, cleanup=lambda: calls.append("cleanup"), stop=stop
            )

        asyncio.run(scenario())
        assert calls == ["fn-stopped", "cleanup"]

    def test_cleanup_after_normal_completion(self):
        calls = []

        async def scenario():
            async def cleanup():
                calls.append("cleanup")

            await make_locker(MemoryLeaseRepository()).acquire_and_run(
                lambda stop: calls.append("fn"), cleanup=cleanup
            )

        asyncio.run(scenario())
        assert calls == ["fn", "cleanup"]

    def test_cleanup_error_raised(self):
        async def scenario():
            def cleanup():
                raise OSError("cleanup broke")

            await make_locker(MemoryLeaseRepository()).acquire_and_run(lambda stop: None, cleanup=cleanup)

        with pytest.raises(OSError, match="cleanup broke"):
            asyncio.run(scenario())


# ============================================================================
# SUPERVISED COMMANDS
# ============================================================================

TRAP_SIGTERM = """
import pathlib, signal, sys, time

def handler(signum, frame):
    print("got " + signal.Signals(signum).name, flush=True)
    sys.exit(0)

signal.signal(signal.SIGTERM, handler)
pathlib.Path(sys.argv[1]).write_text("ready")
time.sleep(30)
"""

IGNORE_SIGTERM = """
import pathlib, signal, sys, time

signal.signal(signal.SIGTERM, signal.SIG_IGN)
pathlib.Path(sys.argv[1]).write_text("ready")
time.sleep(30)
"""


async def stop_when_ready(path, stop: asyncio.Event, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} was not created")
        await asyncio.sleep(0.02)
    stop.set()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
class TestSupervisedCommand:
    """ProcessSupervisor.run as the protected function."""

    def test_stop_while_leading_signals_command(self, tmp_path):
        ready = tmp_path / "ready"
        out = tmp_path / "out.txt"
        calls = []

        async def scenario():
            repo = MemoryLeaseRepository()
            stop = asyncio.Event()
            with out.open("w") as stdout:
                supervisor = ProcessSupervisor(
                    [sys.executable, "-c", TRAP_SIGTERM, str(ready)],
                    kill_after=2.0,
                    stdout=stdout,
                )
                watcher = asyncio.create_task(stop_when_ready(ready, stop))
                result = await make_locker(repo).acquire_and_run(
                    supervisor.run, cleanup=lambda: calls.append("cleanup"), stop=stop
                )
                await watcher
            return result, await repo.get("default", "exclusive")

        result, lease = asyncio.run(scenario())
        assert out.read_text().strip() == "got SIGTERM"
        assert result.returncode == 0
        assert result.signal_sent == signal.SIGTERM
        assert result.killed is False
        assert calls == ["cleanup"]
        assert lease.holder_identity == ""

    def test_command_ignoring_signal_is_killed(self, tmp_path):
        ready = tmp_path / "ready"
        calls = []

        async def scenario():
            repo = MemoryLeaseRepository()
            stop = asyncio.Event()
            supervisor = ProcessSupervisor(
                [sys.executable, "-c", IGNORE_SIGTERM, str(ready)],
                kill_after=0.3,
            )
            watcher = asyncio.create_task(stop_when_ready(ready, stop))
            try:
                with pytest.raises(SubprocessFailure) as exc_info:
                    await make_locker(repo).acquire_and_run(
                        supervisor.run, cleanup=lambda: calls.append("cleanup"), stop=stop
                    )
            finally:
                await watcher
            return exc_info.value, await repo.get("default", "exclusive")

        failure, lease = asyncio.run(scenario())
        assert failure.result.killed is True
        assert failure.exit_code == 128 + signal.SIGKILL
        assert calls == ["cleanup"]
        assert lease.holder_identity == ""


# ============================================================================
# LEADERSHIP LOSS
# ============================================================================

class FailingUpdateRepository(MemoryLeaseRepository):
    """Memory store whose updates can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_updates = False

    async def update(self, lease):
        if self.fail_updates:
            raise LeaseStoreError("injected update failure")
        return await super().update(lease)


class TestLeadershipLost:
    """Renewals failing while the protected function runs."""

    def test_lost_leadership_stops_function_and_runs_cleanup(self):
        calls = []

        async def scenario():
            repo = FailingUpdateRepository()

            async def fn(leader_stop):
                repo.fail_updates = True
                await asyncio.wait_for(leader_stop.wait(), 5.0)
                calls.append("fn-stopped")
                return "stepped down"

            started = time.monotonic()
            result = await make_locker(repo).acquire_and_run(
                fn, cleanup=lambda: calls.append("cleanup")
            )
            return result, time.monotonic() - started, await repo.get("default", "exclusive")

        result, elapsed, lease = asyncio.run(scenario())
        assert result == "stepped down"
        assert calls == ["fn-stopped", "cleanup"]
        assert elapsed >= FAST_TIMINGS.renew_deadline
        # Release failed too, so the record still names us until it expires
        assert lease.holder_identity == "holder-a"


# ============================================================================
# LEASE DELETION
# ============================================================================

class TestDeleteLeaseOnExit:
    """Compare-and-delete after the run."""

    def test_lease_deleted(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            await make_locker(repo).acquire_and_run(lambda stop: None, delete_lease_on_exit=True)
            return await repo.get("default", "exclusive")

        assert asyncio.run(scenario()) is None

    def test_lease_kept_by_default(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            await make_locker(repo).acquire_and_run(lambda stop: None)
            return await repo.get("default", "exclusive")

        assert asyncio.run(scenario()) is not None

    def test_delete_failure_raised(self):
        async def scenario():
            await make_locker(FailingDeleteRepository()).acquire_and_run(
                lambda stop: None, delete_lease_on_exit=True
            )

        with pytest.raises(CleanupFailure):
            asyncio.run(scenario())

    def test_function_error_joined_with_delete_failure(self):
        async def scenario():
            async def fn(stop):
                raise RuntimeError("boom")

            await make_locker(FailingDeleteRepository()).acquire_and_run(fn, delete_lease_on_exit=True)

        with pytest.raises(LockErrorGroup) as exc_info:
            asyncio.run(scenario())
        assert find_error(exc_info.value, RuntimeError) is not None
        assert find_error(exc_info.value, CleanupFailure) is not None

    def test_timeout_joined_with_refused_delete(self):
        async def scenario():
            repo = MemoryLeaseRepository()
            a_started = asyncio.Event()

            async def fn_a(stop):
                a_started.set()
                await asyncio.sleep(1.0)

            async def run_b():
                await a_started.wait()
                with pytest.raises(LockErrorGroup) as exc_info:
                    await make_locker(repo, "holder-b").acquire_and_run(
                        lambda stop: None, wait_timeout=0.3, delete_lease_on_exit=True
                    )
                return exc_info.value

            results = await asyncio.gather(make_locker(repo, "holder-a").acquire_and_run(fn_a), run_b())
            return results[1], await repo.get("default", "exclusive")

        group, lease = asyncio.run(scenario())
        assert find_error(group, ElectionTimeout) is not None
        assert "held by holder-a" in str(find_error(group, CleanupFailure))
        assert lease is not None


# ============================================================================
# CONFIGURATION
# ============================================================================

class TestLockerConfiguration:
    """Validation at construction."""

    @pytest.mark.parametrize("namespace,name,identity", [
        ("", "lease", "id"),
        ("default", "", "id"),
        ("default", "lease", ""),
    ])
    def test_empty_identity_fields(self, namespace, name, identity):
        with pytest.raises(InvalidConfiguration):
            Locker(namespace, name, identity, MemoryLeaseRepository())

    @pytest.mark.parametrize("namespace,name,identity", [
        ("n" * 254, "lease", "id"),
        ("default", "l" * 254, "id"),
        ("default", "lease", "i" * 254),
    ])
    def test_over_long_identity_fields(self, namespace, name, identity):
        with pytest.raises(InvalidConfiguration, match="Invalid lock identity"):
            Locker(namespace, name, identity, MemoryLeaseRepository())

    def test_missing_repository(self):
        with pytest.raises(InvalidConfiguration):
            Locker("default", "lease", "id", None)

    def test_inconsistent_timings(self):
        with pytest.raises(InvalidConfiguration):
            Locker(
                "default", "lease", "id", MemoryLeaseRepository(),
                timings=ElectionTimings(lease_duration=1.0, renew_deadline=2.0, retry_period=0.1),
            )

    def test_bad_labels(self):
        with pytest.raises(InvalidConfiguration):
            Locker("default", "lease", "id", MemoryLeaseRepository(), labels={"bad key": "x"})

    def test_lock_state_transitions(self):
        assert LockState.ELECTING.can_transition_to(LockState.LEADING)
        assert LockState.ELECTING.can_transition_to(LockState.DONE)
        assert LockState.LEADING.can_transition_to(LockState.DONE)
        assert not LockState.DONE.can_transition_to(LockState.LEADING)
        assert not LockState.LEADING.can_transition_to(LockState.ELECTING)
        assert LockState.DONE.is_terminal()
