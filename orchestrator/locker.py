# ============================================================================
# LOCKER
# ============================================================================
# STATUS: Core - Run a function while holding a lease
# PURPOSE: Race leader election against a timeout and external stop
# CREATED: 19 OCT 2026
# ============================================================================
"""
Locker

Runs a protected function at most once, and only while the lease is held:

    locker = Locker("default", "backup", "host-1", repository)
    result = await locker.acquire_and_run(run_backup, wait_timeout=30)

One call goes through these steps:

1. A LeaderElector competes for the lease under a derived stop event
2. Three sources race for a single outcome: leadership acquired, the wait
   bound elapsed (only armed when wait_timeout > 0), or the caller's stop
   event fired
3. On acquisition fn(leader_stop) runs; when it returns the derived stop
   is set, which makes the elector release the lease
4. If fn was entered, cleanup() runs once after leadership ends
5. With delete_lease_on_exit the lease is compare-and-deleted

The caller's stop event cancels the wait while electing and is forwarded
to fn (through leader_stop) while leading.

All errors of a call are raised together: alone as-is, otherwise as a
LockErrorGroup.
"""

import asyncio
from typing import Any, Callable, List, Mapping, Optional

from pydantic import ValidationError

from core.config.defaults import ElectionTimings
from core.contracts import ElectionOutcome, LockState
from core.errors import (
    CleanupFailure,
    ElectionTimeout,
    ExternalCancellation,
    InvalidConfiguration,
    join_errors,
)
from core.labels import merge_labels
from core.logging import get_logger, log_context
from core.models import LockIdentity
from repositories import LeaseRepository
from services import LeaseCoordinator
from services.lease_service import DEFAULT_DELETE_TIMEOUT_SEC
from .election import LeaderCallbacks, LeaderElector, maybe_await

logger = get_logger(__name__)


class Locker:
    """Mutual exclusion for a function across processes sharing a lease store."""

    def __init__(
        self,
        namespace: str,
        name: str,
        identity: str,
        repository: LeaseRepository,
        labels: Optional[Mapping[str, str]] = None,
        timings: Optional[ElectionTimings] = None,
        delete_timeout: float = DEFAULT_DELETE_TIMEOUT_SEC,
    ):
        """
        Initialize locker.

        Args:
            namespace: Lease namespace
            name: Lease name
            identity: Holder identity of this contender
            repository: Lease store shared by all contenders
            labels: Extra labels written to the lease
            timings: Election timings (defaults 15s/10s/2s)
            delete_timeout: Bound on lease deletion after the run

        Raises:
            InvalidConfiguration on empty or over-long identity fields, a
            missing repository, bad labels or inconsistent timings
        """
        for field_name, value in (("namespace", namespace), ("name", name), ("identity", identity)):
            if not value:
                raise InvalidConfiguration(f"Lock {field_name} must not be empty")
        if repository is None:
            raise InvalidConfiguration("A lease repository is required")

        try:
            self.lock = LockIdentity(namespace=namespace, name=name, holder_id=identity)
        except ValidationError as e:
            raise InvalidConfiguration(f"Invalid lock identity: {e}") from e
        self.repository = repository
        self.labels = merge_labels(labels)
        self.timings = (timings or ElectionTimings()).validate()
        self.coordinator = LeaseCoordinator(repository, delete_timeout=delete_timeout)

    async def acquire_and_run(
        self,
        fn: Callable[[asyncio.Event], Any],
        *,
        cleanup: Optional[Callable[[], Any]] = None,
        wait_timeout: Optional[float] = None,
        delete_lease_on_exit: bool = False,
        stop: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Acquire the lease, run fn, release the lease.

        Args:
            fn: Called as fn(leader_stop) once leadership is held; may be
                sync or async. leader_stop is set when fn should stop.
            cleanup: Called once after leadership ends if fn was entered
            wait_timeout: Seconds to wait for the lease; None or 0 waits
                indefinitely
            delete_lease_on_exit: Delete the lease after the run
            stop: External cancellation

        Returns:
            The return value of fn, or None if it never ran

        Raises:
            InvalidConfiguration for a negative wait_timeout
            ElectionTimeout if the wait bound elapsed first
            ExternalCancellation if stop fired before acquisition
            CleanupFailure if the lease could not be deleted
            Whatever fn or cleanup raised
            LockErrorGroup when more than one of the above happened
        """
        if wait_timeout is not None and wait_timeout < 0:
            raise InvalidConfiguration(f"wait_timeout must not be negative: {wait_timeout}")

        run = _LockRun(self, fn, cleanup, wait_timeout)
        with log_context(
            namespace=self.lock.namespace,
            lease=self.lock.name,
            identity=self.lock.holder_id,
            component="locker",
        ):
            errors = await run.execute(stop)

            if delete_lease_on_exit:
                try:
                    await self.coordinator.delete_released(self.lock)
                except CleanupFailure as e:
                    logger.error(str(e))
                    errors.append(e)

        error = join_errors(errors, f"lock run failed: {self.lock}")
        if error is not None:
            raise error
        return run.result


class _LockRun:
    """State of a single acquire_and_run() call."""

    def __init__(
        self,
        locker: Locker,
        fn: Callable[[asyncio.Event], Any],
        cleanup: Optional[Callable[[], Any]],
        wait_timeout: Optional[float],
    ):
        self.locker = locker
        self.fn = fn
        self.cleanup = cleanup
        self.wait_timeout = wait_timeout

        self.state = LockState.ELECTING
        self.result: Any = None
        self.errors: List[BaseException] = []
        self.derived_stop = asyncio.Event()
        self.outcome: asyncio.Future = asyncio.get_running_loop().create_future()

    async def execute(self, stop: Optional[asyncio.Event]) -> List[BaseException]:
        """Run the race and the election. Returns the errors collected."""
        loop = asyncio.get_running_loop()
        lock = self.locker.lock

        timer: Optional[asyncio.TimerHandle] = None
        if self.wait_timeout:
            timer = loop.call_later(self.wait_timeout, self._decide, ElectionOutcome.TIMED_OUT)

        watcher: Optional[asyncio.Task] = None
        if stop is not None and stop.is_set():
            self._decide(ElectionOutcome.CANCELED)
        elif stop is not None:
            watcher = asyncio.create_task(self._watch(stop), name=f"leaselock-stop-{lock.name}")

        elector = LeaderElector(
            self.locker.repository,
            lock,
            LeaderCallbacks(
                on_started_leading=self._lead,
                on_stopped_leading=self._finish,
                on_new_leader=self._new_leader,
            ),
            timings=self.locker.timings,
            labels=self.locker.labels,
        )

        logger.info(f"Waiting for lease {lock.namespace}/{lock.name}")
        try:
            await elector.run(self.derived_stop)
        finally:
            if timer is not None:
                timer.cancel()
            if watcher is not None:
                watcher.cancel()

        errors: List[BaseException] = []
        outcome = self.outcome.result() if self.outcome.done() else None
        if outcome is ElectionOutcome.TIMED_OUT:
            errors.append(ElectionTimeout(self.wait_timeout, str(lock)))
        elif outcome is ElectionOutcome.CANCELED:
            errors.append(ExternalCancellation(f"Cancelled while waiting for lease: {lock}"))
        errors.extend(self.errors)
        return errors

    # =========================================================================
    # RACE
    # =========================================================================

    def _decide(self, outcome: ElectionOutcome) -> bool:
        """
        Settle the race. Only the first call has any effect.

        Returns:
            True if outcome won the race
        """
        if self.outcome.done():
            return False
        self.outcome.set_result(outcome)

        if outcome is ElectionOutcome.SUCCEEDED:
            self._transition(LockState.LEADING)
        else:
            logger.debug(f"Election ended: {outcome.value}")
            self._transition(LockState.DONE)
            self.derived_stop.set()
        return True

    async def _watch(self, stop: asyncio.Event) -> None:
        await stop.wait()
        self._decide(ElectionOutcome.CANCELED)
        self.derived_stop.set()

    def _transition(self, target: LockState) -> None:
        if self.state is target:
            return
        if not self.state.can_transition_to(target):
            raise RuntimeError(f"Invalid lock state transition {self.state.value} -> {target.value}")
        self.state = target

    # =========================================================================
    # ELECTION CALLBACKS
    # =========================================================================

    async def _lead(self, leader_stop: asyncio.Event) -> None:
        if not self._decide(ElectionOutcome.SUCCEEDED):
            logger.debug("Acquired lease after the wait was already over, not running")
            return

        logger.info("Became leader")
        try:
            self.result = await maybe_await(self.fn(leader_stop))
        except Exception as e:
            self.errors.append(e)
        finally:
            self.derived_stop.set()

    async def _finish(self) -> None:
        was_leading = self.state is LockState.LEADING
        self._transition(LockState.DONE)
        if not was_leading:
            return

        logger.info("Stopped leading")
        if self.cleanup is None:
            return
        try:
            await maybe_await(self.cleanup())
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
            self.errors.append(e)

    def _new_leader(self, holder: str) -> None:
        if holder != self.locker.lock.holder_id:
            logger.info(f"New leader elected: {holder}")


__all__ = ["Locker"]
