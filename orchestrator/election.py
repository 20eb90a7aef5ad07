# ============================================================================
# LEADER ELECTION
# ============================================================================
# STATUS: Core - Lease-based leader election
# PURPOSE: Acquire, renew and release a lease under a holder identity
# CREATED: 19 OCT 2026
# ============================================================================
"""
Leader Election

Drives one contender through the lease protocol:

1. Acquire: try to take the lease every retry_period (jittered) until it
   is free or expired, or until stopped
2. Lead: start on_started_leading() as a task and renew the lease every
   retry_period; a renewal that does not succeed within renew_deadline
   means leadership is lost
3. Step down: when stopped or lost, signal the leading task, wait for
   it, release the lease (holder cleared) and call on_stopped_leading()

Expiry is judged on the local monotonic clock: a lease held by someone
else is valid until lease_duration_seconds after this contender first
saw its current version. Clocks of different hosts are never compared.

Store errors during attempts are logged and retried at the next period.
"""

import asyncio
import inspect
import logging
import math
import random
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from core.config.defaults import JITTER_FACTOR, RELEASED_LEASE_DURATION_SEC, ElectionTimings
from core.labels import merge_labels
from core.models import LeaseRecord, LockIdentity, utcnow
from repositories import LeaseRepository, LeaseStoreError

logger = logging.getLogger(__name__)


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable, else return it."""
    if inspect.isawaitable(value):
        return await value
    return value


async def wait_stopped(stop: asyncio.Event, timeout: float) -> bool:
    """
    Wait up to timeout seconds for stop.

    Returns:
        True if stop was set, False if the timeout elapsed
    """
    try:
        await asyncio.wait_for(stop.wait(), timeout)
        return True
    except asyncio.TimeoutError:
        return stop.is_set()


@dataclass
class LeaderCallbacks:
    """
    Hooks invoked by LeaderElector.

    on_started_leading: coroutine run as a task once the lease is held;
        receives an event that is set when leadership ends
    on_stopped_leading: called once when run() finishes, whether or not
        leadership was ever acquired (sync or async)
    on_new_leader: called with the holder identity whenever the observed
        holder changes
    """
    on_started_leading: Callable[[asyncio.Event], Awaitable[Any]]
    on_stopped_leading: Optional[Callable[[], Any]] = None
    on_new_leader: Optional[Callable[[str], Any]] = None


class LeaderElector:
    """
    Lease-based leader election for one holder identity.

    A LeaderElector is used for a single run().
    """

    def __init__(
        self,
        repository: LeaseRepository,
        identity: LockIdentity,
        callbacks: LeaderCallbacks,
        timings: Optional[ElectionTimings] = None,
        labels: Optional[Mapping[str, str]] = None,
        release_on_cancel: bool = True,
    ):
        """
        Initialize elector.

        Args:
            repository: Lease storage shared by all contenders
            identity: Lease namespace/name and this contender's holder id
            callbacks: Leadership hooks
            timings: Protocol timings (validated)
            labels: Extra labels written to the lease
            release_on_cancel: Clear the holder when stepping down

        Raises:
            InvalidConfiguration if the timings are inconsistent
        """
        self.repository = repository
        self.identity = identity
        self.callbacks = callbacks
        self.timings = (timings or ElectionTimings()).validate()
        self.labels: Dict[str, str] = merge_labels(labels)
        self.release_on_cancel = release_on_cancel

        self._observed: Optional[LeaseRecord] = None
        self._observed_time = 0.0
        self._reported_leader: Optional[str] = None

    @property
    def lease_duration_seconds(self) -> int:
        return max(1, math.ceil(self.timings.lease_duration))

    @property
    def is_leader(self) -> bool:
        """True if the last observed record names this contender."""
        return self._observed is not None and self._observed.is_held_by(self.identity.holder_id)

    @property
    def observed_record(self) -> Optional[LeaseRecord]:
        return self._observed

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self, stop: asyncio.Event) -> None:
        """
        Take part in the election until stop is set or leadership is lost.

        Args:
            stop: Set to stop acquiring, or to step down when leading
        """
        try:
            if not await self._acquire(stop):
                return

            leader_stop = asyncio.Event()
            leading = asyncio.create_task(
                self.callbacks.on_started_leading(leader_stop),
                name=f"leaselock-leading-{self.identity.name}",
            )
            try:
                await self._renew(stop)
            finally:
                leader_stop.set()
                try:
                    await leading
                finally:
                    if self.release_on_cancel:
                        await self.release()
        finally:
            if self.callbacks.on_stopped_leading is not None:
                await maybe_await(self.callbacks.on_stopped_leading())

    async def _acquire(self, stop: asyncio.Event) -> bool:
        """Loop until the lease is acquired (True) or stop is set (False)."""
        lease = f"{self.identity.namespace}/{self.identity.name}"
        logger.debug(f"Attempting to acquire lease {lease}")

        while not stop.is_set():
            if await self._attempt(stop):
                logger.debug(f"Successfully acquired lease {lease}")
                return True
            delay = self.timings.retry_period * (1 + random.random() * JITTER_FACTOR)
            if await wait_stopped(stop, delay):
                break

        return False

    async def _renew(self, stop: asyncio.Event) -> None:
        """Renew every retry_period until stop is set or a renewal fails."""
        lease = f"{self.identity.namespace}/{self.identity.name}"

        while not stop.is_set():
            if await wait_stopped(stop, self.timings.retry_period):
                return

            if not await self._renew_within_deadline(stop):
                logger.warning(
                    f"Failed to renew lease {lease} within "
                    f"{self.timings.renew_deadline}s, leadership lost"
                )
                return

    async def _renew_within_deadline(self, stop: asyncio.Event) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.renew_deadline

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            if await self._attempt(stop, timeout=remaining):
                return True
            if stop.is_set():
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            if await wait_stopped(stop, min(self.timings.retry_period, remaining)):
                return True

    async def _attempt(self, stop: asyncio.Event, timeout: Optional[float] = None) -> bool:
        """
        One acquire-or-renew attempt, abandoned if stop is set first.

        Returns:
            True if the lease is now held by this contender
        """
        attempt = asyncio.ensure_future(self.try_acquire_or_renew())
        stopper = asyncio.ensure_future(stop.wait())
        try:
            done, _ = await asyncio.wait(
                {attempt, stopper},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stopper.cancel()

        if attempt in done:
            return attempt.result()

        attempt.cancel()
        with suppress(asyncio.CancelledError):
            await attempt
        return False

    # =========================================================================
    # LEASE PROTOCOL
    # =========================================================================

    async def try_acquire_or_renew(self) -> bool:
        """
        Acquire the lease if it is free or expired, or renew it if held.

        Returns:
            True on success, False if held by someone else or on store error
        """
        namespace, name, holder = self.identity.namespace, self.identity.name, self.identity.holder_id
        now = utcnow()

        try:
            current = await self.repository.get(namespace, name)
        except LeaseStoreError as e:
            logger.error(f"Error retrieving lease {namespace}/{name}: {e}")
            return False

        if current is None:
            record = LeaseRecord(
                namespace=namespace,
                name=name,
                holder_identity=holder,
                lease_duration_seconds=self.lease_duration_seconds,
                acquire_time=now,
                renew_time=now,
                lease_transitions=0,
                labels=self.labels,
            )
            try:
                created = await self.repository.create(record)
            except LeaseStoreError as e:
                logger.debug(f"Error creating lease {namespace}/{name}: {e}")
                return False
            self._observe(created)
            return True

        self._observe(current)

        if (
            current.is_held
            and not current.is_held_by(holder)
            and self._observed_time + current.lease_duration_seconds > time.monotonic()
        ):
            logger.debug(
                f"Lease {namespace}/{name} is held by {current.holder_identity} and has not yet expired "
                f"(expired by its own renew_time: {current.is_expired(now)})"
            )
            return False

        if current.is_held_by(holder):
            acquire_time = current.acquire_time
            transitions = current.lease_transitions
        else:
            acquire_time = now
            transitions = current.lease_transitions + 1

        updated = current.model_copy(update={
            "holder_identity": holder,
            "lease_duration_seconds": self.lease_duration_seconds,
            "acquire_time": acquire_time,
            "renew_time": now,
            "lease_transitions": transitions,
            "labels": {**current.labels, **self.labels},
        })
        try:
            stored = await self.repository.update(updated)
        except LeaseStoreError as e:
            logger.debug(f"Failed to update lease {namespace}/{name}: {e}")
            return False

        self._observe(stored)
        return True

    async def release(self) -> bool:
        """
        Clear the holder if this contender still holds the lease.

        Returns:
            True if the lease was released
        """
        if not self.is_leader:
            return False

        now = utcnow()
        released = self._observed.model_copy(update={
            "holder_identity": "",
            "lease_duration_seconds": RELEASED_LEASE_DURATION_SEC,
            "acquire_time": now,
            "renew_time": now,
        })
        try:
            stored = await self.repository.update(released)
        except LeaseStoreError as e:
            logger.error(f"Failed to release lease {self.identity.namespace}/{self.identity.name}: {e}")
            return False

        self._observe(stored)
        logger.debug(f"Released lease {self.identity.namespace}/{self.identity.name}")
        return True

    def _observe(self, record: LeaseRecord) -> None:
        """Remember record, restarting the expiry clock if its version changed."""
        observed = self._observed
        if (
            observed is None
            or observed.uid != record.uid
            or observed.resource_version != record.resource_version
        ):
            self._observed = record
            self._observed_time = time.monotonic()
        self._report_transition()

    def _report_transition(self) -> None:
        holder = self._observed.holder_identity if self._observed else ""
        if holder == self._reported_leader:
            return
        self._reported_leader = holder
        if holder and self.callbacks.on_new_leader is not None:
            self.callbacks.on_new_leader(holder)


__all__ = ["LeaderCallbacks", "LeaderElector", "maybe_await", "wait_stopped"]
