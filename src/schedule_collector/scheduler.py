"""
Polling scheduler.

Drives one collection cycle at a time:

    IDLE -> AWAITING_CREDENTIAL -> FETCHING -> EVALUATING -> DELIVERING -> IDLE

Every exit path, including failures, goes back to IDLE and the loop arms the
next cycle `interval_seconds` after the previous one finished. A cycle
requested while another is running is dropped (coalesced), not queued.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from core.errors import AuthError, CollectorError, CredentialUnavailable, DeliveryError
from core.logging import generate_cycle_id, log_exception, set_log_context
from schedule_collector.change_detector import ChangePolicy, DayCache, Decision
from schedule_collector.credentials import CredentialObserver
from schedule_collector.delivery import DeliveryPipeline
from schedule_collector.fetcher import ScheduleQuery, SnapshotFetcher

logger = logging.getLogger(__name__)


class CycleState(Enum):
    IDLE = "idle"
    AWAITING_CREDENTIAL = "awaiting_credential"
    FETCHING = "fetching"
    EVALUATING = "evaluating"
    DELIVERING = "delivering"


class CycleOutcome(Enum):
    DELIVERED = "delivered"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    SKIPPED_CACHED = "skipped_cached"
    NO_DATA = "no_data"
    CREDENTIAL_UNAVAILABLE = "credential_unavailable"
    AUTH_FAILED = "auth_failed"
    FETCH_FAILED = "fetch_failed"
    DELIVERY_FAILED = "delivery_failed"
    COALESCED = "coalesced"
    ABANDONED = "abandoned"


FAILED_OUTCOMES = frozenset(
    {
        CycleOutcome.CREDENTIAL_UNAVAILABLE,
        CycleOutcome.AUTH_FAILED,
        CycleOutcome.FETCH_FAILED,
        CycleOutcome.DELIVERY_FAILED,
    }
)

_DECISION_OUTCOMES = {
    Decision.SKIP_EMPTY: (CycleOutcome.NO_DATA, "No data to deliver"),
    Decision.SKIP_UNCHANGED: (CycleOutcome.SKIPPED_UNCHANGED, "No new data to send"),
    Decision.SKIP_CACHED: (CycleOutcome.SKIPPED_CACHED, "Using cached data"),
}


@dataclass
class SchedulerStats:
    cycles_run: int = 0
    deliveries: int = 0
    failures: int = 0
    coalesced: int = 0
    consecutive_credential_misses: int = 0
    last_outcome: CycleOutcome | None = None


class Scheduler:
    """Runs collection cycles on a fixed interval, one at a time."""

    def __init__(
        self,
        observer: CredentialObserver,
        fetcher: SnapshotFetcher,
        gate: ChangePolicy,
        delivery: DeliveryPipeline,
        query: ScheduleQuery | None = None,
        interval_seconds: float = 60.0,
        credential_wait_seconds: float = 5.0,
        max_credential_misses: int = 3,
        days_ahead: int = 1,
        day_cache: DayCache | None = None,
        utc_now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        if days_ahead < 1:
            raise ValueError(f"days_ahead must be >= 1, got {days_ahead}")

        self.observer = observer
        self.fetcher = fetcher
        self.gate = gate
        self.delivery = delivery
        self.query = query or ScheduleQuery()
        self.interval_seconds = interval_seconds
        self.credential_wait_seconds = credential_wait_seconds
        self.max_credential_misses = max_credential_misses
        self.days_ahead = days_ahead
        self.day_cache = day_cache
        self._utc_now = utc_now

        self.stats = SchedulerStats()
        self._state = CycleState.IDLE
        self._in_flight = False
        self._alive = True
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_alive(self) -> bool:
        return self._alive

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the polling loop. The first cycle runs immediately."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self._alive = True
        self._wake.clear()
        self._task = asyncio.create_task(self._run(), name="collector-scheduler")
        logger.info("Scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """
        Stop the loop and clear the pending timer.

        A cycle in flight is allowed to finish its current network call (up
        to grace_seconds); its result is discarded because the liveness flag
        is already down.
        """
        self._alive = False
        self._wake.set()

        task, self._task = self._task, None
        if task is None:
            return

        if not self._in_flight:
            task.cancel()

        try:
            await asyncio.wait_for(task, timeout=grace_seconds)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass

        logger.info("Scheduler stopped")

    def trigger(self) -> bool:
        """Ask for a cycle now. Returns False if one is already in flight (coalesced)."""
        if self._in_flight:
            self.stats.coalesced += 1
            logger.debug("Cycle already in flight, trigger coalesced")
            return False
        self._wake.set()
        return True

    async def _run(self) -> None:
        while self._alive:
            try:
                await self.run_cycle()
            except Exception as e:
                # Unexpected bug in a cycle; keep polling
                log_exception(logger, e, "Unexpected error in collection cycle", include_traceback=True)
                self.stats.failures += 1

            if not self._alive:
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleOutcome:
        """Run one cycle, or return COALESCED if one is already running."""
        if self._in_flight:
            self.stats.coalesced += 1
            logger.debug("Cycle already in flight, request coalesced")
            return CycleOutcome.COALESCED

        self._in_flight = True
        set_log_context(cycle_id=generate_cycle_id(), stage="cycle")
        outcome: CycleOutcome | None = None
        try:
            outcome = await self._cycle()
            logger.debug("Cycle finished", extra={"cycle_outcome": outcome.value})
        finally:
            self._state = CycleState.IDLE
            self._in_flight = False
            self.stats.cycles_run += 1
            self.stats.last_outcome = outcome
            set_log_context(cycle_id="", stage="")

        if outcome == CycleOutcome.DELIVERED:
            self.stats.deliveries += 1
        elif outcome in FAILED_OUTCOMES:
            self.stats.failures += 1
        return outcome

    async def _cycle(self) -> CycleOutcome:
        self._state = CycleState.AWAITING_CREDENTIAL
        credential = await self.observer.wait_for_credential(self.credential_wait_seconds)
        if not self._alive:
            return CycleOutcome.ABANDONED

        if credential is None:
            # Fetch unauthenticated; a 401/403 ends the cycle as unavailable
            self._record_credential_miss()
        else:
            self.stats.consecutive_credential_misses = 0

        self._state = CycleState.FETCHING
        now = self._utc_now()
        snapshot: list = []
        for day_offset in range(self.days_ahead):
            day = (now + timedelta(days=day_offset)).date()
            cached = self.day_cache.get(day) if self.day_cache is not None else None
            if cached is not None:
                logger.debug("Using cached day", extra={"day_offset": day_offset, "event_count": len(cached)})
                snapshot.extend(cached)
                continue

            try:
                data = await self.fetcher.fetch(self.query, credential, day_offset=day_offset, now=now)
            except AuthError as e:
                if credential is None:
                    log_exception(
                        logger, e, "Upstream requires a credential", level=logging.WARNING, day_offset=day_offset
                    )
                    return CycleOutcome.CREDENTIAL_UNAVAILABLE
                if self._alive:
                    self.observer.invalidate(f"upstream returned {e.status}")
                log_exception(logger, e, "Upstream rejected credential", level=logging.WARNING, day_offset=day_offset)
                return CycleOutcome.AUTH_FAILED
            except CollectorError as e:
                log_exception(logger, e, "Fetching schedule failed", day_offset=day_offset)
                return CycleOutcome.FETCH_FAILED

            if not self._alive:
                return CycleOutcome.ABANDONED

            logger.debug("Fetched schedule", extra={"day_offset": day_offset, "event_count": len(data)})
            if self.day_cache is not None:
                self.day_cache.put(day, data)
            snapshot.extend(data)

        self._state = CycleState.EVALUATING
        decision = self.gate.decide(snapshot)
        if decision in _DECISION_OUTCOMES:
            outcome, message = _DECISION_OUTCOMES[decision]
            logger.info(message, extra={"decision": decision.value, "event_count": len(snapshot)})
            return outcome

        self._state = CycleState.DELIVERING
        try:
            committed = await self.delivery.deliver(snapshot, is_alive=lambda: self._alive)
        except DeliveryError as e:
            log_exception(logger, e, "Delivery failed, snapshot kept for next cycle", attempt=e.attempts)
            return CycleOutcome.DELIVERY_FAILED

        return CycleOutcome.DELIVERED if committed else CycleOutcome.ABANDONED

    def _record_credential_miss(self) -> None:
        self.stats.consecutive_credential_misses += 1
        misses = self.stats.consecutive_credential_misses
        error = CredentialUnavailable(f"No credential observed within {self.credential_wait_seconds}s")

        level = logging.ERROR if misses >= self.max_credential_misses else logging.WARNING
        log_exception(
            logger,
            error,
            "Credential acquisition still pending, fetching without one"
            if level == logging.ERROR
            else "No credential yet, fetching without one",
            level=level,
            consecutive_misses=misses,
        )
