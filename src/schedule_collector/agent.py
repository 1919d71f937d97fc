"""
Collector agent: the one object that owns a running collector.

Holds configuration, store, credential observer, fetcher, change gate,
delivery pipeline and scheduler. Built once per run and torn down
explicitly; nothing lives at module level.

Usage:
    hooks = HostTrafficHooks()
    async with CollectorAgent(config, hooks) as agent:
        ...  # host reports traffic into hooks
"""

import logging
import time
from collections.abc import Callable

from config.config import CollectorConfig
from core.utils import generate_agent_id
from schedule_collector.change_detector import ChangePolicy, make_day_cache, make_policy
from schedule_collector.credentials import Credential, CredentialObserver
from schedule_collector.delivery import DeliveryPipeline
from schedule_collector.fetcher import ScheduleQuery, SnapshotFetcher
from schedule_collector.host import HostTrafficHooks
from schedule_collector.scheduler import CycleOutcome, Scheduler
from schedule_collector.store import PersistentStore, create_store

logger = logging.getLogger(__name__)


class CollectorAgent:
    """Wires the collection pipeline together and manages its lifecycle."""

    def __init__(
        self,
        config: CollectorConfig,
        hooks: HostTrafficHooks,
        store: PersistentStore | None = None,
        clock: Callable[[], float] = time.time,
        agent_id: str | None = None,
    ):
        self.config = config
        self.hooks = hooks
        self.agent_id = agent_id or generate_agent_id("collector")
        self.store = store or create_store(
            config.store.backend,
            path=config.store.path,
            prefix=config.store.prefix,
            clock=clock,
        )

        self.observer = CredentialObserver(config.credentials, store=self.store, clock=clock)
        self.fetcher = SnapshotFetcher(
            config.upstream.url,
            timeout_seconds=config.upstream.request_timeout_seconds,
        )
        self.gate: ChangePolicy = make_policy(config.change_detection, self.store, clock=clock)
        self.delivery = DeliveryPipeline(
            config.collector.url,
            gate=self.gate,
            source_tag=config.collector.source_tag,
            authorization=config.collector.authorization,
            max_attempts=config.collector.max_attempts,
            retry_delay_seconds=config.collector.retry_delay_seconds,
            timeout_seconds=config.collector.request_timeout_seconds,
        )
        self.scheduler = Scheduler(
            observer=self.observer,
            fetcher=self.fetcher,
            gate=self.gate,
            delivery=self.delivery,
            query=ScheduleQuery(**config.upstream.query),
            interval_seconds=config.scheduler.interval_seconds,
            credential_wait_seconds=config.credentials.wait_seconds,
            max_credential_misses=config.credentials.max_misses,
            days_ahead=config.upstream.days_ahead,
            day_cache=make_day_cache(config.change_detection, self.store),
        )
        self._started = False

    async def __aenter__(self) -> "CollectorAgent":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def _on_credential(self, credential: Credential) -> None:
        # A credential arriving while idle starts a cycle now instead of at the next tick
        self.scheduler.trigger()

    def _prepare(self) -> None:
        self.store.sweep()
        restored = self.observer.load_persisted()
        if restored is not None:
            logger.info("Restored persisted credential", extra={"credential_source": restored.source})

        self.observer.on_credential_available.append(self._on_credential)
        self.hooks.subscribe(self.observer)

    async def start(self) -> None:
        """Sweep stale entries, restore credentials, subscribe to hooks, start polling."""
        if self._started:
            return

        self._prepare()
        self.scheduler.start()
        self._started = True
        logger.info(
            "Collector agent started",
            extra={
                "url": self.config.upstream.url,
                "interval_seconds": self.config.scheduler.interval_seconds,
            },
        )

    async def run_once(self) -> CycleOutcome:
        """Run a single cycle without starting the loop (CLI --once)."""
        self._prepare()
        try:
            return await self.scheduler.run_cycle()
        finally:
            await self._teardown()

    async def stop(self) -> None:
        """Clear the timer, detach from the host, close HTTP sessions."""
        if not self._started:
            return
        self._started = False

        await self.scheduler.stop()
        await self._teardown()
        logger.info("Collector agent stopped")

    async def _teardown(self) -> None:
        self.hooks.unsubscribe(self.observer)
        if self._on_credential in self.observer.on_credential_available:
            self.observer.on_credential_available.remove(self._on_credential)
        await self.fetcher.close()
        await self.delivery.close()
