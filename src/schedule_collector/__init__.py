"""
Periodic schedule collector.

Watches a host's own traffic for upstream credentials, polls the schedule
API on an interval, and forwards changed snapshots to a remote collector.

Usage:
    from config import load_config
    from schedule_collector import CollectorAgent, HostTrafficHooks

    hooks = HostTrafficHooks()
    async with CollectorAgent(load_config(), hooks) as agent:
        ...
"""

from schedule_collector.agent import CollectorAgent
from schedule_collector.change_detector import (
    ChangePolicy,
    ContentDiffPolicy,
    Decision,
    TtlPolicy,
    make_policy,
)
from schedule_collector.credentials import Credential, CredentialObserver
from schedule_collector.delivery import DeliveryPipeline
from schedule_collector.fetcher import ScheduleQuery, SnapshotFetcher
from schedule_collector.hook_server import HookServer
from schedule_collector.host import (
    HostTrafficHooks,
    ObservedConnection,
    ObservedRequest,
    ObservedResponse,
    TrafficObserver,
)
from schedule_collector.scheduler import CycleOutcome, CycleState, Scheduler, SchedulerStats
from schedule_collector.store import (
    CacheEntry,
    JsonFileStore,
    MemoryStore,
    PersistentStore,
    create_store,
)

__all__ = [
    "CollectorAgent",
    # Host traffic
    "HostTrafficHooks",
    "TrafficObserver",
    "ObservedRequest",
    "ObservedResponse",
    "ObservedConnection",
    "HookServer",
    # Credentials
    "Credential",
    "CredentialObserver",
    # Fetch / gate / delivery
    "ScheduleQuery",
    "SnapshotFetcher",
    "ChangePolicy",
    "ContentDiffPolicy",
    "TtlPolicy",
    "Decision",
    "make_policy",
    "DeliveryPipeline",
    # Scheduling
    "Scheduler",
    "SchedulerStats",
    "CycleState",
    "CycleOutcome",
    # Storage
    "PersistentStore",
    "MemoryStore",
    "JsonFileStore",
    "CacheEntry",
    "create_store",
]
