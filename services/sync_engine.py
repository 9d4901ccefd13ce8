from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sqlmodel import Session

from core.entity_types import CYCLE_ORDER, EntityType, SyncDirection, SyncOperation, parse_entity_type
from core.logs import get_logger
from core.settings import SYNC, SyncSettings
from datetime_utils import to_rfc3339_utc, utc_now
from models.queue_item import SyncQueueItem
from services.api_client import ApiClient
from services.backoff import BackoffPolicy
from services.cursor_store import CursorStore
from services.dead_letter import DeadLetterManager
from services.entity_repository import EntityRepository
from services.errors import ErrorCategory
from services.outbox import Outbox, Payload
from services.pull_worker import PullStats, PullWorker
from services.push_worker import DrainResult, PushWorker
from services.queue_store import QueueStats, QueueStore
from services.reconciler import Reconciler
from services.scheduler import SyncScheduler
from storage.db import Database


logger = get_logger("engine")


@dataclass
class CycleReport:
    pushed: DrainResult = field(default_factory=DrainResult)
    pulled: PullStats = field(default_factory=PullStats)
    errors: Dict[str, str] = field(default_factory=dict)


class SyncEngine:
    """Wires the queue, workers and scheduler for one store.

    This is the only surface UI and CLI collaborators use.
    """

    def __init__(
        self,
        database: Database,
        api: ApiClient,
        settings: Optional[SyncSettings] = None,
        *,
        clock: Callable = utc_now,
        rng: Optional[random.Random] = None,
        pull_enabled: bool = True,
    ) -> None:
        self.settings = settings or SYNC
        self.db = database
        self.api = api
        self.clock = clock
        self.pull_enabled = pull_enabled

        store_id = self.settings.store_id
        self.queue = QueueStore(store_id)
        self.cursors = CursorStore(store_id)
        self.repository = EntityRepository()
        self.backoff = BackoffPolicy(self.settings.backoff, rng=rng)
        self.outbox = Outbox(self.queue, max_attempts=self.settings.max_attempts, clock=clock)
        self.reconciler = Reconciler(store_id, repository=self.repository, clock=clock)
        self.push_worker = PushWorker(database, self.queue, self.cursors, api, self.backoff, clock=clock)
        self.pull_worker = PullWorker(
            database,
            self.queue,
            self.cursors,
            api,
            self.reconciler,
            self.backoff,
            outbox=self.outbox,
            max_pages=self.settings.max_pages_per_pull,
            clock=clock,
        )
        self.dead_letters = DeadLetterManager(
            database, self.queue, self.outbox, repository=self.repository
        )
        self.scheduler = SyncScheduler(self.run_cycle, self.settings.interval_sec)

    @property
    def store_id(self) -> str:
        return self.settings.store_id

    # ------------------------------------------------------------------
    # Outbox
    def enqueue(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        operation: Union[SyncOperation, str],
        payload: Payload,
        direction: Union[SyncDirection, str] = SyncDirection.PUSH,
        priority: int = 0,
        *,
        session: Optional[Session] = None,
    ) -> SyncQueueItem:
        """Enqueue in ``session`` when given, else in a transaction of its own."""

        if session is not None:
            return self.outbox.enqueue(session, entity_type, entity_id, operation, payload, direction, priority)
        with self.db.transaction() as own:
            return self.outbox.enqueue(own, entity_type, entity_id, operation, payload, direction, priority)

    # ------------------------------------------------------------------
    # Cycles
    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        for kind in CYCLE_ORDER:
            if self.pull_enabled:
                stats = self.pull_worker.pull(kind)
                report.pulled = report.pulled.merge(stats)
                if stats.error:
                    report.errors[kind.value] = stats.error
            drained = self.push_worker.drain(self.settings.batch_size, kind)
            report.pushed = report.pushed.merge(drained)

        pushed, pulled = report.pushed, report.pulled
        logger.info(
            "Sync cycle: pushed %s/%s (failed %s, dead %s, skipped %s); "
            "pulled created=%s updated=%s skipped=%s conflicts=%s; errors=%s",
            pushed.succeeded,
            pushed.attempted,
            pushed.failed,
            pushed.dead_lettered,
            pushed.skipped,
            pulled.created,
            pulled.updated,
            pulled.skipped,
            pulled.conflicts,
            len(report.errors),
        )
        return report

    def pull(self, entity_type: Union[EntityType, str]) -> PullStats:
        return self.pull_worker.pull(parse_entity_type(entity_type))

    def drain(self, entity_type: Union[EntityType, str, None] = None) -> DrainResult:
        kind = parse_entity_type(entity_type) if entity_type is not None else None
        return self.push_worker.drain(self.settings.batch_size, kind)

    def trigger_now(self) -> Optional[CycleReport]:
        return self.scheduler.trigger_now()

    def start(self) -> None:
        if not self.settings.enabled:
            logger.info("Sync disabled in settings, scheduler not started")
            return
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.scheduler.stop(timeout)

    # ------------------------------------------------------------------
    # Operator tooling
    def get_queue_stats(self) -> QueueStats:
        with self.db.session() as session:
            return self.queue.stats(session)

    def list_dead_lettered(
        self,
        entity_type: Union[EntityType, str, None] = None,
        *,
        error_category: Union[ErrorCategory, str, None] = None,
        operation: Union[SyncOperation, str, None] = None,
    ) -> List[SyncQueueItem]:
        return self.dead_letters.list_dead_lettered(
            entity_type, error_category=error_category, operation=operation
        )

    def requeue(self, queue_item_id: str) -> SyncQueueItem:
        return self.dead_letters.requeue(queue_item_id)

    def requeue_matching(
        self,
        entity_type: Union[EntityType, str, None] = None,
        error_category: Union[ErrorCategory, str, None] = None,
        operation: Union[SyncOperation, str, None] = None,
    ) -> List[SyncQueueItem]:
        return self.dead_letters.requeue_matching(entity_type, error_category, operation)

    def reset_cursor(self, entity_type: Union[EntityType, str, None] = None) -> int:
        kind = parse_entity_type(entity_type) if entity_type is not None else None
        return self.pull_worker.reset_cursor(kind)

    def purge_synced(self, older_than: Optional[timedelta] = None) -> int:
        age = older_than if older_than is not None else timedelta(days=self.settings.purge_after_days)
        with self.db.transaction() as session:
            removed = self.queue.purge_synced(session, self.clock() - age)
        logger.info("Purged %s synced queue row(s)", removed)
        return removed

    def status(self) -> Dict[str, Any]:
        with self.db.session() as session:
            stats = self.queue.stats(session)
            cursors = self.cursors.all(session)
        return {
            "storeId": self.store_id,
            "scheduler": self.scheduler.state.value,
            "queue": stats.as_dict(),
            "cursors": {
                c.entity_type: {
                    "lastPullAt": to_rfc3339_utc(c.last_pull_at) if c.last_pull_at else None,
                    "lastPushAt": to_rfc3339_utc(c.last_push_at) if c.last_push_at else None,
                    "recordsPulled": c.records_pulled,
                }
                for c in cursors
            },
        }


__all__ = ["CycleReport", "SyncEngine"]
