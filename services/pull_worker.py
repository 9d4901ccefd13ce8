"""Fetch cloud changes since the cursor and reconcile them locally.

Every pull is tracked by one PULL row in ``sync_queue`` keyed on
``pull:<entity_type>``. The row is completed in the same transaction that
applies the final page, so an empty pull leaves exactly one synced row and a
failing pull keeps reusing the same pending row. The cursor moves only in that
final transaction; when a later page fails, the pages already applied are
fetched again next time and reconcile as unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from core.entity_types import PULL_OPERATION, EntityType, SyncDirection, pull_tracking_id
from core.logs import get_logger
from datetime_utils import coerce_utc, ensure_utc, utc_now
from services.api_client import ApiClient, PullPage
from services.backoff import PERMANENT, BackoffPolicy
from services.cursor_store import CursorStore
from services.errors import classify_exception
from services.outbox import Outbox
from services.push_worker import DEAD_LETTER_MAX_ATTEMPTS, DEAD_LETTER_PERMANENT
from services.queue_store import QueueStore
from services.reconciler import ReconcileOutcome, Reconciler
from storage.db import Database


logger = get_logger("pull")


@dataclass
class PullStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    pages: int = 0
    deferred: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def merge(self, other: "PullStats") -> "PullStats":
        return PullStats(
            self.created + other.created,
            self.updated + other.updated,
            self.skipped + other.skipped,
            self.conflicts + other.conflicts,
            self.pages + other.pages,
            self.deferred or other.deferred,
            self.error or other.error,
        )


def _high_water_mark(page: PullPage) -> Optional[datetime]:
    if page.high_water_mark is not None:
        return ensure_utc(page.high_water_mark)
    marks = [coerce_utc(r.get("updated_at")) for r in page.records]
    marks = [m for m in marks if m is not None]
    return max(marks) if marks else None


class PullWorker:
    def __init__(
        self,
        database: Database,
        queue: QueueStore,
        cursors: CursorStore,
        api: ApiClient,
        reconciler: Reconciler,
        backoff: Optional[BackoffPolicy] = None,
        *,
        outbox: Optional[Outbox] = None,
        max_pages: int = 20,
        clock: Callable = utc_now,
    ) -> None:
        self.db = database
        self.queue = queue
        self.cursors = cursors
        self.api = api
        self.reconciler = reconciler
        self.backoff = backoff or BackoffPolicy()
        self.outbox = outbox or Outbox(queue, clock=clock)
        self.max_pages = max(1, max_pages)
        self.clock = clock

    def pull(self, entity_type: EntityType) -> PullStats:
        stats = PullStats()
        now = self.clock()
        with self.db.transaction() as session:
            tracking = self.outbox.enqueue(
                session,
                entity_type,
                pull_tracking_id(entity_type),
                PULL_OPERATION,
                {"entity_type": entity_type.value},
                direction=SyncDirection.PULL,
            )
            tracking_id = tracking.id
            expected = tracking.attempts
            retry_after = ensure_utc(tracking.retry_after)
            since = self.cursors.last_pull_at(session, entity_type)

        if retry_after is not None and retry_after > now:
            logger.debug("Pull %s deferred until %s", entity_type.value, retry_after)
            stats.deferred = True
            return stats

        # the cursor only moves together with the completed tracking row
        records_seen = 0
        cursor_mark: Optional[datetime] = None
        while True:
            try:
                page = self.api.pull(entity_type, since)
            except Exception as exc:
                self._record_failure(entity_type, tracking_id, expected, exc)
                stats.error = str(exc)
                return stats

            stats.pages += 1
            final = not page.has_more or not page.records or stats.pages >= self.max_pages
            mark = _high_water_mark(page)
            if page.records:
                records_seen += len(page.records)
                if mark is not None and (cursor_mark is None or mark > cursor_mark):
                    cursor_mark = mark
            try:
                with self.db.transaction() as session:
                    self._apply(session, entity_type, page.records, stats)
                    if final:
                        if records_seen:
                            self.cursors.advance_pull(
                                session,
                                entity_type,
                                cursor_mark,
                                records=records_seen,
                                pages=stats.pages,
                                now=self.clock(),
                            )
                        self.queue.mark_synced(
                            session,
                            tracking_id,
                            expected_attempts=expected,
                            now=self.clock(),
                            http_status=200,
                            api_endpoint=page.endpoint,
                        )
            except Exception as exc:
                logger.error("Applying %s pull page failed: %s", entity_type.value, exc)
                self._record_failure(entity_type, tracking_id, expected, exc)
                stats.error = str(exc)
                return stats

            if final:
                if page.has_more:
                    logger.info("Pull %s stopped after %s pages", entity_type.value, stats.pages)
                break
            if mark is not None:
                since = mark

        logger.debug(
            "Pulled %s: created=%s updated=%s skipped=%s conflicts=%s pages=%s",
            entity_type.value,
            stats.created,
            stats.updated,
            stats.skipped,
            stats.conflicts,
            stats.pages,
        )
        return stats

    def _apply(
        self,
        session,
        entity_type: EntityType,
        records: Iterable[Mapping],
        stats: PullStats,
    ) -> None:
        for record in records:
            result = self.reconciler.reconcile(session, entity_type, record)
            if result.outcome is ReconcileOutcome.CREATED:
                stats.created += 1
            elif result.outcome is ReconcileOutcome.UPDATED:
                stats.updated += 1
            else:
                stats.skipped += 1
            if result.conflict:
                stats.conflicts += 1

    def _record_failure(
        self, entity_type: EntityType, tracking_id: str, expected: int, exc: Exception
    ) -> None:
        category = classify_exception(exc)
        now = self.clock()
        attempt = expected + 1
        decision = self.backoff.next_retry(attempt, category, getattr(exc, "retry_after", None))
        reason = None
        retry_at = None
        with self.db.session() as session:
            item = self.queue.get(session, tracking_id)
            max_attempts = item.max_attempts if item is not None else attempt
        if decision is PERMANENT:
            reason = DEAD_LETTER_PERMANENT
        elif attempt >= max_attempts:
            reason = DEAD_LETTER_MAX_ATTEMPTS
        else:
            retry_at = now + decision

        with self.db.transaction() as session:
            self.queue.record_failure(
                session,
                tracking_id,
                expected_attempts=expected,
                now=now,
                error=f"{type(exc).__name__}: {exc}",
                error_category=category.value,
                retry_after=retry_at,
                dead_letter_reason=reason,
                http_status=getattr(exc, "http_status", None),
            )
        logger.warning("Pull %s failed (%s): %s", entity_type.value, category.value, exc)

    def reset_cursor(self, entity_type: Optional[EntityType] = None) -> int:
        with self.db.transaction() as session:
            count = self.cursors.reset(session, entity_type)
        logger.info("Pull cursor reset for %s", entity_type.value if entity_type else "all entity types")
        return count


__all__ = ["PullStats", "PullWorker"]
