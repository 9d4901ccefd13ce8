"""Drain due PUSH rows from the outbox to the cloud API."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Set, Tuple

from core.entity_types import EntityType
from core.logs import get_logger
from datetime_utils import utc_now
from models.queue_item import SyncQueueItem
from services.api_client import ApiClient, PushResponse
from services.backoff import PERMANENT, BackoffPolicy
from services.cursor_store import CursorStore
from services.errors import ErrorCategory, classify, classify_exception
from services.queue_store import QueueStore, load_payload
from storage.db import Database


logger = get_logger("push")

DEAD_LETTER_PERMANENT = "PERMANENT_ERROR"
DEAD_LETTER_MAX_ATTEMPTS = "MAX_ATTEMPTS_EXCEEDED"


@dataclass
class DrainResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: int = 0

    def merge(self, other: "DrainResult") -> "DrainResult":
        return DrainResult(
            self.attempted + other.attempted,
            self.succeeded + other.succeeded,
            self.failed + other.failed,
            self.dead_lettered + other.dead_lettered,
            self.skipped + other.skipped,
        )


class PushWorker:
    def __init__(
        self,
        database: Database,
        queue: QueueStore,
        cursors: CursorStore,
        api: ApiClient,
        backoff: Optional[BackoffPolicy] = None,
        *,
        clock: Callable = utc_now,
    ) -> None:
        self.db = database
        self.queue = queue
        self.cursors = cursors
        self.api = api
        self.backoff = backoff or BackoffPolicy()
        self.clock = clock

    def drain(self, batch_size: int, entity_type: Optional[EntityType] = None) -> DrainResult:
        """Push up to ``batch_size`` due rows. Never raises for per-row failures."""

        result = DrainResult()
        with self.db.session() as session:
            batch = self.queue.due_push(session, self.clock(), batch_size, entity_type)
        if not batch:
            return result

        held: Set[Tuple[str, str]] = set()
        for item in batch:
            key = (item.entity_type, item.entity_id)
            if key in held:
                result.skipped += 1
                continue
            with self.db.session() as session:
                blocked = self.queue.has_older_pending(session, item)
            if blocked:
                logger.debug("Holding %s %s behind an older pending row", item.entity_type, item.id)
                result.skipped += 1
                continue

            result.attempted += 1
            outcome = self._push_one(item)
            if outcome == "succeeded":
                result.succeeded += 1
            elif outcome == "dead_lettered":
                result.dead_lettered += 1
                held.add(key)
            elif outcome == "failed":
                result.failed += 1
                held.add(key)
            else:
                result.skipped += 1

        logger.debug(
            "Drain %s: attempted=%s succeeded=%s failed=%s dead=%s skipped=%s",
            entity_type.value if entity_type else "all",
            result.attempted,
            result.succeeded,
            result.failed,
            result.dead_lettered,
            result.skipped,
        )
        return result

    def _call_api(self, item: SyncQueueItem) -> PushResponse:
        kind = EntityType(item.entity_type)
        try:
            return self.api.push(kind, item.operation, load_payload(item))
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            return PushResponse(
                getattr(exc, "http_status", None),
                error=message,
                error_category=classify_exception(exc),
                retry_after=getattr(exc, "retry_after", None),
                endpoint=item.api_endpoint,
            )

    def _push_one(self, item: SyncQueueItem) -> str:
        with self.db.session() as session:
            current = self.queue.is_current(session, item)
        if not current:
            logger.debug("Skipping %s %s, already handled elsewhere", item.entity_type, item.id)
            return "skipped"

        response = self._call_api(item)
        now = self.clock()
        expected = item.attempts

        if response.ok:
            with self.db.transaction() as session:
                done = self.queue.mark_synced(
                    session,
                    item.id,
                    expected_attempts=expected,
                    now=now,
                    http_status=response.http_status,
                    response_body=response.body,
                    api_endpoint=response.endpoint,
                )
                if done:
                    self.cursors.mark_pushed(session, EntityType(item.entity_type), now)
            if not done:
                return "skipped"
            logger.debug("Pushed %s %s %s", item.entity_type, item.entity_id, item.operation)
            return "succeeded"

        category = response.error_category or classify(response.http_status, response.error)
        error = response.error or f"HTTP {response.http_status}"

        if category is ErrorCategory.CONFLICT:
            # the next pull settles the row through last-write-wins
            with self.db.transaction() as session:
                done = self.queue.mark_synced(
                    session,
                    item.id,
                    expected_attempts=expected,
                    now=now,
                    http_status=response.http_status,
                    response_body=response.body,
                    api_endpoint=response.endpoint,
                    error=error,
                    error_category=category.value,
                )
            if not done:
                return "skipped"
            logger.info("Push conflict for %s %s, deferring to pull", item.entity_type, item.entity_id)
            return "succeeded"

        attempt = expected + 1
        decision = self.backoff.next_retry(attempt, category, response.retry_after)
        reason = None
        retry_at = None
        if decision is PERMANENT:
            reason = DEAD_LETTER_PERMANENT
        elif attempt >= item.max_attempts:
            reason = DEAD_LETTER_MAX_ATTEMPTS
        else:
            retry_at = now + decision

        with self.db.transaction() as session:
            row = self.queue.record_failure(
                session,
                item.id,
                expected_attempts=expected,
                now=now,
                error=error,
                error_category=category.value,
                retry_after=retry_at,
                dead_letter_reason=reason,
                http_status=response.http_status,
                response_body=response.body,
                api_endpoint=response.endpoint,
            )
        if row is None:
            return "skipped"
        if reason is not None:
            logger.warning(
                "Dead-lettered %s %s %s after %s attempt(s): %s",
                item.entity_type,
                item.entity_id,
                item.operation,
                row.attempts,
                error,
            )
            return "dead_lettered"
        logger.debug(
            "Push %s %s failed (%s), retry at %s", item.entity_type, item.id, category.value, retry_at
        )
        return "failed"


__all__ = [
    "DEAD_LETTER_MAX_ATTEMPTS",
    "DEAD_LETTER_PERMANENT",
    "DrainResult",
    "PushWorker",
]
