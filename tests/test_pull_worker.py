from datetime import timedelta

from sqlmodel import select

from conftest import T0, pack_payload
from core.entity_types import EntityType, SyncDirection, pull_tracking_id
from datetime_utils import ensure_utc
from models.entities import LotteryPack
from models.queue_item import SyncQueueItem
from services.api_client import PullPage
from services.errors import ApiError, ErrorCategory


def _pull_rows(db, entity_type=EntityType.PACK):
    with db.session() as session:
        stmt = (
            select(SyncQueueItem)
            .where(SyncQueueItem.direction == SyncDirection.PULL.value)
            .where(SyncQueueItem.entity_id == pull_tracking_id(entity_type))
        )
        return list(session.exec(stmt))


def _pending(engine):
    with engine.db.session() as session:
        return engine.queue.count_pending(session)


def test_empty_pull_writes_one_synced_tracking_row(engine, db):
    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.ok
    assert (stats.created, stats.updated, stats.skipped, stats.pages) == (0, 0, 0, 1)

    rows = _pull_rows(db)
    assert len(rows) == 1
    assert rows[0].synced and not rows[0].dead_lettered
    assert _pending(engine) == 0
    with db.session() as session:
        assert engine.cursors.get(session, EntityType.PACK) is None


def test_repeated_empty_pulls_never_grow_pending(engine, db, clock):
    for _ in range(5):
        engine.pull_worker.pull(EntityType.PACK)
        clock.advance(60)
    assert _pending(engine) == 0
    assert all(row.synced for row in _pull_rows(db))
    assert len(_pull_rows(db)) == 5


def test_records_are_applied_and_cursor_advances(engine, db, api):
    mark = T0 + timedelta(minutes=10)
    api.script_pull(
        EntityType.PACK,
        PullPage(records=[pack_payload("pack-1"), pack_payload("pack-2")], high_water_mark=mark),
    )

    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.created == 2
    with db.session() as session:
        assert session.get(LotteryPack, "pack-2") is not None
        cursor = engine.cursors.get(session, EntityType.PACK)
    assert ensure_utc(cursor.last_pull_at) == mark
    assert cursor.records_pulled == 2

    engine.pull_worker.pull(EntityType.PACK)
    assert api.pulls[-1] == (EntityType.PACK, mark)


def test_mark_falls_back_to_newest_record(engine, db, api):
    newest = T0 + timedelta(minutes=3)
    api.script_pull(
        EntityType.PACK,
        PullPage(records=[pack_payload("pack-1"), pack_payload("pack-2", updated_at=newest)]),
    )
    engine.pull_worker.pull(EntityType.PACK)
    with db.session() as session:
        assert engine.cursors.last_pull_at(session, EntityType.PACK) == newest


def test_pages_follow_has_more(engine, api):
    first_mark = T0 + timedelta(minutes=1)
    api.script_pull(
        EntityType.PACK,
        PullPage(records=[pack_payload("pack-1")], high_water_mark=first_mark, has_more=True),
        PullPage(records=[pack_payload("pack-2")], high_water_mark=first_mark + timedelta(minutes=1)),
    )
    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.pages == 2
    assert stats.created == 2
    assert api.pulls == [(EntityType.PACK, None), (EntityType.PACK, first_mark)]


def test_failure_on_later_page_keeps_cursor_with_tracking_row(engine, db, api, clock):
    first_mark = T0 + timedelta(minutes=1)
    second_mark = T0 + timedelta(minutes=2)
    page_one = PullPage(records=[pack_payload("pack-1")], high_water_mark=first_mark, has_more=True)
    api.script_pull(
        EntityType.PACK,
        page_one,
        ApiError("HTTP 503", http_status=503),
        page_one,
        PullPage(records=[pack_payload("pack-2")], high_water_mark=second_mark),
    )

    stats = engine.pull_worker.pull(EntityType.PACK)
    assert not stats.ok
    assert stats.created == 1
    with db.session() as session:
        assert engine.cursors.last_pull_at(session, EntityType.PACK) is None
    (row,) = _pull_rows(db)
    assert not row.synced
    assert row.attempts == 1

    clock.advance(120)
    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.ok
    assert (stats.created, stats.skipped) == (1, 1)
    assert api.pulls[2] == (EntityType.PACK, None)

    with db.session() as session:
        cursor = engine.cursors.get(session, EntityType.PACK)
    assert ensure_utc(cursor.last_pull_at) == second_mark
    assert cursor.pages_pulled == 2
    (row,) = _pull_rows(db)
    assert row.synced


def test_failed_pull_reuses_tracking_row(engine, db, api, clock):
    api.script_pull(
        EntityType.PACK,
        ApiError("HTTP 503", http_status=503),
        ApiError("HTTP 503", http_status=503),
    )

    stats = engine.pull_worker.pull(EntityType.PACK)
    assert not stats.ok
    rows = _pull_rows(db)
    assert len(rows) == 1
    assert rows[0].attempts == 1
    assert rows[0].last_error_category == ErrorCategory.TRANSIENT_SERVER.value
    assert ensure_utc(rows[0].retry_after) > clock()

    # backing off: no API call until retry_after passes
    calls = len(api.pulls)
    assert engine.pull_worker.pull(EntityType.PACK).deferred
    assert len(api.pulls) == calls

    clock.advance(120)
    engine.pull_worker.pull(EntityType.PACK)
    clock.advance(120)
    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.ok

    rows = _pull_rows(db)
    assert len(rows) == 1
    assert rows[0].synced
    assert rows[0].attempts == 2
    assert _pending(engine) == 0


def test_permanent_pull_failure_dead_letters_tracking_row(engine, db, api):
    api.script_pull(EntityType.PACK, ApiError("HTTP 401 Unauthorized", http_status=401))
    engine.pull_worker.pull(EntityType.PACK)
    rows = _pull_rows(db)
    assert rows[0].dead_lettered

    engine.pull_worker.pull(EntityType.PACK)
    rows = _pull_rows(db)
    assert len(rows) == 2
    assert sum(1 for r in rows if r.synced) == 1


def test_conflicts_are_counted(engine, db, api):
    with db.transaction() as session:
        session.add(
            LotteryPack(
                pack_id="pack-1",
                store_id="store-1",
                game_id="game-1",
                pack_number="0001",
                status="DEPLETED",
                updated_at=T0,
            )
        )
    api.script_pull(
        EntityType.PACK,
        PullPage(records=[pack_payload("pack-1", status="ACTIVE", updated_at=T0 + timedelta(hours=1))]),
    )
    stats = engine.pull_worker.pull(EntityType.PACK)
    assert stats.skipped == 1
    assert stats.conflicts == 1


def test_reset_cursor_forces_full_resync(engine, db, api):
    api.script_pull(
        EntityType.PACK,
        PullPage(records=[pack_payload("pack-1")], high_water_mark=T0),
    )
    engine.pull_worker.pull(EntityType.PACK)
    assert engine.reset_cursor("pack") == 1

    engine.pull_worker.pull(EntityType.PACK)
    assert api.pulls[-1] == (EntityType.PACK, None)
