import pytest

from conftest import STORE_ID, pack_payload
from core.entity_types import SyncDirection
from models.entities import LotteryPack
from services.errors import PayloadValidationError, UnknownEntityTypeError
from services.outbox import Outbox
from services.queue_store import QueueStore, load_payload


@pytest.fixture
def outbox(clock):
    return Outbox(QueueStore(STORE_ID), clock=clock)


def test_enqueue_is_idempotent(db, outbox):
    with db.transaction() as session:
        first = outbox.enqueue(session, "pack", "pack-1", "ACTIVATE", pack_payload(status="ACTIVE"))
        second = outbox.enqueue(session, "pack", "pack-1", "ACTIVATE", pack_payload(status="ACTIVE"))
    assert first.id == second.id
    with db.session() as session:
        assert outbox.queue.count(session) == 1


def test_different_operations_are_separate_rows(db, outbox):
    with db.transaction() as session:
        a = outbox.enqueue(session, "pack", "pack-1", "CREATE", pack_payload())
        b = outbox.enqueue(session, "pack", "pack-1", "ACTIVATE", pack_payload(status="ACTIVE"))
    assert a.id != b.id


def test_same_id_in_different_entity_types_is_not_deduplicated(db, outbox):
    with db.transaction() as session:
        bin_row = outbox.enqueue(session, "bin", "X1", "DELETE", {"bin_id": "X1"})
        game_row = outbox.enqueue(session, "game", "X1", "DELETE", {"game_id": "X1"})
    assert game_row.id != bin_row.id
    assert game_row.entity_type == "game"
    with db.session() as session:
        assert outbox.queue.count(session) == 2


def test_enqueue_after_sync_creates_new_row(db, outbox, clock):
    with db.transaction() as session:
        first = outbox.enqueue(session, "pack", "pack-1", "UPDATE", pack_payload())
    with db.transaction() as session:
        outbox.queue.mark_synced(session, first.id, expected_attempts=0, now=clock())
    with db.transaction() as session:
        second = outbox.enqueue(session, "pack", "pack-1", "UPDATE", pack_payload())
    assert second.id != first.id


def test_payload_snapshot_is_validated_and_complete(db, outbox):
    with db.transaction() as session:
        item = outbox.enqueue(session, "pack", "pack-1", "CREATE", pack_payload())
    stored = load_payload(item)
    assert stored["pack_id"] == "pack-1"
    assert stored["status"] == "RECEIVED"
    assert "opening_serial" in stored
    assert item.direction == SyncDirection.PUSH.value
    assert item.api_endpoint == "/sync/pack"


def test_enqueue_accepts_a_table_row(db, outbox, clock):
    pack = LotteryPack(
        pack_id="pack-9", store_id=STORE_ID, game_id="game-1", pack_number="9", updated_at=clock()
    )
    with db.transaction() as session:
        session.add(pack)
        item = outbox.enqueue(session, "pack", "pack-9", "CREATE", pack)
    assert load_payload(item)["updated_at"].endswith("Z")


def test_unknown_entity_type_rejected(db, outbox):
    with db.transaction() as session:
        with pytest.raises(UnknownEntityTypeError):
            outbox.enqueue(session, "ticket", "t-1", "CREATE", {})


def test_unknown_operation_rejected(db, outbox):
    with db.transaction() as session:
        with pytest.raises(PayloadValidationError):
            outbox.enqueue(session, "pack", "pack-1", "EXPLODE", pack_payload())


def test_payload_must_match_entity_shape(db, outbox):
    with db.transaction() as session:
        with pytest.raises(PayloadValidationError):
            outbox.enqueue(session, "pack", "pack-1", "CREATE", {"pack_id": "pack-1"})
        with pytest.raises(PayloadValidationError):
            outbox.enqueue(session, "pack", "pack-2", "CREATE", pack_payload("pack-1"))
        with pytest.raises(PayloadValidationError):
            outbox.enqueue(session, "pack", "pack-1", "CREATE", pack_payload(status="LOST"))
        with pytest.raises(PayloadValidationError):
            outbox.enqueue(session, "pack", "pack-1", "CREATE", pack_payload(store_id="other"))


def test_delete_only_needs_identity(db, outbox):
    with db.transaction() as session:
        item = outbox.enqueue(session, "bin", "bin-1", "DELETE", {"bin_id": "bin-1"})
    assert load_payload(item) == {"bin_id": "bin-1"}


def test_failed_enqueue_rolls_back_with_business_change(db, outbox, clock):
    pack = LotteryPack(pack_id="pack-5", store_id=STORE_ID, game_id="g", pack_number="5")
    with pytest.raises(PayloadValidationError):
        with db.transaction() as session:
            session.add(pack)
            outbox.enqueue(session, "pack", "pack-5", "CREATE", {"pack_id": "pack-5"})
    with db.session() as session:
        assert session.get(LotteryPack, "pack-5") is None
