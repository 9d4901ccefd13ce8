import pytest

from core.entity_types import EntityType, parse_entity_type, parse_operation, SyncOperation
from core.lifecycle import is_terminal, transition_allowed
from services.errors import PayloadValidationError, UnknownEntityTypeError


@pytest.mark.parametrize(
    "entity_type, current, incoming, allowed",
    [
        (EntityType.PACK, "RECEIVED", "ACTIVE", True),
        (EntityType.PACK, "RECEIVED", "DEPLETED", True),
        (EntityType.PACK, "DEPLETED", "ACTIVE", False),
        (EntityType.PACK, "RETURNED", "RECEIVED", False),
        (EntityType.PACK, "ACTIVE", "ACTIVE", True),
        (EntityType.BUSINESS_DAY, "CLOSED", "OPEN", False),
        (EntityType.BUSINESS_DAY, "OPEN", "CLOSED", True),
        (EntityType.SHIFT, "CLOSED", "OPEN", False),
        (EntityType.GAME, "INACTIVE", "ACTIVE", True),
        (EntityType.GAME, "DISCONTINUED", "ACTIVE", False),
        (EntityType.USER, "INACTIVE", "ACTIVE", True),
        (EntityType.PACK, "ACTIVE", "LOST", False),
        (EntityType.BIN, None, None, True),
    ],
)
def test_transition_allowed(entity_type, current, incoming, allowed):
    assert transition_allowed(entity_type, current, incoming) is allowed


def test_terminal_states():
    assert is_terminal(EntityType.PACK, "DEPLETED")
    assert is_terminal(EntityType.SHIFT, "CLOSED")
    assert not is_terminal(EntityType.PACK, "ACTIVE")
    assert not is_terminal(EntityType.USER, "INACTIVE")
    assert not is_terminal(EntityType.BIN, "anything")


def test_parse_vocabularies():
    assert parse_entity_type(" Business_Day ") is EntityType.BUSINESS_DAY
    assert parse_operation("activate") is SyncOperation.ACTIVATE
    with pytest.raises(UnknownEntityTypeError):
        parse_entity_type("ticket")
    with pytest.raises(PayloadValidationError):
        parse_operation("explode")
