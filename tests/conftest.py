from datetime import datetime, timedelta
from pathlib import Path
import random
import sys

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.settings import BackoffSettings, SyncSettings
from datetime_utils import UTC
from services.api_client import PullPage, PushResponse
from services.errors import classify
from storage.db import open_database


STORE_ID = "store-1"
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def status_response(code: int, message: str = "", retry_after=None) -> PushResponse:
    if 200 <= code < 300:
        return PushResponse(code, body='{"ok": true}', endpoint="/sync/test")
    error = message or f"HTTP {code}"
    return PushResponse(
        code,
        body=message,
        error=error,
        error_category=classify(code, error),
        retry_after=retry_after,
        endpoint="/sync/test",
    )


class FakeApi:
    """Scripted API: push answers are consumed in order, default 200."""

    def __init__(self) -> None:
        self.push_script = []
        self.pull_script = {}
        self.pushes = []
        self.pulls = []

    def script_push(self, *responses) -> None:
        self.push_script.extend(responses)

    def script_pull(self, entity_type, *pages) -> None:
        self.pull_script.setdefault(entity_type, []).extend(pages)

    def push(self, entity_type, operation, payload):
        self.pushes.append((entity_type, operation, payload))
        if not self.push_script:
            return status_response(200)
        answer = self.push_script.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(entity_type, operation, payload)
        if isinstance(answer, int):
            return status_response(answer)
        return answer

    def pull(self, entity_type, since):
        self.pulls.append((entity_type, since))
        pages = self.pull_script.get(entity_type) or []
        if not pages:
            return PullPage(records=[], endpoint=f"/sync/{entity_type.value}")
        page = pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


@pytest.fixture
def db():
    database = open_database(":memory:")
    yield database
    database.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def settings():
    return SyncSettings(
        store_id=STORE_ID,
        batch_size=50,
        max_attempts=5,
        backoff=BackoffSettings(base_delay_sec=1.0, max_delay_sec=60.0, jitter=0.2),
    )


@pytest.fixture
def engine(db, api, clock, settings):
    from services.sync_engine import SyncEngine

    return SyncEngine(db, api, settings, clock=clock, rng=random.Random(7))


def pack_payload(pack_id="pack-1", status="RECEIVED", updated_at=T0, **extra):
    data = {
        "pack_id": pack_id,
        "store_id": STORE_ID,
        "game_id": "game-1",
        "pack_number": "0001",
        "status": status,
        "updated_at": updated_at.isoformat() if isinstance(updated_at, datetime) else updated_at,
    }
    data.update(extra)
    return data
