# edgesync/main.py
import os, sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import signal
import threading

from core.logs import configure_logging
from services.api_client import HttpApiClient
from services.sync_engine import SyncEngine
from storage.config import load_sync_settings
from storage.db import open_database
from core.settings import DB_PATH


def main() -> int:
    logger = configure_logging()
    settings = load_sync_settings()
    database = open_database(DB_PATH)
    api = HttpApiClient(
        settings.api_base_url,
        store_id=settings.store_id,
        api_key=settings.api_key,
        timeout=settings.request_timeout_sec,
    )
    engine = SyncEngine(database, api, settings)

    stop = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info("Received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("EdgeSync starting for store %s", settings.store_id)
    engine.start()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        engine.stop(timeout=settings.request_timeout_sec * 2)
        api.close()
        database.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
