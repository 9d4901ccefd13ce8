import json

from core.settings import SYNC
from storage.config import load_sync_settings, save_sync_settings, update_sync_settings


def test_defaults_when_file_missing(tmp_path):
    cfg = load_sync_settings(tmp_path / "missing.json", env={})
    assert cfg == SYNC


def test_file_then_env_overrides(tmp_path):
    path = tmp_path / "sync_config.json"
    path.write_text(
        json.dumps({"store_id": "store-42", "batch_size": "25", "backoff": {"max_delay_sec": 90}}),
        encoding="utf-8",
    )
    cfg = load_sync_settings(
        path, env={"EDGESYNC_BATCH_SIZE": "10", "EDGESYNC_ENABLED": "false", "EDGESYNC_API_KEY": "k"}
    )
    assert cfg.store_id == "store-42"
    assert cfg.batch_size == 10
    assert cfg.enabled is False
    assert cfg.api_key == "k"
    assert cfg.backoff.max_delay_sec == 90.0
    assert cfg.backoff.multiplier == SYNC.backoff.multiplier


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "sync_config.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_sync_settings(path, env={}) == SYNC


def test_save_never_persists_api_key(tmp_path):
    from dataclasses import replace

    path = tmp_path / "cfg" / "sync_config.json"
    save_sync_settings(replace(SYNC, api_key="secret", store_id="s1"), path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert "api_key" not in data
    assert data["store_id"] == "s1"
    assert not path.with_suffix(".tmp").exists()


def test_update_round_trip(tmp_path):
    path = tmp_path / "sync_config.json"
    update_sync_settings(path, interval_sec=15, unknown_key=1)
    assert load_sync_settings(path, env={}).interval_sec == 15
