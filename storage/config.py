"""JSON-backed overrides for :class:`core.settings.SyncSettings`."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from core.settings import CONFIG_PATH, SYNC, BackoffSettings, SyncSettings


ENV_PREFIX = "EDGESYNC_"


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def _apply(base, changes: Mapping[str, Any]):
    known = {f.name: getattr(base, f.name) for f in fields(base)}
    updates = {}
    for key, value in changes.items():
        if key not in known or isinstance(known[key], BackoffSettings):
            continue
        current = known[key]
        updates[key] = value if current is None or value is None else _coerce(value, current)
    return replace(base, **updates)


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for f in fields(SyncSettings):
        raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is not None:
            result[f.name] = raw
    return result


def load_sync_settings(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    defaults: SyncSettings = SYNC,
) -> SyncSettings:
    """Defaults, then the JSON file, then ``EDGESYNC_*`` environment variables."""

    data = _load_raw(path or CONFIG_PATH)
    settings = _apply(defaults, data)
    backoff_raw = data.get("backoff")
    if isinstance(backoff_raw, dict):
        settings = replace(settings, backoff=_apply(settings.backoff, backoff_raw))
    return _apply(settings, _env_overrides(env if env is not None else os.environ))


def save_sync_settings(settings: SyncSettings, path: Optional[Path] = None) -> None:
    target = path or CONFIG_PATH
    _ensure_parent(target)
    data = asdict(settings)
    data.pop("api_key", None)
    payload = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
    tmp = target.with_suffix(".tmp")
    try:
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def update_sync_settings(path: Optional[Path] = None, **changes: Any) -> SyncSettings:
    target = path or CONFIG_PATH
    cfg = _apply(load_sync_settings(target, env={}), changes)
    save_sync_settings(cfg, target)
    return cfg


__all__ = ["ENV_PREFIX", "load_sync_settings", "save_sync_settings", "update_sync_settings"]
