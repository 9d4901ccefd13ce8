"""Logger setup for the sync engine."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import LOGGING, LogSettings


ROOT_LOGGER = "edgesync"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def configure_logging(settings: Optional[LogSettings] = None) -> logging.Logger:
    """Attach the rotating file handler to the ``edgesync`` logger once."""

    cfg = settings or LOGGING
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        Path(cfg.path).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            cfg.path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
    return logger


__all__ = ["LOG_FORMAT", "ROOT_LOGGER", "configure_logging", "get_logger"]
