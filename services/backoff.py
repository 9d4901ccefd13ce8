"""Retry scheduling for failed sync attempts.

``BackoffPolicy.next_retry`` is a pure function of the attempt number and the
error category (plus the injected random source), so it can be tested
without a database or a network.
"""
from __future__ import annotations

import random
from datetime import timedelta
from typing import Optional, Union

from core.settings import BackoffSettings
from services.errors import ErrorCategory


class _Permanent:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PERMANENT"

    def __bool__(self) -> bool:
        return False


PERMANENT = _Permanent()

RetryDecision = Union[timedelta, _Permanent]

MIN_DELAY = timedelta(milliseconds=1)


class BackoffPolicy:
    def __init__(
        self,
        settings: Optional[BackoffSettings] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or BackoffSettings()
        if self.settings.multiplier <= 1:
            raise ValueError("backoff multiplier must be greater than 1")
        if not 0 <= self.settings.jitter < self.settings.multiplier - 1:
            raise ValueError("jitter must be in [0, multiplier - 1)")
        self._rng = rng or random.Random()

    def base_delay(self, attempt: int) -> float:
        """Un-jittered, uncapped delay in seconds for a 1-based ``attempt``."""
        exponent = max(attempt, 1) - 1
        return self.settings.base_delay_sec * (self.settings.multiplier ** exponent)

    def next_retry(
        self,
        attempt: int,
        category: Optional[ErrorCategory],
        retry_hint: Optional[float] = None,
    ) -> RetryDecision:
        """Delay before the next attempt, or :data:`PERMANENT`.

        Jitter only ever stretches the delay by less than one multiplier step,
        so successive delays grow strictly until they reach the cap.
        """

        if category is ErrorCategory.PERMANENT_CLIENT:
            return PERMANENT

        cfg = self.settings
        seconds = self.base_delay(attempt) * (1 + self._rng.random() * cfg.jitter)
        if category is ErrorCategory.UNKNOWN:
            seconds *= cfg.unknown_factor
        seconds = min(seconds, cfg.max_delay_sec)

        if retry_hint is not None and retry_hint > 0:
            # honour the server's Retry-After, but never wait less than our own schedule
            seconds = max(seconds, min(float(retry_hint), cfg.max_retry_hint_sec))

        return max(timedelta(seconds=seconds), MIN_DELAY)


__all__ = ["BackoffPolicy", "MIN_DELAY", "PERMANENT", "RetryDecision"]
