"""Contract between the sync workers and the cloud API, plus an httpx client."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx

from core.entity_types import EntityType
from core.logs import get_logger
from datetime_utils import coerce_utc, ensure_utc, to_rfc3339_utc, utc_now
from services.errors import ApiError, ErrorCategory, classify


logger = get_logger("api")


@dataclass
class PushResponse:
    http_status: Optional[int]
    body: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    # seconds, from a 429 Retry-After header
    retry_after: Optional[float] = None
    endpoint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.http_status is not None and 200 <= self.http_status < 300


@dataclass
class PullPage:
    records: List[Dict[str, Any]] = field(default_factory=list)
    high_water_mark: Optional[datetime] = None
    has_more: bool = False
    endpoint: Optional[str] = None


class ApiClient(Protocol):
    def push(self, entity_type: EntityType, operation: str, payload: Dict[str, Any]) -> PushResponse:
        ...

    def pull(self, entity_type: EntityType, since: Optional[datetime]) -> PullPage:
        ...


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """``Retry-After`` is either delta-seconds or an HTTP date."""

    if not value:
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if moment is None:
        return None
    delta = ensure_utc(moment) - ensure_utc(now or utc_now())
    return max(0.0, delta.total_seconds())


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return f"HTTP {response.status_code}: {value}"
    reason = response.reason_phrase or ""
    return f"HTTP {response.status_code} {reason}".strip()


class HttpApiClient:
    """``POST /sync/{entity}`` for pushes, ``GET /sync/{entity}?since=`` for pulls."""

    def __init__(
        self,
        base_url: str,
        *,
        store_id: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json", "X-Store-Id": store_id}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def endpoint(entity_type: EntityType) -> str:
        return f"/sync/{entity_type.value}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def push(self, entity_type: EntityType, operation: str, payload: Dict[str, Any]) -> PushResponse:
        path = self.endpoint(entity_type)
        try:
            response = self._client.post(path, json={"operation": operation, "payload": payload})
        except httpx.TimeoutException as exc:
            return PushResponse(
                None,
                error=f"timeout: {exc}",
                error_category=ErrorCategory.TRANSIENT_NETWORK,
                endpoint=path,
            )
        except httpx.TransportError as exc:
            return PushResponse(
                None,
                error=f"network error: {exc}",
                error_category=ErrorCategory.TRANSIENT_NETWORK,
                endpoint=path,
            )

        body = response.text
        if response.is_success:
            return PushResponse(response.status_code, body=body, endpoint=path)

        message = _error_message(response)
        logger.debug("Push %s %s rejected: %s", entity_type.value, operation, message)
        return PushResponse(
            response.status_code,
            body=body,
            error=message,
            error_category=classify(response.status_code, message),
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            endpoint=path,
        )

    def pull(self, entity_type: EntityType, since: Optional[datetime]) -> PullPage:
        path = self.endpoint(entity_type)
        params = {}
        if since is not None:
            params["since"] = to_rfc3339_utc(since)
        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise ApiError(f"timeout: {exc}", category=ErrorCategory.TRANSIENT_NETWORK) from exc
        except httpx.TransportError as exc:
            raise ApiError(f"network error: {exc}", category=ErrorCategory.TRANSIENT_NETWORK) from exc

        if not response.is_success:
            raise ApiError(
                _error_message(response),
                http_status=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ApiError(
                f"malformed pull response: {exc}",
                http_status=response.status_code,
                category=ErrorCategory.PERMANENT_CLIENT,
            ) from exc
        if not isinstance(data, dict):
            raise ApiError("malformed pull response: expected an object", http_status=response.status_code)

        records = data.get("records") or []
        if not isinstance(records, list):
            raise ApiError("malformed pull response: records must be a list", http_status=response.status_code)
        mark = data.get("highWaterMark", data.get("high_water_mark"))
        return PullPage(
            records=[r for r in records if isinstance(r, dict)],
            high_water_mark=coerce_utc(mark),
            has_more=bool(data.get("hasMore", data.get("has_more", False))),
            endpoint=path,
        )


__all__ = [
    "ApiClient",
    "HttpApiClient",
    "PullPage",
    "PushResponse",
    "parse_retry_after",
]
