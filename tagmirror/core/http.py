"""HTTP fetch helper that retries once on transport failure."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from tagmirror.core.errors import RequestFailed

log = structlog.get_logger("tagmirror.http")

_MAX_ATTEMPTS = 2


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    method: str = "GET",
) -> httpx.Response:
    """Send a request and return the raw response.

    Transport failures (connection refused, DNS, timeouts) are retried once
    with identical parameters; a second failure raises :class:`RequestFailed`.
    HTTP error statuses are returned as-is; callers inspect ``status_code``.
    *body*, when given, is sent as JSON.
    """
    kwargs: dict[str, Any] = {"headers": dict(headers or {})}
    if body is not None:
        kwargs["json"] = body

    last_exc: httpx.TransportError | None = None
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            log.warning(
                "http.transport_error",
                method=method,
                url=url,
                attempt=attempt,
                max_attempts=_MAX_ATTEMPTS,
                error=f"{type(exc).__name__}: {exc}",
            )
            last_exc = exc

    raise RequestFailed(method, url) from last_exc
