"""Telemetry sinks for sync events."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from tagmirror.core.http import fetch_with_retry

log = structlog.get_logger("tagmirror.telemetry")

DISTINCT_ID = "tagmirror"


class TelemetrySink(Protocol):
    async def capture(self, event: str, properties: dict[str, Any]) -> None: ...


class LogTelemetry:
    """Emits each event as a structured log line."""

    async def capture(self, event: str, properties: dict[str, Any]) -> None:
        log.info("telemetry.capture", telemetry_event=event, **properties)


class PostHogCaptureTelemetry:
    """Sends events to PostHog's public capture endpoint.

    Needs a *project* API key; the personal key used for annotations is not
    accepted by ``/capture/``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        posthog_base_url: str,
        project_api_key: str,
        distinct_id: str = DISTINCT_ID,
    ) -> None:
        self._client = client
        self._url = f"{posthog_base_url}/capture/"
        self._api_key = project_api_key
        self._distinct_id = distinct_id

    async def capture(self, event: str, properties: dict[str, Any]) -> None:
        body = {
            "api_key": self._api_key,
            "event": event,
            "distinct_id": self._distinct_id,
            "properties": properties,
        }
        res = await fetch_with_retry(
            self._client,
            self._url,
            headers={"Content-Type": "application/json"},
            body=body,
            method="POST",
        )
        if res.status_code >= 300:
            log.warning("telemetry.rejected", telemetry_event=event, status=res.status_code)
