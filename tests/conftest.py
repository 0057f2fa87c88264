"""Shared fixtures for tagmirror tests.

No network access is needed: HTTP traffic goes through ``httpx.MockTransport``
routed by :class:`FakeAPI`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from tagmirror.config import TagMirrorConfig
from tagmirror.engines.tag_sync.session import SessionContext, build_session

POSTHOG = "https://posthog.example.com"
BITBUCKET_API = "https://bitbucket.example.com/api/2.0/repositories/acme/widgets"
ANNOTATIONS_FIRST_PAGE = f"{POSTHOG}/api/annotation/?scope=organization&deleted=false"
ANNOTATIONS_CREATE = f"{POSTHOG}/api/annotation/"
TAGS = f"{BITBUCKET_API}/refs/tags"

Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeAPI:
    """Tiny router for MockTransport: (method, full URL) → queued responses.

    Each route holds a list of responses consumed in order; the last one is
    repeated. A route entry may be a callable that builds the response (or
    raises, to simulate transport failures).
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Route]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, *responses: Route) -> FakeAPI:
        self.routes.setdefault((method, url), []).extend(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, str(request.url)))
        if not queue:
            return httpx.Response(404, json={"detail": "no route"})
        route = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(route):
            return route(request)
        # Fresh copy per request; a response object is bound to one request.
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, url: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and (url is None or str(r.url) == url)
        ]


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def capture(self, event: str, properties: dict[str, Any]) -> None:
        self.events.append((event, properties))


def annotation_page(contents: list[str], next_url: str | None = None) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "results": [{"content": c, "scope": "organization"} for c in contents],
            "next": next_url,
        },
    )


def tag_page(tags: list[dict[str, Any]]) -> httpx.Response:
    return httpx.Response(200, json={"values": tags})


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config() -> TagMirrorConfig:
    return TagMirrorConfig(
        posthog_api_key="phx_test",
        posthog_host="https://posthog.example.com/",
        bitbucket_host="bitbucket.example.com",
        bitbucket_workspace="acme",
        repo_name="widgets",
    )


@pytest.fixture
def session(config) -> SessionContext:
    return build_session(config)


@pytest.fixture
def api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()
