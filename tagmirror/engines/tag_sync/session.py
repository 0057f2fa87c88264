"""Session initializer — derives auth headers and base URLs, probes both APIs."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

import httpx
import structlog

from tagmirror.config import TagMirrorConfig
from tagmirror.core.errors import (
    ApiUnreachable,
    InvalidApiKey,
    InvalidCredentials,
    InvalidRepoConfig,
    RequestFailed,
)
from tagmirror.core.http import fetch_with_retry

log = structlog.get_logger("tagmirror.engine")


@dataclass(frozen=True)
class SessionContext:
    """Connection settings shared read-only by every sync pass."""

    posthog_base_url: str
    posthog_headers: Mapping[str, str]
    bitbucket_api_base_url: str
    bitbucket_headers: Mapping[str, str]

    @property
    def annotations_url(self) -> str:
        return f"{self.posthog_base_url}/api/annotation/"

    @property
    def tags_url(self) -> str:
        return f"{self.bitbucket_api_base_url}/refs/tags"


def normalize_host(host: str) -> str:
    """Strip a single trailing slash."""
    return host[:-1] if host.endswith("/") else host


def base_url(host: str) -> str:
    """Return *host* as a URL, defaulting to https when no scheme is given."""
    host = normalize_host(host)
    return host if "://" in host else f"https://{host}"


def bitbucket_auth_headers(username: str | None, token: str | None) -> dict[str, str]:
    """Basic auth headers for private repositories; empty for public ones.

    Raises :class:`InvalidCredentials` if only one half of the pair is set.
    """
    if username and token:
        encoded = base64.b64encode(f"{username}:{token}".encode()).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}
    if username or token:
        raise InvalidCredentials()
    return {}


def build_session(config: TagMirrorConfig) -> SessionContext:
    """Validate *config* and derive the session context (no network I/O)."""
    bitbucket_headers = bitbucket_auth_headers(
        config.bitbucket_username, config.bitbucket_token
    )
    posthog_headers = {"Authorization": f"Bearer {config.posthog_api_key}"}

    bitbucket_api_base_url = (
        f"{base_url(config.bitbucket_host)}/api/2.0/repositories/"
        f"{config.bitbucket_workspace}/{config.repo_name}"
    )
    return SessionContext(
        posthog_base_url=base_url(config.posthog_host),
        posthog_headers=MappingProxyType(posthog_headers),
        bitbucket_api_base_url=bitbucket_api_base_url,
        bitbucket_headers=MappingProxyType(bitbucket_headers),
    )


async def probe(session: SessionContext, client: httpx.AsyncClient) -> None:
    """Check that both platforms accept the configured credentials.

    Raises :class:`InvalidApiKey`, :class:`InvalidRepoConfig`, or
    :class:`ApiUnreachable` when either platform cannot be reached.
    """
    try:
        posthog_res = await fetch_with_retry(
            client,
            f"{session.posthog_base_url}/api/user",
            headers=session.posthog_headers,
        )
        if posthog_res.status_code != 200:
            raise InvalidApiKey(posthog_res.status_code)

        bitbucket_res = await fetch_with_retry(
            client,
            session.bitbucket_api_base_url,
            headers=session.bitbucket_headers,
        )
        if bitbucket_res.status_code != 200:
            raise InvalidRepoConfig(bitbucket_res.status_code)
    except RequestFailed as exc:
        raise ApiUnreachable(f"Unable to connect to APIs: {exc}") from exc


async def initialize(config: TagMirrorConfig, client: httpx.AsyncClient) -> SessionContext:
    """Build the session context and verify connectivity. All errors are fatal."""
    session = build_session(config)
    await probe(session, client)
    log.info(
        "session.ready",
        posthog=session.posthog_base_url,
        bitbucket=session.bitbucket_api_base_url,
        authenticated_repo=bool(session.bitbucket_headers),
    )
    return session
