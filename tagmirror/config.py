"""Runtime configuration for the sync job."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_POSTHOG_HOST = "app.posthog.com"
DEFAULT_BITBUCKET_HOST = "bitbucket.org"
DEFAULT_GUARD_STORE = ".tagmirror-state.json"


@dataclass(frozen=True)
class TagMirrorConfig:
    """Immutable startup input, supplied once by the host environment."""

    posthog_api_key: str
    bitbucket_workspace: str
    repo_name: str
    posthog_host: str = DEFAULT_POSTHOG_HOST
    bitbucket_host: str = DEFAULT_BITBUCKET_HOST
    bitbucket_username: str | None = None
    bitbucket_token: str | None = None


def env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def sync_interval() -> float:
    """Seconds between scheduler ticks."""
    return env_float("TAGMIRROR_SYNC_INTERVAL", 60)


def http_timeout() -> float:
    return env_float("TAGMIRROR_HTTP_TIMEOUT", 30)
