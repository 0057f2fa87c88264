"""Exception hierarchy shared by the fetcher, initializer and sync job."""

from __future__ import annotations


class TagMirrorError(Exception):
    """Base tagmirror exception."""


class SetupError(TagMirrorError):
    """Fatal initialization failure; the process must not start syncing."""


class ConfigError(SetupError):
    """Invalid configuration values."""


class InvalidCredentials(ConfigError):
    """Only one of the Bitbucket username/token pair was supplied."""

    def __init__(self) -> None:
        super().__init__(
            "Please supply both a Bitbucket username and a personal token "
            "to use private repositories (or neither for public ones)"
        )


class AuthError(SetupError):
    """A platform rejected the supplied credentials."""


class InvalidApiKey(AuthError):
    """PostHog did not accept the personal API key."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Invalid PostHog personal API key (HTTP {status})")


class InvalidRepoConfig(AuthError):
    """Bitbucket did not return the configured repository."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(
            "Unable to connect to Bitbucket: invalid Bitbucket host, workspace, "
            f"repo name, or token (HTTP {status})"
        )


class ApiUnreachable(SetupError):
    """A connectivity probe failed at the transport level."""


class TransportError(TagMirrorError):
    """Network-level failure (connection, DNS, timeout)."""


class RequestFailed(TransportError):
    """Raised by the fetcher once its single retry is exhausted."""

    def __init__(self, method: str, url: str) -> None:
        self.method = method
        self.url = url
        super().__init__(f"{method} request to {url} failed.")


class UnexpectedStatus(TagMirrorError):
    """A non-2xx answer from an endpoint the sync pass reads from."""

    def __init__(self, method: str, url: str, status: int) -> None:
        self.method = method
        self.url = url
        self.status = status
        super().__init__(f"{method} {url} returned HTTP {status}")


class MalformedResponse(TagMirrorError):
    """A successful response whose body is not the expected JSON object."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        super().__init__(f"unexpected response body from {url}: {detail}")
