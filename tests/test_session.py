"""Tests for session initialization: config validation, URLs, and probes."""

from __future__ import annotations

import dataclasses
from types import MappingProxyType

import httpx
import pytest
from conftest import BITBUCKET_API, POSTHOG, FakeAPI

from tagmirror.config import TagMirrorConfig
from tagmirror.core.errors import (
    ApiUnreachable,
    AuthError,
    ConfigError,
    InvalidApiKey,
    InvalidCredentials,
    InvalidRepoConfig,
    SetupError,
)
from tagmirror.engines.tag_sync.session import (
    SessionContext,
    base_url,
    bitbucket_auth_headers,
    build_session,
    initialize,
    normalize_host,
)


def _config(**overrides) -> TagMirrorConfig:
    values = dict(
        posthog_api_key="phx_test",
        posthog_host="posthog.example.com",
        bitbucket_host="bitbucket.example.com",
        bitbucket_workspace="acme",
        repo_name="widgets",
    )
    values.update(overrides)
    return TagMirrorConfig(**values)


# ── credentials ───────────────────────────────────────────────────────────


class TestCredentials:
    @pytest.mark.parametrize(
        "username, token",
        [("alice", None), (None, "secret"), ("alice", ""), ("", "secret")],
    )
    def test_half_pair_is_config_error(self, username, token):
        with pytest.raises(InvalidCredentials) as exc_info:
            build_session(_config(bitbucket_username=username, bitbucket_token=token))
        assert isinstance(exc_info.value, ConfigError)
        assert isinstance(exc_info.value, SetupError)

    def test_both_present_gives_basic_auth(self):
        session = build_session(_config(bitbucket_username="user", bitbucket_token="token"))
        assert dict(session.bitbucket_headers) == {"Authorization": "Basic dXNlcjp0b2tlbg=="}

    def test_neither_present_gives_empty_headers(self):
        session = build_session(_config())
        assert dict(session.bitbucket_headers) == {}

    def test_auth_headers_helper(self):
        assert bitbucket_auth_headers(None, None) == {}
        with pytest.raises(InvalidCredentials):
            bitbucket_auth_headers("alice", None)

    def test_posthog_bearer_header(self):
        session = build_session(_config(posthog_api_key="phx_abc"))
        assert dict(session.posthog_headers) == {"Authorization": "Bearer phx_abc"}


# ── hosts and URLs ────────────────────────────────────────────────────────


class TestHosts:
    @pytest.mark.parametrize(
        "host",
        ["https://posthog.example.com", "http://localhost:8000", "posthog.example.com"],
    )
    def test_normalize_is_idempotent(self, host):
        assert normalize_host(host) == host
        assert normalize_host(normalize_host(host + "/")) == host

    def test_normalize_strips_single_slash_only(self):
        assert normalize_host("https://x.example.com//") == "https://x.example.com/"

    def test_base_url_adds_https(self):
        assert base_url("posthog.example.com/") == "https://posthog.example.com"

    def test_base_url_keeps_scheme(self):
        assert base_url("http://localhost:8000/") == "http://localhost:8000"
        assert base_url("https://eu.posthog.com") == "https://eu.posthog.com"

    def test_base_url_is_idempotent(self):
        once = base_url("posthog.example.com/")
        assert base_url(once) == once

    def test_bitbucket_api_base(self):
        session = build_session(_config(bitbucket_host="https://bitbucket.example.com/"))
        assert session.bitbucket_api_base_url == BITBUCKET_API
        assert session.tags_url == f"{BITBUCKET_API}/refs/tags"

    def test_posthog_base(self):
        session = build_session(_config(posthog_host="posthog.example.com/"))
        assert session.posthog_base_url == POSTHOG
        assert session.annotations_url == f"{POSTHOG}/api/annotation/"


class TestSessionContext:
    def test_is_frozen(self):
        session = build_session(_config())
        with pytest.raises(dataclasses.FrozenInstanceError):
            session.posthog_base_url = "https://elsewhere"  # type: ignore[misc]

    def test_every_field_is_explicit(self):
        """No field carries a class-level default shared between sessions."""
        for f in dataclasses.fields(SessionContext):
            assert f.default is dataclasses.MISSING
            assert f.default_factory is dataclasses.MISSING

    def test_constructed_directly(self):
        session = SessionContext(
            posthog_base_url=POSTHOG,
            posthog_headers=MappingProxyType({"Authorization": "Bearer k"}),
            bitbucket_api_base_url=BITBUCKET_API,
            bitbucket_headers=MappingProxyType({}),
        )
        assert session.tags_url == f"{BITBUCKET_API}/refs/tags"
        assert dict(session.bitbucket_headers) == {}

    def test_headers_are_read_only(self):
        session = build_session(_config())
        with pytest.raises(TypeError):
            session.posthog_headers["Authorization"] = "Bearer other"  # type: ignore[index]


# ── connectivity probe ────────────────────────────────────────────────────


def _probe_api(posthog_status: int = 200, bitbucket_status: int = 200) -> FakeAPI:
    api = FakeAPI()
    api.add("GET", f"{POSTHOG}/api/user", httpx.Response(posthog_status, json={}))
    api.add("GET", BITBUCKET_API, httpx.Response(bitbucket_status, json={}))
    return api


class TestInitialize:
    @pytest.mark.anyio
    async def test_success(self):
        api = _probe_api()
        config = _config(bitbucket_username="user", bitbucket_token="token")

        async with api.client() as client:
            session = await initialize(config, client)

        assert session.posthog_base_url == POSTHOG
        user_req, repo_req = api.requests
        assert str(user_req.url) == f"{POSTHOG}/api/user"
        assert user_req.headers["Authorization"] == "Bearer phx_test"
        assert str(repo_req.url) == BITBUCKET_API
        assert repo_req.headers["Authorization"] == "Basic dXNlcjp0b2tlbg=="

    @pytest.mark.anyio
    async def test_public_repo_sends_no_auth(self):
        api = _probe_api()

        async with api.client() as client:
            await initialize(_config(), client)

        assert "Authorization" not in api.requests[1].headers

    @pytest.mark.anyio
    async def test_rejected_api_key(self):
        api = _probe_api(posthog_status=401)

        async with api.client() as client:
            with pytest.raises(InvalidApiKey) as exc_info:
                await initialize(_config(), client)

        assert exc_info.value.status == 401
        assert isinstance(exc_info.value, AuthError)
        assert len(api.requests) == 1  # Bitbucket never probed

    @pytest.mark.anyio
    async def test_bad_repo_config(self):
        api = _probe_api(bitbucket_status=404)

        async with api.client() as client:
            with pytest.raises(InvalidRepoConfig) as exc_info:
                await initialize(_config(), client)

        assert exc_info.value.status == 404

    @pytest.mark.anyio
    async def test_transport_failure_is_api_unreachable(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        api = FakeAPI().add("GET", f"{POSTHOG}/api/user", refuse)

        async with api.client() as client:
            with pytest.raises(ApiUnreachable):
                await initialize(_config(), client)

        assert len(api.requests) == 2  # one retry, then give up

    @pytest.mark.anyio
    async def test_credentials_checked_before_any_request(self):
        api = _probe_api()

        async with api.client() as client:
            with pytest.raises(InvalidCredentials):
                await initialize(_config(bitbucket_token="secret"), client)

        assert api.requests == []
