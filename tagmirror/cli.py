"""CLI entry point: tagmirror.

Subcommands:
    tagmirror check       # Validate config and probe both APIs
    tagmirror run         # One guarded sync pass (for cron)
    tagmirror schedule    # Sync on a fixed cadence until interrupted

Connection settings come from options or their TAGMIRROR_* environment
variables, e.g. TAGMIRROR_POSTHOG_API_KEY, TAGMIRROR_REPO_NAME.
"""

from __future__ import annotations

import asyncio
import sys
from typing import NoReturn

import click
import httpx
import structlog

from tagmirror import __version__
from tagmirror.config import (
    DEFAULT_BITBUCKET_HOST,
    DEFAULT_GUARD_STORE,
    DEFAULT_POSTHOG_HOST,
    TagMirrorConfig,
    http_timeout,
    sync_interval,
)
from tagmirror.core.errors import SetupError
from tagmirror.core.logging import setup_logging
from tagmirror.engines.tag_sync.guard import open_guard_store
from tagmirror.engines.tag_sync.models import SyncResult
from tagmirror.engines.tag_sync.runner import TagSyncRunner
from tagmirror.engines.tag_sync.session import SessionContext, initialize
from tagmirror.engines.tag_sync.telemetry import (
    LogTelemetry,
    PostHogCaptureTelemetry,
    TelemetrySink,
)
from tagmirror.scheduler import SyncLoop

_guard_option = click.option(
    "--guard-store",
    envvar="TAGMIRROR_GUARD_STORE",
    default=DEFAULT_GUARD_STORE,
    show_default=True,
    help=(
        "Run guard location: a JSON file path, a redis://, rediss:// or "
        "unix:// Redis URL, or 'memory:'"
    ),
)
_project_key_option = click.option(
    "--posthog-project-key",
    envvar="TAGMIRROR_POSTHOG_PROJECT_KEY",
    default=None,
    help="Project API key for capturing telemetry events in PostHog (logs them if unset)",
)


def _make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=http_timeout(),
        headers={"User-Agent": f"tagmirror/{__version__}"},
    )


def _make_telemetry(
    client: httpx.AsyncClient, session: SessionContext, project_key: str | None
) -> TelemetrySink:
    if project_key:
        return PostHogCaptureTelemetry(client, session.posthog_base_url, project_key)
    return LogTelemetry()


def _guard_namespace(config: TagMirrorConfig) -> str:
    return f"tagmirror:{config.bitbucket_workspace}/{config.repo_name}"


def _fail_setup(exc: SetupError) -> NoReturn:
    click.echo(f"Error: {type(exc).__name__}: {exc}", err=True)
    sys.exit(1)


_REQUIRED = (
    ("posthog_api_key", "--posthog-api-key", "TAGMIRROR_POSTHOG_API_KEY"),
    ("bitbucket_workspace", "--bitbucket-workspace", "TAGMIRROR_BITBUCKET_WORKSPACE"),
    ("repo_name", "--repo-name", "TAGMIRROR_REPO_NAME"),
)


def _build_config(settings: dict[str, str | None]) -> TagMirrorConfig:
    """Turn the group's raw options into a config, or fail with a usage error."""
    for key, option, envvar in _REQUIRED:
        if not settings.get(key):
            raise click.UsageError(f"Missing option '{option}' (or set {envvar}).")
    structlog.contextvars.bind_contextvars(
        repo=f"{settings['bitbucket_workspace']}/{settings['repo_name']}"
    )
    return TagMirrorConfig(
        posthog_api_key=settings["posthog_api_key"],
        posthog_host=settings["posthog_host"] or DEFAULT_POSTHOG_HOST,
        bitbucket_host=settings["bitbucket_host"] or DEFAULT_BITBUCKET_HOST,
        bitbucket_workspace=settings["bitbucket_workspace"],
        repo_name=settings["repo_name"],
        bitbucket_username=settings["bitbucket_username"] or None,
        bitbucket_token=settings["bitbucket_token"] or None,
    )


@click.group()
@click.version_option(__version__, prog_name="tagmirror")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--posthog-api-key", envvar="TAGMIRROR_POSTHOG_API_KEY", default=None,
              help="PostHog personal API key [required]")
@click.option("--posthog-host", envvar="TAGMIRROR_POSTHOG_HOST",
              default=DEFAULT_POSTHOG_HOST, show_default=True, help="PostHog host")
@click.option("--bitbucket-host", envvar="TAGMIRROR_BITBUCKET_HOST",
              default=DEFAULT_BITBUCKET_HOST, show_default=True, help="Bitbucket host")
@click.option("--bitbucket-workspace", envvar="TAGMIRROR_BITBUCKET_WORKSPACE", default=None,
              help="Bitbucket workspace ID [required]")
@click.option("--repo-name", envvar="TAGMIRROR_REPO_NAME", default=None,
              help="Repository slug [required]")
@click.option("--bitbucket-username", envvar="TAGMIRROR_BITBUCKET_USERNAME", default=None,
              help="Bitbucket username (private repos)")
@click.option("--bitbucket-token", envvar="TAGMIRROR_BITBUCKET_TOKEN", default=None,
              help="Bitbucket app password / token (private repos)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, **settings: str | None) -> None:
    """tagmirror: mirror Bitbucket tags as PostHog annotations."""
    setup_logging("DEBUG" if verbose else None)
    ctx.obj = settings


@main.command("check")
@click.pass_obj
def check(settings: dict[str, str | None]) -> None:
    """Validate configuration and probe PostHog and Bitbucket."""
    config = _build_config(settings)
    try:
        session = asyncio.run(_check(config))
    except SetupError as exc:
        _fail_setup(exc)

    click.echo("Configuration OK")
    click.echo(f"  PostHog:   {session.posthog_base_url}")
    click.echo(f"  Bitbucket: {session.bitbucket_api_base_url}")
    click.echo(f"  Auth:      {'basic' if session.bitbucket_headers else 'public'}")


@main.command("run")
@_guard_option
@_project_key_option
@click.option("--force", is_flag=True, help="Ignore the one-hour run guard")
@click.pass_obj
def run(
    settings: dict[str, str | None],
    guard_store: str,
    posthog_project_key: str | None,
    force: bool,
) -> None:
    """Run a single sync pass."""
    config = _build_config(settings)
    try:
        result = asyncio.run(_run_once(config, guard_store, posthog_project_key, force))
    except SetupError as exc:
        _fail_setup(exc)

    if result.skipped:
        click.echo("Skipped: the last pass started less than an hour ago.")
        return

    click.echo(
        f"Annotations: {result.annotations_seen}  Tags: {result.tags_seen}  "
        f"New: {len(result.new_tags)}  Created: {len(result.created)}"
    )
    for name in result.created:
        click.echo(f"  + {name}")
    if result.errors:
        for err in result.errors:
            click.echo(f"Error: {err}", err=True)
        sys.exit(1)


@main.command("schedule")
@_guard_option
@_project_key_option
@click.option("--interval", type=float, default=None,
              help="Seconds between ticks [default: TAGMIRROR_SYNC_INTERVAL or 60]")
@click.pass_obj
def schedule(
    settings: dict[str, str | None],
    guard_store: str,
    posthog_project_key: str | None,
    interval: float | None,
) -> None:
    """Initialize once, then run a guarded pass on every tick."""
    config = _build_config(settings)
    try:
        asyncio.run(
            _schedule(config, guard_store, posthog_project_key, interval or sync_interval())
        )
    except SetupError as exc:
        _fail_setup(exc)
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _check(config: TagMirrorConfig) -> SessionContext:
    async with _make_client() as client:
        return await initialize(config, client)


async def _run_once(
    config: TagMirrorConfig,
    guard_location: str,
    project_key: str | None,
    force: bool,
) -> SyncResult:
    async with _make_client() as client:
        session = await initialize(config, client)
        guard = open_guard_store(guard_location, namespace=_guard_namespace(config))
        try:
            runner = TagSyncRunner(
                client, session, guard, _make_telemetry(client, session, project_key)
            )
            return await runner.run(force=force)
        finally:
            await guard.close()


async def _schedule(
    config: TagMirrorConfig,
    guard_location: str,
    project_key: str | None,
    interval: float,
) -> None:
    async with _make_client() as client:
        session = await initialize(config, client)
        guard = open_guard_store(guard_location, namespace=_guard_namespace(config))
        runner = TagSyncRunner(
            client, session, guard, _make_telemetry(client, session, project_key)
        )
        loop = SyncLoop(runner.run, interval)
        await loop.start()
        try:
            await loop.wait()
        finally:
            await loop.stop()
            await guard.close()


if __name__ == "__main__":
    main()
