"""Tag sync engine — one fetch/diff/create pass, no run-guard handling."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import httpx
import structlog

from tagmirror.core.errors import MalformedResponse, TagMirrorError, UnexpectedStatus
from tagmirror.core.http import fetch_with_retry
from tagmirror.engines.tag_sync.models import SyncResult, Tag
from tagmirror.engines.tag_sync.session import SessionContext
from tagmirror.engines.tag_sync.telemetry import TelemetrySink

log = structlog.get_logger("tagmirror.engine")

CREATED_EVENT = "created_tag_annotation"


async def reconcile(
    client: httpx.AsyncClient,
    session: SessionContext,
    telemetry: TelemetrySink,
) -> SyncResult:
    """Mirror every Bitbucket tag that has no PostHog annotation yet.

    Listing failures propagate; a failure creating one annotation is logged,
    recorded in ``SyncResult.errors``, and does not stop the others.
    """
    result = SyncResult()

    contents = await fetch_annotation_contents(client, session)
    result.annotations_seen = len(contents)

    tags = await fetch_tags(client, session)
    result.tags_seen = len(tags)

    new_tags = diff_tags(tags, contents)
    result.new_tags = [tag.name for tag in new_tags]
    log.info(
        "tag_sync.diffed",
        annotations=len(contents),
        tags=len(tags),
        new_tags=len(new_tags),
    )

    for tag in new_tags:
        try:
            created = await create_annotation(client, session, tag)
        except TagMirrorError as exc:
            log.error("tag_sync.tag_failed", tag=tag.name, error=str(exc))
            result.errors.append(f"{tag.name}: {exc}")
            continue

        if not created:
            result.errors.append(f"{tag.name}: annotation not created")
            continue

        result.created.append(tag.name)
        log.info("tag_sync.created", tag=tag.name, date_marker=tag.date)
        try:
            await telemetry.capture(CREATED_EVENT, {"tag": tag.name})
        except TagMirrorError as exc:
            log.warning("tag_sync.telemetry_failed", tag=tag.name, error=str(exc))

    return result


async def fetch_annotation_contents(
    client: httpx.AsyncClient, session: SessionContext
) -> set[str]:
    """GET /api/annotation/ — follow ``next`` until exhausted, collect contents.

    A ``next`` link pointing back at a page already read raises
    :class:`MalformedResponse` instead of looping.
    """
    contents: set[str] = set()
    url: str | None = f"{session.annotations_url}?scope=organization&deleted=false"
    seen: set[str] = set()

    while url:
        if url in seen:
            raise MalformedResponse(url, "pagination cycle")
        seen.add(url)
        data = await _get_json(client, url, session.posthog_headers)
        for item in data.get("results") or []:
            if not isinstance(item, dict):
                raise MalformedResponse(url, f"annotation is a {type(item).__name__}")
            content = item.get("content")
            if content is not None:
                contents.add(content)
        url = data.get("next")

    log.debug("tag_sync.annotations_fetched", pages=len(seen), annotations=len(contents))
    return contents


async def fetch_tags(client: httpx.AsyncClient, session: SessionContext) -> list[Tag]:
    """GET {repo}/refs/tags — first page only."""
    url = session.tags_url
    data = await _get_json(client, url, session.bitbucket_headers)
    tags: list[Tag] = []
    for item in data.get("values") or []:
        if not isinstance(item, dict):
            raise MalformedResponse(url, f"tag is a {type(item).__name__}")
        if not item.get("name"):
            log.warning("tag_sync.unnamed_tag", ref=item)
            continue
        tags.append(Tag.from_api(item))
    return tags


def diff_tags(tags: Iterable[Tag], annotation_contents: set[str]) -> list[Tag]:
    """Tags whose name is not already an annotation's content, in input order."""
    return [tag for tag in tags if tag.name not in annotation_contents]


async def create_annotation(
    client: httpx.AsyncClient, session: SessionContext, tag: Tag
) -> bool:
    """POST /api/annotation/ for *tag*. Returns True only on HTTP 201."""
    res = await fetch_with_retry(
        client,
        session.annotations_url,
        headers={"Content-Type": "application/json", **session.posthog_headers},
        body=tag.to_annotation().to_payload(),
        method="POST",
    )
    if res.status_code == 201:
        return True

    log.warning(
        "tag_sync.create_rejected",
        tag=tag.name,
        status=res.status_code,
        body=res.text[:500],
    )
    return False


async def _get_json(
    client: httpx.AsyncClient, url: str, headers: Mapping[str, str]
) -> dict[str, Any]:
    res = await fetch_with_retry(client, url, headers=headers)
    if not res.is_success:
        raise UnexpectedStatus("GET", url, res.status_code)
    try:
        data = res.json()
    except ValueError as exc:
        raise MalformedResponse(url, "invalid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedResponse(url, f"expected an object, got {type(data).__name__}")
    return data
