"""Data models for the tag sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ORGANIZATION_SCOPE = "organization"


@dataclass(frozen=True)
class Annotation:
    """A PostHog annotation. Only ``content`` matters for diffing."""

    content: str
    scope: str = ORGANIZATION_SCOPE
    date_marker: str | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> Annotation:
        return cls(
            content=item.get("content") or "",
            scope=item.get("scope") or ORGANIZATION_SCOPE,
            date_marker=item.get("date_marker"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": self.content, "scope": self.scope}
        # Bitbucket tags without any date are still mirrored; PostHog then
        # stamps the annotation with its own default.
        if self.date_marker is not None:
            payload["date_marker"] = self.date_marker
        return payload


@dataclass(frozen=True)
class Tag:
    """A Bitbucket tag reference."""

    name: str
    date: str | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> Tag:
        """Build a tag from a ``refs/tags`` entry.

        Older responses carry the date on the tag itself (``date``); annotated
        and lightweight tags alike otherwise expose it as ``target.date``.
        """
        date = item.get("date")
        if not date:
            target = item.get("target") or {}
            date = target.get("date")
        return cls(name=item["name"], date=date)

    def to_annotation(self) -> Annotation:
        return Annotation(content=self.name, date_marker=self.date)


@dataclass
class SyncResult:
    """Summary of a single reconciliation pass."""

    skipped: bool = False
    annotations_seen: int = 0
    tags_seen: int = 0
    new_tags: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
