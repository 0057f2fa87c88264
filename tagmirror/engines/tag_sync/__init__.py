"""Tag sync engine — mirrors Bitbucket tags into PostHog annotations."""

from tagmirror.engines.tag_sync.guard import (
    LAST_RUN_KEY,
    GuardStore,
    JsonFileGuardStore,
    MemoryGuardStore,
    RedisGuardStore,
    open_guard_store,
)
from tagmirror.engines.tag_sync.models import Annotation, SyncResult, Tag
from tagmirror.engines.tag_sync.reconciler import (
    CREATED_EVENT,
    create_annotation,
    diff_tags,
    fetch_annotation_contents,
    fetch_tags,
    reconcile,
)
from tagmirror.engines.tag_sync.runner import TagSyncRunner
from tagmirror.engines.tag_sync.session import SessionContext, build_session, initialize
from tagmirror.engines.tag_sync.telemetry import (
    LogTelemetry,
    PostHogCaptureTelemetry,
    TelemetrySink,
)

__all__ = [
    "CREATED_EVENT",
    "LAST_RUN_KEY",
    "Annotation",
    "GuardStore",
    "JsonFileGuardStore",
    "LogTelemetry",
    "MemoryGuardStore",
    "PostHogCaptureTelemetry",
    "RedisGuardStore",
    "SessionContext",
    "SyncResult",
    "Tag",
    "TagSyncRunner",
    "TelemetrySink",
    "build_session",
    "create_annotation",
    "diff_tags",
    "fetch_annotation_contents",
    "fetch_tags",
    "initialize",
    "open_guard_store",
    "reconcile",
]
