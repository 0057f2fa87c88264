"""TagSyncRunner — run guard and error boundary around the reconcile engine."""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx
import structlog

from tagmirror.core.errors import TagMirrorError
from tagmirror.engines.tag_sync.guard import LAST_RUN_KEY, GuardStore
from tagmirror.engines.tag_sync.models import SyncResult
from tagmirror.engines.tag_sync.reconciler import reconcile
from tagmirror.engines.tag_sync.session import SessionContext
from tagmirror.engines.tag_sync.telemetry import TelemetrySink

log = structlog.get_logger("tagmirror.engine")

GUARD_WINDOW_MS = 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class TagSyncRunner:
    """Orchestration layer: guard check → reconcile pass → guard bookkeeping."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        session: SessionContext,
        guard: GuardStore,
        telemetry: TelemetrySink,
        *,
        clock: Callable[[], int] = _now_ms,
        guard_window_ms: int = GUARD_WINDOW_MS,
    ) -> None:
        self._client = client
        self._session = session
        self._guard = guard
        self._telemetry = telemetry
        self._clock = clock
        self._guard_window_ms = guard_window_ms

    async def run(self, *, force: bool = False) -> SyncResult:
        """Run one guarded pass.

        1. Skip if the last successful pass started within the guard window
        2. Record the start time before doing any work
        3. Reconcile tags with annotations
        4. On any failure, put the previous timestamp back so the next tick retries

        Sync errors are logged and returned in ``SyncResult.errors``, never
        raised, so a scheduling loop survives a bad pass. Cancellation and
        unexpected exceptions restore the guard and propagate.
        """
        now = self._clock()
        previous = await self._guard.get(LAST_RUN_KEY)

        if not force and self._within_window(previous, now):
            log.debug("tag_sync.skipped", last_run=previous)
            return SyncResult(skipped=True)

        await self._guard.set(LAST_RUN_KEY, str(now))

        try:
            result = await reconcile(self._client, self._session, self._telemetry)
        except TagMirrorError as exc:
            log.error("tag_sync.pass_failed", error=str(exc), error_type=type(exc).__name__)
            await self._restore_guard(previous)
            return SyncResult(errors=[f"{type(exc).__name__}: {exc}"])
        except BaseException as exc:
            # Cancellation or a bug: put the guard back, then let it propagate.
            log.error("tag_sync.pass_aborted", error_type=type(exc).__name__)
            await self._restore_guard(previous)
            raise

        log.info(
            "tag_sync.pass_complete",
            created=len(result.created),
            new_tags=len(result.new_tags),
            errors=len(result.errors),
        )
        return result

    def _within_window(self, last_run: str | None, now: int) -> bool:
        if not last_run:
            return False
        try:
            last_run_ms = int(float(last_run))
        except ValueError:
            log.warning("tag_sync.bad_guard_value", last_run=last_run)
            return False
        return now - last_run_ms < self._guard_window_ms

    async def _restore_guard(self, previous: str | None) -> None:
        if previous is None:
            await self._guard.delete(LAST_RUN_KEY)
        else:
            await self._guard.set(LAST_RUN_KEY, previous)
