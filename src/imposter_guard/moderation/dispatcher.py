from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import ActionError
from ..interfaces import ListItemWriter, validate_list_writer
from ..observability import ObservabilityManager
from .models import BlockAction, DispatchResult

log = logging.getLogger("imposter_guard.dispatch")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ActionDispatcher:
    """Turns a positive verdict into exactly one list-item write.

    Never retries and never raises into the stream: every failure becomes a
    ``DispatchResult(ok=False)`` plus a log line and counter bump.
    """

    def __init__(
        self,
        *,
        writer: ListItemWriter,
        observability: ObservabilityManager,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.writer = validate_list_writer(writer)
        self.obs = observability
        self._clock = clock or _now_iso

    def build_action(self, did: str, list_uri: str) -> BlockAction:
        return BlockAction(subject_did=did, list_uri=list_uri, created_at=self._clock())

    async def dispatch(self, did: str, list_uri: str) -> DispatchResult:
        action = self.build_action(did, list_uri)
        stats = self.obs.stats
        start = time.monotonic()
        try:
            uri = await self.writer.create_list_item(action)
        except asyncio.CancelledError:
            raise
        except ActionError as e:
            elapsed = (time.monotonic() - start) * 1000
            stats.actions_failed += 1
            self.obs.log_api_call("create_list_item", False, elapsed, did=did, error=e)
            return DispatchResult(ok=False, subject_did=did, error=str(e), duration_ms=elapsed)
        except Exception as e:
            elapsed = (time.monotonic() - start) * 1000
            stats.actions_failed += 1
            log.exception("Unexpected error while blocking %s", did)
            self.obs.log_api_call("create_list_item", False, elapsed, did=did, error=e)
            return DispatchResult(ok=False, subject_did=did, error=f"{type(e).__name__}: {e}", duration_ms=elapsed)

        elapsed = (time.monotonic() - start) * 1000
        stats.actions_dispatched += 1
        self.obs.log_api_call("create_list_item", True, elapsed, did=did)
        return DispatchResult(ok=True, subject_did=did, uri=uri, duration_ms=elapsed)
