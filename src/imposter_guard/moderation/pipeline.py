from __future__ import annotations

import logging
from typing import Protocol

from ..constants import LOG_PAYLOAD_LIMIT
from ..observability import ObservabilityManager
from .decoder import decode_event
from .matcher import match
from .models import Payload, PipelineOutcome
from .normalizer import normalize
from .registry import ImpersonationRegistry

log = logging.getLogger("imposter_guard.pipeline")


class ActionSink(Protocol):
    async def submit(self, subject_did: str, list_uri: str) -> None: ...


def _preview(payload: Payload) -> str:
    if payload is None:
        return ""
    if isinstance(payload, (bytes, bytearray)):
        text = bytes(payload[:LOG_PAYLOAD_LIMIT]).decode("utf-8", errors="replace")
    else:
        text = str(payload)[:LOG_PAYLOAD_LIMIT]
    return text


class ModerationPipeline:
    """decode -> actionable filter -> normalize -> match -> hand off to the sink."""

    def __init__(
        self,
        *,
        registry: ImpersonationRegistry,
        sink: ActionSink,
        list_uri: str,
        observability: ObservabilityManager,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.list_uri = list_uri
        self.obs = observability

    async def process(self, raw: Payload) -> PipelineOutcome:
        stats = self.obs.stats
        stats.events_received += 1

        decoded = decode_event(raw)
        if not decoded.ok:
            stats.decode_failures += 1
            self.obs.log_decode_error(decoded.error or "unknown", _preview(decoded.payload))
            return PipelineOutcome(status="decode_error", details={"error": decoded.error})

        event = decoded.event
        assert event is not None
        if not decoded.actionable:
            stats.events_skipped += 1
            return PipelineOutcome(status="skipped", did=event.did, details={"kind": event.kind_raw})

        record = event.commit.record  # type: ignore[union-attr]
        key = normalize(record.display_name)  # type: ignore[union-attr]
        verdict = match(event.did, key, self.registry)

        if not verdict.should_block:
            if verdict.reason == "excepted":
                stats.events_excepted += 1
                log.info("Skipping known owner of %r: %s", verdict.matched_key, event.did)
                return PipelineOutcome(status="excepted", did=event.did, verdict=verdict)
            return PipelineOutcome(status="no_match", did=event.did, verdict=verdict)

        stats.events_matched += 1
        entry = self.registry.get(verdict.matched_key)
        self.obs.log_match(event.did, entry.display_name if entry else verdict.matched_key, verdict.matched_key)
        await self.sink.submit(event.did, self.list_uri)
        return PipelineOutcome(status="queued", did=event.did, verdict=verdict)
