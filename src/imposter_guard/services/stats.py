from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field


@dataclass
class RuntimeStats:
    started_at: float = field(default_factory=time.time)
    events_received: int = 0
    decode_failures: int = 0
    events_skipped: int = 0
    events_matched: int = 0
    events_excepted: int = 0
    processing_faults: int = 0
    actions_dispatched: int = 0
    actions_failed: int = 0
    actions_abandoned: int = 0

    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    def snapshot(self) -> dict[str, int]:
        data = asdict(self)
        data.pop("started_at")
        data["uptime_seconds"] = self.uptime_seconds()
        return data
