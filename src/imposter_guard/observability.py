from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .services.stats import RuntimeStats

log = logging.getLogger("imposter_guard.observability")


class LogLevel(Enum):
    """Structured log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ActionType(Enum):
    """Action types for structured logging."""
    DECODE_ERROR = "decode_error"
    MATCH = "match"
    API_CALL = "api_call"
    LIFECYCLE = "lifecycle"
    STARTUP = "startup"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StructuredLogEntry:
    """Structured log entry with context."""
    timestamp: datetime
    level: LogLevel
    action: ActionType
    did: Optional[str]
    message: str
    details: dict[str, Any]
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["level"] = self.level.value
        data["action"] = self.action.value
        return data


class ObservabilityManager:
    """Structured logging plus the error/health side channel.

    Counters live in ``RuntimeStats``; this class adds per-error-kind tallies
    and the component health map reported by the health endpoint.
    """

    def __init__(self, stats: Optional[RuntimeStats] = None) -> None:
        self.stats = stats or RuntimeStats()
        self._error_counts: dict[str, int] = {}
        self._api_call_counts: dict[str, int] = {}
        self._health_status: dict[str, bool] = {}
        self._stream_state = "disconnected"

    def log_structured(
        self,
        level: LogLevel,
        action: ActionType,
        message: str,
        did: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        success: Optional[bool] = None,
        error_type: Optional[str] = None,
    ) -> None:
        entry = StructuredLogEntry(
            timestamp=_utcnow(),
            level=level,
            action=action,
            did=did,
            message=message,
            details=details or {},
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        log_method = {
            LogLevel.DEBUG: log.debug,
            LogLevel.INFO: log.info,
            LogLevel.WARNING: log.warning,
            LogLevel.ERROR: log.error,
        }.get(level, log.info)
        log_method("[%s] %s | %s", action.value, message, json.dumps(entry.to_dict(), separators=(",", ":"), default=str))

        if error_type:
            key = f"{action.value}:{error_type}"
            self._error_counts[key] = self._error_counts.get(key, 0) + 1
        if action == ActionType.API_CALL:
            op = (details or {}).get("operation", "unknown")
            self._api_call_counts[op] = self._api_call_counts.get(op, 0) + 1

    def log_decode_error(self, reason: str, payload_preview: str) -> None:
        self.log_structured(
            level=LogLevel.WARNING,
            action=ActionType.DECODE_ERROR,
            message=f"Dropped malformed frame: {reason}",
            details={"payload": payload_preview},
            success=False,
            error_type="DecodeError",
        )

    def log_match(self, did: str, display_name: str, matched_key: str) -> None:
        self.log_structured(
            level=LogLevel.INFO,
            action=ActionType.MATCH,
            message=f"Blocking {display_name} imposter",
            did=did,
            details={"matched_key": matched_key},
        )

    def log_api_call(
        self,
        operation: str,
        success: bool,
        duration_ms: float,
        did: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.log_structured(
            level=LogLevel.INFO if success else LogLevel.ERROR,
            action=ActionType.API_CALL,
            message=f"API call {operation} {'succeeded' if success else 'failed'}"
            + (f": {error}" if error is not None else ""),
            did=did,
            details={"operation": operation},
            duration_ms=round(duration_ms, 2),
            success=success,
            error_type=type(error).__name__ if error is not None else None,
        )

    def log_fault(self, stage: str, error: BaseException, did: Optional[str] = None) -> None:
        self.log_structured(
            level=LogLevel.ERROR,
            action=ActionType.ERROR,
            message=f"Unexpected fault during {stage}: {error}",
            did=did,
            details={"stage": stage},
            success=False,
            error_type=type(error).__name__,
        )

    def log_state(self, state: str) -> None:
        self._stream_state = state
        self.log_structured(
            level=LogLevel.DEBUG,
            action=ActionType.LIFECYCLE,
            message=f"Stream state -> {state}",
            details={"state": state},
        )

    def log_startup_event(self, component: str, status: str, details: Optional[dict[str, Any]] = None) -> None:
        self.log_structured(
            level=LogLevel.INFO if status == "OK" else LogLevel.ERROR,
            action=ActionType.STARTUP,
            message=f"Startup component {component}: {status}",
            details=details or {"component": component, "status": status},
            success=status == "OK",
        )
        self._health_status[component] = status == "OK"

    def get_health_summary(self) -> dict[str, Any]:
        return {
            "state": self._stream_state,
            "health_status": dict(self._health_status),
            "all_healthy": all(self._health_status.values()) if self._health_status else True,
            "stats": self.stats.snapshot(),
            "error_counts": dict(self._error_counts),
            "api_call_counts": dict(self._api_call_counts),
        }
