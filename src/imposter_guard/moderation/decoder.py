"""Defensive decoding of Jetstream frames.

Every frame is untrusted. ``decode_event`` never raises: it returns a
``DecodeResult`` holding either a fully validated ``CommitEvent`` or a failure
reason plus the original payload.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from ..errors import DecodeError
from .models import (
    BlobRef,
    Commit,
    CommitEvent,
    DecodeResult,
    EventKind,
    Label,
    Operation,
    Payload,
    ProfileRecord,
)

_OPERATIONS = {op.value: op for op in Operation}


def _require_str(obj: dict[str, Any], key: str, path: str, *, allow_empty: bool = False) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"{path}.{key} must be a string")
    if not allow_empty and not value:
        raise DecodeError(f"{path}.{key} must be non-empty")
    return value


def _optional_str(obj: dict[str, Any], key: str, path: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"{path}.{key} must be a string")
    return value


def _require_int(obj: dict[str, Any], key: str, path: str) -> int:
    value = obj.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{path}.{key} must be an integer")
    return value


def _decode_blob(raw: Any, path: str) -> Optional[BlobRef]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DecodeError(f"{path} must be an object")
    ref = raw.get("ref")
    link = ""
    if isinstance(ref, dict):
        link = _optional_str(ref, "$link", f"{path}.ref")
    elif ref is not None:
        raise DecodeError(f"{path}.ref must be an object")
    size = raw.get("size", 0)
    if isinstance(size, bool) or not isinstance(size, int):
        raise DecodeError(f"{path}.size must be an integer")
    return BlobRef(
        type=_optional_str(raw, "$type", path),
        link=link,
        mime_type=_optional_str(raw, "mimeType", path),
        size=size,
    )


def _decode_labels(raw: Any, path: str) -> tuple[Label, ...]:
    if raw is None:
        return ()
    # Self-labels arrive wrapped: {"$type": "...#selfLabels", "values": [...]}
    if isinstance(raw, dict):
        raw = raw.get("values") or []
        path = f"{path}.values"
    if not isinstance(raw, list):
        raise DecodeError(f"{path} must be a list")

    labels: list[Label] = []
    for i, item in enumerate(raw):
        if isinstance(item, dict):
            val = item.get("val")
            labels.append(Label(val=val if isinstance(val, str) else ""))
        elif isinstance(item, str):
            labels.append(Label(val=item))
        else:
            raise DecodeError(f"{path}[{i}] must be an object or string")
    return tuple(labels)


def _decode_record(raw: Any, path: str) -> Optional[ProfileRecord]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DecodeError(f"{path} must be an object")
    return ProfileRecord(
        type=_optional_str(raw, "$type", path),
        display_name=_optional_str(raw, "displayName", path),
        description=_optional_str(raw, "description", path),
        created_at=_optional_str(raw, "createdAt", path),
        avatar=_decode_blob(raw.get("avatar"), f"{path}.avatar"),
        banner=_decode_blob(raw.get("banner"), f"{path}.banner"),
        labels=_decode_labels(raw.get("labels"), f"{path}.labels"),
    )


def _decode_commit(raw: Any) -> Commit:
    path = "$.commit"
    if not isinstance(raw, dict):
        raise DecodeError(f"{path} missing or not an object for a commit event")

    op_raw = raw.get("operation")
    operation = _OPERATIONS.get(op_raw) if isinstance(op_raw, str) else None
    if operation is None:
        raise DecodeError(f"{path}.operation unsupported: {op_raw!r}")

    return Commit(
        operation=operation,
        collection=_require_str(raw, "collection", path),
        rkey=_require_str(raw, "rkey", path, allow_empty=True),
        rev=_optional_str(raw, "rev", path),
        cid=_optional_str(raw, "cid", path),
        record=_decode_record(raw.get("record"), f"{path}.record"),
    )


def parse_event(raw: Payload) -> CommitEvent:
    """Parse and validate one frame. Raises ``DecodeError`` on any problem."""
    if raw is None:
        raise DecodeError("empty frame")
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"frame is not valid UTF-8: {e.reason}") from e
    elif isinstance(raw, str):
        text = raw
    else:
        raise DecodeError(f"unsupported frame type: {type(raw).__name__}")

    if not text.strip():
        raise DecodeError("empty frame")

    try:
        doc = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"frame is not valid JSON: {type(e).__name__}") from e

    if not isinstance(doc, dict):
        raise DecodeError("top-level value must be an object")

    did = _require_str(doc, "did", "$")
    time_us = _require_int(doc, "time_us", "$")
    kind_raw = _require_str(doc, "kind", "$")

    if kind_raw != EventKind.COMMIT.value:
        return CommitEvent(did=did, time_us=time_us, kind=EventKind.OTHER, kind_raw=kind_raw)

    return CommitEvent(
        did=did,
        time_us=time_us,
        kind=EventKind.COMMIT,
        kind_raw=kind_raw,
        commit=_decode_commit(doc.get("commit")),
    )


def decode_event(raw: Payload) -> DecodeResult:
    try:
        return DecodeResult(event=parse_event(raw), payload=raw)
    except DecodeError as e:
        return DecodeResult(error=e.reason, payload=raw)
