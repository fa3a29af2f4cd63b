from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..constants import LISTITEM_COLLECTION, PROFILE_COLLECTION


class EventKind(str, Enum):
    COMMIT = "commit"
    OTHER = "other"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class BlobRef:
    """Opaque blob reference (avatar, banner). Never inspected."""

    type: str
    link: str
    mime_type: str
    size: int


@dataclass(frozen=True)
class Label:
    val: str


@dataclass(frozen=True)
class ProfileRecord:
    type: str
    display_name: str = ""
    description: str = ""
    created_at: str = ""
    avatar: Optional[BlobRef] = None
    banner: Optional[BlobRef] = None
    labels: tuple[Label, ...] = ()

    @property
    def is_labeled(self) -> bool:
        return len(self.labels) > 0


@dataclass(frozen=True)
class Commit:
    operation: Operation
    collection: str
    rkey: str
    rev: str = ""
    cid: str = ""
    record: Optional[ProfileRecord] = None


@dataclass(frozen=True)
class CommitEvent:
    """One decoded Jetstream envelope."""

    did: str
    time_us: int
    kind: EventKind
    kind_raw: str
    commit: Optional[Commit] = None

    @property
    def is_actionable(self) -> bool:
        """True when the event should reach the normalizer and matcher."""
        if self.kind is not EventKind.COMMIT or self.commit is None:
            return False
        if self.commit.collection != PROFILE_COLLECTION:
            return False
        record = self.commit.record
        return record is not None and not record.is_labeled


Payload = Union[str, bytes, None]


@dataclass(frozen=True)
class DecodeResult:
    event: Optional[CommitEvent] = None
    error: Optional[str] = None
    # Kept for diagnostics only; never re-parsed.
    payload: Payload = None

    @property
    def ok(self) -> bool:
        return self.event is not None

    @property
    def actionable(self) -> bool:
        return self.event is not None and self.event.is_actionable


@dataclass(frozen=True)
class WatchedIdentity:
    canonical_key: str
    display_name: str
    excepted_dids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Verdict:
    should_block: bool
    matched_key: str = ""
    reason: str = "no_match"


@dataclass(frozen=True)
class BlockAction:
    subject_did: str
    list_uri: str
    created_at: str

    def to_record(self) -> dict[str, Any]:
        return {
            "$type": LISTITEM_COLLECTION,
            "subject": self.subject_did,
            "list": self.list_uri,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    subject_did: str
    uri: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass(frozen=True)
class PipelineOutcome:
    status: str
    did: Optional[str] = None
    verdict: Optional[Verdict] = None
    details: dict[str, Any] = field(default_factory=dict)
