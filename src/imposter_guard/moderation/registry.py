from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from ..constants import DEFAULT_WATCHED_IDENTITIES
from ..errors import RegistryConfigError
from .models import WatchedIdentity
from .normalizer import normalize

log = logging.getLogger("imposter_guard.registry")


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str


class ImpersonationRegistry:
    """Immutable canonical-key -> WatchedIdentity lookup.

    Built once at startup by ``compile_registry``; there is no mutation API.
    """

    __slots__ = ("_entries", "fingerprint")

    def __init__(self, entries: Mapping[str, WatchedIdentity], fingerprint: str = "") -> None:
        self._entries = MappingProxyType(dict(entries))
        self.fingerprint = fingerprint

    def get(self, canonical_key: str) -> Optional[WatchedIdentity]:
        return self._entries.get(canonical_key)

    def __contains__(self, canonical_key: object) -> bool:
        return canonical_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WatchedIdentity]:
        return iter(self._entries.values())

    def keys(self) -> list[str]:
        return sorted(self._entries)


def _fingerprint(table: Mapping[str, Any]) -> str:
    h = hashlib.sha256(json.dumps(table, sort_keys=True, default=repr).encode("utf-8")).hexdigest()
    return h[:16]


def validate_table(table: Any) -> list[ValidationIssue]:
    """Validate a name -> exception-DIDs table. Returns issues; empty means valid."""
    if not isinstance(table, Mapping):
        return [ValidationIssue(path="$", message="table must be an object of name -> [did, ...]")]

    issues: list[ValidationIssue] = []
    seen: dict[str, str] = {}
    for name, dids in table.items():
        pfx = f"$[{name!r}]"
        if not isinstance(name, str):
            issues.append(ValidationIssue(path=pfx, message="name must be a string"))
            continue
        key = normalize(name)
        if not key:
            issues.append(ValidationIssue(path=pfx, message="name normalizes to an empty key"))
        elif key in seen:
            issues.append(
                ValidationIssue(path=pfx, message=f"duplicate canonical key {key!r} (also from {seen[key]!r})")
            )
        else:
            seen[key] = name

        if dids is None:
            continue
        if not isinstance(dids, (list, tuple, set, frozenset)):
            issues.append(ValidationIssue(path=pfx, message="exceptions must be a list of DIDs"))
            continue
        for i, did in enumerate(dids):
            if not isinstance(did, str) or not did.startswith("did:"):
                issues.append(ValidationIssue(path=f"{pfx}[{i}]", message="exception must be a DID string"))
    return issues


def compile_registry(table: Mapping[str, Any]) -> ImpersonationRegistry:
    issues = validate_table(table)
    if issues:
        raise RegistryConfigError(issues)

    entries: dict[str, WatchedIdentity] = {}
    for name, dids in table.items():
        key = normalize(name)
        entries[key] = WatchedIdentity(
            canonical_key=key,
            display_name=name,
            excepted_dids=frozenset(dids or ()),
        )
    return ImpersonationRegistry(entries, fingerprint=_fingerprint(table))


def load_registry(path: Optional[str] = None) -> ImpersonationRegistry:
    """Build the registry from ``path`` (JSON) or from the built-in table."""
    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                table = json.load(f)
        except (OSError, ValueError) as e:
            raise RegistryConfigError([ValidationIssue(path=path, message=f"cannot read table: {e}")]) from e
        source = path
    else:
        table = DEFAULT_WATCHED_IDENTITIES
        source = "built-in"

    registry = compile_registry(table)
    log.info(
        "Loaded %d watched identities from %s (fingerprint=%s)",
        len(registry),
        source,
        registry.fingerprint,
    )
    return registry
