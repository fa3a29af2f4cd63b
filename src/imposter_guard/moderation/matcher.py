from __future__ import annotations

from .models import Verdict
from .registry import ImpersonationRegistry


def match(did: str, canonical_key: str, registry: ImpersonationRegistry) -> Verdict:
    """Evaluate one account against the registry.

    Exact key lookup only. An entry's exception set holds the DIDs that
    legitimately own the name; those never produce a block.
    """
    if not canonical_key:
        return Verdict(should_block=False, reason="empty_name")

    entry = registry.get(canonical_key)
    if entry is None:
        return Verdict(should_block=False, reason="no_match")

    if did in entry.excepted_dids:
        return Verdict(should_block=False, matched_key=entry.canonical_key, reason="excepted")

    return Verdict(should_block=True, matched_key=entry.canonical_key, reason="matched")
