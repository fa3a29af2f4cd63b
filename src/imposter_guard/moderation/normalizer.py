from __future__ import annotations

# Zero-width no-break space (BOM); str.isspace() does not cover it.
_EXTRA_SPACE = frozenset({"\ufeff"})


def normalize(display_name: str) -> str:
    """Canonical comparison key: lower-cased, all Unicode whitespace removed.

    Total and idempotent. Non-string input (a missing name) maps to ``""``.
    """
    if not isinstance(display_name, str):
        return ""
    return "".join(ch for ch in display_name.lower() if not (ch.isspace() or ch in _EXTRA_SPACE))
