from __future__ import annotations

SERVICE_NAME = "imposter-guard"

PROFILE_COLLECTION = "app.bsky.actor.profile"
LISTITEM_COLLECTION = "app.bsky.graph.listitem"

DEFAULT_JETSTREAM_URL = "wss://jetstream2.us-east.bsky.network/subscribe"
DEFAULT_SERVICE_URL = "https://bsky.social"

# Display name -> DIDs that legitimately own that name.
DEFAULT_WATCHED_IDENTITIES: dict[str, list[str]] = {
    "Elon Musk": [],
    "Jack Mallers": ["did:plc:l4q3e43f3wt2zzbsfebubb2g"],
    "Vitalik Buterin": [],
    "Mark Cuban": ["did:plc:y5xyloyy7s4a2bwfeimj7r3b"],
}

# Cap on payload bytes echoed into diagnostic logs.
LOG_PAYLOAD_LIMIT = 512

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
