"""
Waku content-topic derivation for metadata-private agent messaging.

Topics look like ``/nftmail/1/<kind>-<id>/proto``. Direct and group topics
hash the sorted, lowercased participant names with 32-bit FNV-1a so every
participant derives the same topic regardless of who initiates.
"""

import time
from typing import Optional

from pydantic import BaseModel

CONTENT_TOPIC_PREFIX = "/nftmail/1"

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619


def fnv1a_32(text: str) -> str:
    """8-hex-char FNV-1a hash over the UTF-16 code units of ``text``."""
    value = _FNV_OFFSET
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        value ^= encoded[i] | (encoded[i + 1] << 8)
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return f"{value:08x}"


def _participants_hash(names: list[str]) -> str:
    return fnv1a_32(":".join(sorted(n.lower() for n in names)))


def build_direct_message_topic(peer_a: str, peer_b: str) -> str:
    return f"{CONTENT_TOPIC_PREFIX}/dm-{_participants_hash([peer_a, peer_b])}/proto"


def build_broadcast_topic(agent: str) -> str:
    return f"{CONTENT_TOPIC_PREFIX}/broadcast-{agent.lower()}/proto"


def build_group_topic(participants: list[str]) -> str:
    return f"{CONTENT_TOPIC_PREFIX}/group-{_participants_hash(participants)}/proto"


class WakuEnvelope(BaseModel):
    content_topic: str
    payload: str          # already encrypted by the sender
    timestamp: int        # epoch ms
    ephemeral: bool       # True: relay nodes should not persist it
    version: int = 1


def create_waku_envelope(
    from_agent: str,
    to_agent: str,
    payload: str,
    ephemeral: bool = True,
    timestamp_ms: Optional[int] = None,
) -> WakuEnvelope:
    return WakuEnvelope(
        content_topic=build_direct_message_topic(from_agent, to_agent),
        payload=payload,
        timestamp=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        ephemeral=ephemeral,
    )
