"""
Sovereign decay inbox.

Per identity, the store keeps:

  index:<identity>          JSON list of message ids, oldest first, at most N
  msg:<identity>:<msg_id>   JSON MessageEnvelope

Every record is written with the decay TTL (default 8 days); the TTL is
attached at write time, so each append refreshes the index TTL and gives the
new body its own lifetime. Eviction past N is index-only: evicted bodies are
left to expire on their own.

Consistency: appends to the same identity are not serialized. Two concurrent
appends can both read the old index and the later write wins, dropping one id
from the visible index while that body still exists and decays normally.
"""

import asyncio
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from pydantic import ValidationError

from app.models.inbound_email import InboundMessage
from app.models.mail import MessageEnvelope, MessageMetadata
from app.services.kv_store import KVStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 8 * 24 * 60 * 60
DEFAULT_MAX_MESSAGES = 50


def generate_message_id(clock: Callable[[], float] = time.time) -> str:
    """Time-ordered unique id: ``<epoch-ms>-<8 hex>``."""
    return f"{int(clock() * 1000)}-{uuid4().hex[:8]}"


def index_key(identity: str) -> str:
    return f"index:{identity}"


def message_key(identity: str, message_id: str) -> str:
    return f"msg:{identity}:{message_id}"


class DecayStore:
    def __init__(
        self,
        kv: KVStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        clock: Callable[[], float] = time.time,
    ):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1")
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self._clock = clock

    @classmethod
    def from_env(cls, kv: KVStore) -> "DecayStore":
        return cls(
            kv,
            ttl_seconds=int(os.getenv("DECAY_TTL_SECONDS") or DEFAULT_TTL_SECONDS),
            max_messages=int(os.getenv("MAX_INBOX_MESSAGES") or DEFAULT_MAX_MESSAGES),
        )

    @property
    def decay_days(self) -> int:
        return self.ttl_seconds // (24 * 60 * 60)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def read_index(self, identity: str) -> list[str]:
        """Message ids for ``identity``, oldest first. Missing or corrupt -> []."""
        raw = await self.kv.get(index_key(identity))
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt inbox index for {identity!r}; starting fresh")
            return []
        if not isinstance(ids, list):
            return []
        return [str(i) for i in ids]

    async def append(
        self,
        identity: str,
        message: InboundMessage,
        metadata: MessageMetadata,
    ) -> MessageEnvelope:
        """Store ``message`` in ``identity``'s inbox and return the stored envelope."""
        now = self._now()
        timestamp = message.timestamp or now
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        envelope = MessageEnvelope(
            id=generate_message_id(self._clock),
            sender=message.sender,
            recipient=message.recipient,
            subject=message.subject,
            content=message.content,
            timestamp=timestamp,
            received_at=now,
            **metadata.model_dump(),
        )

        await self.kv.put(
            message_key(identity, envelope.id),
            envelope.model_dump_json(),
            self.ttl_seconds,
        )

        index = await self.read_index(identity)
        index.append(envelope.id)
        if len(index) > self.max_messages:
            index = index[-self.max_messages:]

        await self.kv.put(index_key(identity), json.dumps(index), self.ttl_seconds)

        logger.info(
            f"Stored message {envelope.id} for {identity!r} "
            f"(channel={envelope.channel.value}, index={len(index)})"
        )
        return envelope

    async def _fetch(self, identity: str, message_id: str) -> Optional[MessageEnvelope]:
        raw = await self.kv.get(message_key(identity, message_id))
        if raw is None:
            # Already decayed
            return None
        try:
            return MessageEnvelope.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Skipping corrupt message {message_id} for {identity!r}")
            return None

    async def list_messages(self, identity: str) -> list[MessageEnvelope]:
        """
        Best-effort view of the inbox, newest first.

        Ties on timestamp are broken by append order (later append first).
        """
        index = await self.read_index(identity)
        if not index:
            return []

        fetched = await asyncio.gather(*(self._fetch(identity, mid) for mid in index))
        present = [(pos, env) for pos, env in enumerate(fetched) if env is not None]
        present.sort(key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        return [env for _, env in present]

    async def recent(self, identity: str, limit: int) -> list[MessageEnvelope]:
        return (await self.list_messages(identity))[:limit]

    async def purge(self, identity: str) -> int:
        """
        Sovereign erasure: delete every referenced body and the index.

        Returns the number of bodies actually deleted (already-decayed ones
        do not count).
        """
        index = await self.read_index(identity)
        deleted = await asyncio.gather(
            *(self.kv.delete(message_key(identity, mid)) for mid in index)
        )
        await self.kv.delete(index_key(identity))
        count = sum(1 for d in deleted if d)
        logger.info(f"Purged inbox for {identity!r}: {count} message(s) deleted")
        return count
