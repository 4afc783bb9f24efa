"""
Pydantic models for mail routing and the sovereign decay inbox.

Models:
  IdentityState     : on-chain classification of a name
  Channel           : delivery channel recorded on every stored message
  MessageMetadata   : trust flags attached to a stored message
  MessageEnvelope   : a stored message (KV record body)
  SendMessageRequest: direct JSON ingestion body ({from, to, ...})
  A2ARequest        : agent-to-agent fast-path request body
  RoutingResult     : outcome of routing one inbound message
  InboxResponse     : GET /inbox/{identity}
  PurgeRequest / PurgeResponse: sovereign erasure
  AgentStatus       : GET /status/{identity}
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator

from app.models.calendar import CalendarEvent


class IdentityState(str, Enum):
    NONE = "NONE"
    AGENT = "AGENT"
    HUMAN = "HUMAN"


class Channel(str, Enum):
    INTERNAL_FASTPATH = "internal-fastpath"
    EXTERNAL = "external"
    RELAY = "relay"


class MessageMetadata(BaseModel):
    """
    Trust flags for a stored message.

    is_internal is only ever true for the agent-to-agent fast path; use the
    classmethod constructors rather than setting the flags by hand.
    """
    is_internal: bool = False
    is_verified: bool = False
    channel: Channel = Channel.EXTERNAL
    sender_identity: Optional[str] = None
    recipient_identity: Optional[str] = None

    @model_validator(mode="after")
    def _internal_only_on_fast_path(self) -> "MessageMetadata":
        if self.is_internal and self.channel != Channel.INTERNAL_FASTPATH:
            raise ValueError("is_internal requires the internal-fastpath channel")
        return self

    @classmethod
    def fast_path(cls, sender: str, recipient: str) -> "MessageMetadata":
        return cls(
            is_internal=True,
            is_verified=True,
            channel=Channel.INTERNAL_FASTPATH,
            sender_identity=sender,
            recipient_identity=recipient,
        )

    @classmethod
    def external(cls, recipient: str) -> "MessageMetadata":
        return cls(channel=Channel.EXTERNAL, recipient_identity=recipient)

    @classmethod
    def relay(cls, recipient: str) -> "MessageMetadata":
        return cls(channel=Channel.RELAY, recipient_identity=recipient)


class MessageEnvelope(MessageMetadata):
    """A message as stored in the decay inbox (one KV record)."""
    id: str
    sender: str
    recipient: str
    subject: str = ""
    content: str = ""
    timestamp: datetime      # origination time
    received_at: datetime    # ingestion time


class SendMessageRequest(BaseModel):
    """
    Body for POST /api/mail/send.

    Accepts the wire names ``from``/``to`` as well as ``sender``/``recipient``.
    """
    sender: str = Field(validation_alias=AliasChoices("from", "sender"))
    recipient: str = Field(validation_alias=AliasChoices("to", "recipient"))
    subject: str = ""
    content: str = ""
    timestamp: Optional[datetime] = None


class A2ARequest(BaseModel):
    """Body for POST /api/mail/a2a and POST /api/mail/waku-route."""
    from_agent: str
    to_agent: str
    subject: str = ""
    content: str = ""


class RoutingResult(BaseModel):
    """
    Outcome of routing one inbound message.

    status:
      stored       written to the recipient's decay inbox
      relayed      handed to the hosted mail provider
      quarantined  rerouted to the quarantine mailbox (not an error)
      pinned       written to the content-addressed store
    """
    status: str
    tier: Optional[str] = None
    identity: str
    message_id: Optional[str] = None
    decay_days: Optional[int] = None
    channel: Channel
    is_internal: bool = False
    is_verified: bool = False
    sender_identity: Optional[str] = None
    recipient_identity: Optional[str] = None
    destination: Optional[str] = None
    cid: Optional[str] = None


class InboxResponse(BaseModel):
    identity: str
    tier: str
    messages: list[MessageEnvelope] = []
    count: int = 0
    decay_days: int


class PurgeRequest(BaseModel):
    """
    Sovereign kill-switch body.

    The signature is verified upstream (owner Safe signature); this service
    only requires that one was supplied.
    """
    signature: Optional[str] = None


class PurgeResponse(BaseModel):
    identity: str
    purged: bool = True
    deleted: int


# ---------------------------------------------------------------------------
# Status report
# ---------------------------------------------------------------------------

class MessageSummary(BaseModel):
    id: str
    sender: str
    subject: str
    timestamp: datetime
    is_internal: bool
    is_verified: bool
    channel: Channel


class InboxStatus(BaseModel):
    count: int
    last_message: Optional[MessageSummary] = None


class CalendarStatus(BaseModel):
    count: int
    next_event: Optional[CalendarEvent] = None
    upcoming_events: list[CalendarEvent] = []


class HeartbeatStatus(BaseModel):
    last_beat: Optional[datetime] = None
    is_active: bool = False
    next_scheduled: Optional[datetime] = None


class AgentStatus(BaseModel):
    identity: str
    tier: str
    surge_score: float
    inbox: InboxStatus
    calendar: CalendarStatus
    heartbeat: HeartbeatStatus


def utcnow() -> datetime:
    """Timezone-aware current time; every stored timestamp is UTC."""
    return datetime.now(timezone.utc)
