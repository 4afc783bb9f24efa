"""
Pydantic models for the Ghost-Calendar scheduler.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from app.services.identity import normalize_identity


class EventType(str, Enum):
    SYNC = "SYNC"
    TASK = "TASK"
    HEARTBEAT = "HEARTBEAT"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CalendarEvent(BaseModel):
    """
    A calendar event. Stored once under ``event:<id>`` and referenced from
    every participant's ``events:<identity>`` index.
    """
    id: Optional[str] = None
    type: EventType
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    participants: list[str] = []
    status: EventStatus = EventStatus.SCHEDULED
    heartbeat_verified: Optional[bool] = None
    surge_score: Optional[float] = None
    metadata: dict[str, Any] = {}

    @field_validator("participants")
    @classmethod
    def _dedupe_participants(cls, value: list[str]) -> list[str]:
        # Addresses collapse to canonical names; keep first-seen order
        seen: set = set()
        out: list[str] = []
        for name in value:
            canonical = normalize_identity(name)
            if canonical and canonical not in seen:
                seen.add(canonical)
                out.append(canonical)
        return out


class CalendarInvite(BaseModel):
    """Body for POST /api/calendar/events."""
    type: str = "INVITE"
    event: CalendarEvent
    sender: str = Field(alias="from")
    to: list[str]
    message: Optional[str] = None

    model_config = {"populate_by_name": True}


class SurgeScore(BaseModel):
    identity: str
    score: float


class SurgeMetadata(BaseModel):
    participant_scores: list[SurgeScore]
    average_score: float
    max_score: float
    priority: float


class ScheduleResult(BaseModel):
    """
    Response for scheduleEvent.

    Fan-out legs are best effort: a failed participant index write or a failed
    invite does not fail the request, it shows up in the counts and in
    ``failed_participants`` / ``failed_invites``.
    """
    status: str = "scheduled"
    event: CalendarEvent
    participants_requested: int
    participants_indexed: int
    invites_requested: int
    invites_sent: int
    failed_participants: list[str] = []
    failed_invites: list[str] = []


class CalendarView(BaseModel):
    identity: str
    events: list[CalendarEvent] = []
    next_event: Optional[CalendarEvent] = None
    count: int = 0


class StatusUpdateRequest(BaseModel):
    status: EventStatus
