"""
Ghost-Calendar scheduler.

Keys (calendar KV namespace):

  event:<event_id>       JSON CalendarEvent, the single source of truth
  events:<identity>      JSON list of event ids the identity participates in

scheduleEvent writes the event record once, then fans out to every
participant index and finally sends a Ghost-Wire invite to every invitee.
Fan-out legs are best effort: a failed leg is logged and counted in the
result, it does not fail the request and earlier legs are not rolled back.
Participant indices are secondary references; a stale index entry whose
event record is gone is skipped on read. Each rewrite of an index drops
entries whose record is gone and closed events that have already ended.
"""

import asyncio
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from app.models.calendar import (
    CalendarEvent,
    CalendarInvite,
    CalendarView,
    EventStatus,
    ScheduleResult,
)
from app.services.decay_store import generate_message_id
from app.services.errors import EventNotFoundError, InvalidTransitionError
from app.services.identity import normalize_identity
from app.services.kv_store import KVStore
from app.services.scorer import ReputationScorer

logger = logging.getLogger(__name__)

# Allowed status transitions
_TRANSITIONS = {
    EventStatus.SCHEDULED: {EventStatus.COMPLETED, EventStatus.CANCELLED},
}
_CLOSED = {EventStatus.COMPLETED, EventStatus.CANCELLED}


def event_key(event_id: str) -> str:
    return f"event:{event_id}"


def events_key(identity: str) -> str:
    return f"events:{identity}"


def get_calendar_ttl_seconds() -> Optional[int]:
    raw = os.getenv("CALENDAR_TTL_SECONDS")
    return int(raw) if raw else None


class Scheduler:
    def __init__(
        self,
        kv: KVStore,
        scorer: ReputationScorer,
        mail_router,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv
        self.scorer = scorer
        self.mail_router = mail_router
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def _read_event_ids(self, identity: str) -> list[str]:
        raw = await self.kv.get(events_key(identity))
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt calendar index for {identity!r}; starting fresh")
            return []
        return [str(i) for i in ids] if isinstance(ids, list) else []

    async def _write_event(self, event: CalendarEvent) -> None:
        await self.kv.put(event_key(event.id), event.model_dump_json(), self.ttl_seconds)

    async def _index_for(self, identity: str, event_id: str) -> None:
        ids = await self._read_event_ids(identity)
        ids = await self._prune_event_ids(ids, keep=event_id)
        if event_id not in ids:
            ids.append(event_id)
        await self.kv.put(events_key(identity), json.dumps(ids), self.ttl_seconds)

    async def _prune_event_ids(self, ids: list[str], keep: str) -> list[str]:
        """Drop ids whose record is gone or whose event is closed and over."""
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        fetched = await asyncio.gather(*(self.get_event(i) for i in ids if i != keep))
        live = {
            e.id for e in fetched
            if e is not None and not (e.status in _CLOSED and _aware(e.end_time) <= now)
        }
        return [i for i in ids if i == keep or i in live]

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        raw = await self.kv.get(event_key(event_id))
        if raw is None:
            return None
        try:
            return CalendarEvent.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Skipping corrupt calendar event {event_id}")
            return None

    async def schedule_event(self, invite: CalendarInvite) -> ScheduleResult:
        event = invite.event.model_copy(deep=True)
        if not event.id:
            event.id = generate_message_id()

        surge = await self.scorer.surge_metadata(event.participants)
        event.surge_score = surge.priority
        event.metadata = {**event.metadata, **surge.model_dump()}

        await self._write_event(event)

        # Participant index fan-out
        index_results = await asyncio.gather(
            *(self._index_for(p, event.id) for p in event.participants),
            return_exceptions=True,
        )
        failed_participants = []
        for participant, outcome in zip(event.participants, index_results):
            if isinstance(outcome, Exception):
                logger.warning(
                    f"Failed to index event {event.id} for {participant!r}: {outcome!r}"
                )
                failed_participants.append(participant)

        # Ghost-Wire invites
        sender = normalize_identity(invite.sender)
        invitees = [normalize_identity(name) for name in invite.to]
        body = json.dumps({
            "type": "INVITE",
            "event": event.model_dump(mode="json"),
            "message": invite.message,
        })
        subject = f"[CALENDAR] {event.type.value}: {event.title}"
        invite_results = await asyncio.gather(
            *(self.mail_router.send_a2a(sender, name, subject, body) for name in invitees),
            return_exceptions=True,
        )
        failed_invites = []
        for name, outcome in zip(invitees, invite_results):
            if isinstance(outcome, Exception):
                logger.warning(f"Failed to send invite for {event.id} to {name!r}: {outcome!r}")
                failed_invites.append(name)

        logger.info(
            f"Scheduled event {event.id} ({event.type.value}) priority={event.surge_score:.2f} "
            f"participants={len(event.participants)} invites={len(invitees) - len(failed_invites)}"
        )
        return ScheduleResult(
            event=event,
            participants_requested=len(event.participants),
            participants_indexed=len(event.participants) - len(failed_participants),
            invites_requested=len(invitees),
            invites_sent=len(invitees) - len(failed_invites),
            failed_participants=failed_participants,
            failed_invites=failed_invites,
        )

    async def get_calendar(self, identity: str, now: Optional[datetime] = None) -> CalendarView:
        """
        Events for ``identity`` that are still relevant: end time in the future
        or still SCHEDULED. Sorted by start time, with the next SCHEDULED event
        that has not started yet.
        """
        now = now or datetime.now(timezone.utc)
        ids = await self._read_event_ids(identity)
        fetched = await asyncio.gather(*(self.get_event(i) for i in ids))

        events = [
            e for e in fetched
            if e is not None and (_aware(e.end_time) > now or e.status == EventStatus.SCHEDULED)
        ]
        events.sort(key=lambda e: _aware(e.start_time))

        next_event = next(
            (e for e in events if e.status == EventStatus.SCHEDULED and _aware(e.start_time) > now),
            None,
        )
        return CalendarView(identity=identity, events=events, next_event=next_event, count=len(events))

    async def update_event_status(self, event_id: str, status: EventStatus) -> CalendarEvent:
        event = await self.get_event(event_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")

        allowed = _TRANSITIONS.get(event.status, set())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Cannot move event {event_id} from {event.status.value} to {status.value}"
            )

        event.status = status
        await self._write_event(event)
        logger.info(f"Event {event_id} is now {status.value}")
        return event


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
