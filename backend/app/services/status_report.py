"""
Agent status report: one call for the dashboard card.

Combines the decay inbox, the calendar, the $SURGE score and heartbeat
activity. The heartbeat is the newest inbox message whose subject mentions
"heartbeat"; an agent is active when that beat is less than 24 hours old.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.models.calendar import EventType
from app.models.mail import (
    AgentStatus,
    CalendarStatus,
    HeartbeatStatus,
    InboxStatus,
    MessageSummary,
)
from app.services.decay_store import DecayStore
from app.services.scheduler import Scheduler
from app.services.scorer import ReputationScorer
from app.services.tiers import TierSelector

HEARTBEAT_WINDOW = timedelta(hours=24)
UPCOMING_EVENTS = 3


async def build_status(
    identity: str,
    decay_store: DecayStore,
    scheduler: Scheduler,
    scorer: ReputationScorer,
    tier_selector: Optional[TierSelector] = None,
    now: Optional[datetime] = None,
) -> AgentStatus:
    now = now or datetime.now(timezone.utc)
    tier_selector = tier_selector or TierSelector()

    messages, calendar, score = await asyncio.gather(
        decay_store.list_messages(identity),
        scheduler.get_calendar(identity, now=now),
        scorer.score_identity(identity),
    )

    last = messages[0] if messages else None
    last_message = None
    if last is not None:
        last_message = MessageSummary(
            id=last.id,
            sender=last.sender,
            subject=last.subject,
            timestamp=last.timestamp,
            is_internal=last.is_internal,
            is_verified=last.is_verified,
            channel=last.channel,
        )

    last_beat = next(
        (m.timestamp for m in messages if "heartbeat" in (m.subject or "").lower()),
        None,
    )
    next_event = calendar.next_event
    next_heartbeat = None
    if next_event is not None and next_event.type == EventType.HEARTBEAT:
        next_heartbeat = next_event.start_time

    return AgentStatus(
        identity=identity,
        tier=tier_selector.select(identity).value,
        surge_score=score,
        inbox=InboxStatus(count=len(messages), last_message=last_message),
        calendar=CalendarStatus(
            count=calendar.count,
            next_event=next_event,
            upcoming_events=calendar.events[:UPCOMING_EVENTS],
        ),
        heartbeat=HeartbeatStatus(
            last_beat=last_beat,
            is_active=last_beat is not None and now - last_beat < HEARTBEAT_WINDOW,
            next_scheduled=next_heartbeat,
        ),
    )
