"""
Agent status report tests.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from app.models.calendar import CalendarEvent, CalendarInvite, EventType
from app.models.inbound_email import InboundMessage
from app.models.mail import MessageMetadata
from app.services.decay_store import DecayStore
from app.services.kv_store import InMemoryKVStore
from app.services.scheduler import Scheduler
from app.services.scorer import ReputationScorer
from app.services.status_report import build_status
from app.services.tiers import Tier, TierSelector

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_components():
    oracle = AsyncMock()
    scorer = ReputationScorer(oracle)
    decay_store = DecayStore(InMemoryKVStore())
    scheduler = Scheduler(kv=InMemoryKVStore(), scorer=scorer, mail_router=AsyncMock())
    return decay_store, scheduler, scorer


async def _deliver(decay_store: DecayStore, subject: str, at: datetime) -> None:
    message = InboundMessage(
        sender="beta_@nftmail.box",
        recipient="alpha_@nftmail.box",
        subject=subject,
        content="...",
        timestamp=at,
    )
    await decay_store.append("alpha", message, MessageMetadata.fast_path("beta", "alpha"))


async def _schedule(scheduler: Scheduler, event_type: EventType, start: datetime, event_id: str) -> None:
    event = CalendarEvent(
        id=event_id,
        type=event_type,
        title=event_id,
        start_time=start,
        end_time=start + timedelta(minutes=5),
        participants=["alpha"],
    )
    await scheduler.schedule_event(CalendarInvite(event=event, sender="beta", to=["alpha"]))


class TestBuildStatus:
    @pytest.mark.asyncio
    async def test_empty_identity(self):
        decay_store, scheduler, scorer = _make_components()

        status = await build_status("alpha", decay_store, scheduler, scorer, now=NOW)

        assert status.identity == "alpha"
        assert status.tier == "swarm"
        assert status.surge_score == 1.0
        assert status.inbox.count == 0
        assert status.inbox.last_message is None
        assert status.calendar.count == 0
        assert status.heartbeat.is_active is False
        assert status.heartbeat.last_beat is None

    @pytest.mark.asyncio
    async def test_recent_heartbeat_is_active(self):
        decay_store, scheduler, scorer = _make_components()
        await _deliver(decay_store, "Heartbeat OK", NOW - timedelta(hours=2))
        await _deliver(decay_store, "status update", NOW - timedelta(hours=1))

        status = await build_status("alpha", decay_store, scheduler, scorer, now=NOW)

        assert status.inbox.count == 2
        assert status.inbox.last_message.subject == "status update"
        assert status.inbox.last_message.is_internal is True
        assert status.heartbeat.last_beat == NOW - timedelta(hours=2)
        assert status.heartbeat.is_active is True

    @pytest.mark.asyncio
    async def test_stale_heartbeat_is_inactive(self):
        decay_store, scheduler, scorer = _make_components()
        await _deliver(decay_store, "heartbeat", NOW - timedelta(hours=25))

        status = await build_status("alpha", decay_store, scheduler, scorer, now=NOW)

        assert status.heartbeat.last_beat is not None
        assert status.heartbeat.is_active is False

    @pytest.mark.asyncio
    async def test_calendar_summary_and_next_heartbeat(self):
        decay_store, scheduler, scorer = _make_components()
        for hours in range(1, 5):
            event_type = EventType.HEARTBEAT if hours == 1 else EventType.TASK
            await _schedule(scheduler, event_type, NOW + timedelta(hours=hours), f"ev-{hours}")

        status = await build_status("alpha", decay_store, scheduler, scorer, now=NOW)

        assert status.calendar.count == 4
        assert [e.id for e in status.calendar.upcoming_events] == ["ev-1", "ev-2", "ev-3"]
        assert status.calendar.next_event.id == "ev-1"
        assert status.heartbeat.next_scheduled == NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_next_event_not_heartbeat(self):
        decay_store, scheduler, scorer = _make_components()
        await _schedule(scheduler, EventType.SYNC, NOW + timedelta(hours=1), "sync")

        status = await build_status("alpha", decay_store, scheduler, scorer, now=NOW)

        assert status.heartbeat.next_scheduled is None

    @pytest.mark.asyncio
    async def test_tier_from_selector(self):
        decay_store, scheduler, scorer = _make_components()
        status = await build_status(
            "alpha", decay_store, scheduler, scorer,
            tier_selector=TierSelector(default=Tier.STANDARD), now=NOW,
        )
        assert status.tier == "standard"
