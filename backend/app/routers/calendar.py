"""
Ghost-Calendar API endpoints.

  POST /events                     : schedule an event from an invite
  GET  /{identity}                 : relevant events + next event
  POST /events/{event_id}/status   : SCHEDULED -> COMPLETED / CANCELLED
"""

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_scheduler
from app.models.calendar import (
    CalendarEvent,
    CalendarInvite,
    CalendarView,
    ScheduleResult,
    StatusUpdateRequest,
)
from app.services.identity import normalize_identity
from app.services.scheduler import Scheduler

router = APIRouter()


@router.post("/events", response_model=ScheduleResult)
async def schedule_event(
    invite: CalendarInvite,
    scheduler: Scheduler = Depends(get_scheduler),
) -> ScheduleResult:
    """
    Store the event under every participant and send Ghost-Wire invites.

    Partial fan-out failures are reported in the response counts; the request
    still succeeds.
    """
    if not invite.sender or not invite.to:
        raise HTTPException(status_code=400, detail="Missing invite data")
    if not invite.event.participants:
        raise HTTPException(status_code=400, detail="Event has no participants")
    return await scheduler.schedule_event(invite)


@router.get("/{identity}", response_model=CalendarView)
async def get_calendar(
    identity: str,
    scheduler: Scheduler = Depends(get_scheduler),
) -> CalendarView:
    name = normalize_identity(identity)
    if not name:
        raise HTTPException(status_code=400, detail="Missing identity name")
    return await scheduler.get_calendar(name)


@router.post("/events/{event_id}/status", response_model=CalendarEvent)
async def update_event_status(
    event_id: str,
    body: StatusUpdateRequest,
    scheduler: Scheduler = Depends(get_scheduler),
) -> CalendarEvent:
    return await scheduler.update_event_status(event_id, body.status)
