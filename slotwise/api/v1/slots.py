from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from slotwise.core.config import DEFAULT_TIMEZONE, MAX_SLOT_RANGE_DAYS
from slotwise.core.database import get_db
from slotwise.core.errors import ConfigurationError, EventTypeNotFound
from slotwise.scheduling.intervals import TimeWindow, day_bounds_utc, load_zone
from slotwise.services.slot_service import SlotService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slots"])


def _parse_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}; expected YYYY-MM-DD")


@router.get("/slots")
async def list_slots(
    event_type_id: str,
    start: str = Query(..., description="First civil date (attendee timezone), YYYY-MM-DD"),
    end: str = Query(..., description="Last civil date (attendee timezone), inclusive"),
    timezone: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Bookable slots of an event type, grouped by the attendee's local date."""
    first = _parse_date(start, "start")
    last = _parse_date(end, "end")
    if last < first:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if (last - first).days + 1 > MAX_SLOT_RANGE_DAYS:
        raise HTTPException(status_code=400, detail=f"Date range is limited to {MAX_SLOT_RANGE_DAYS} days")

    timezone = timezone or DEFAULT_TIMEZONE
    try:
        zone = load_zone(timezone)
    except ConfigurationError as e:
        # Attendee input, not operator configuration
        raise HTTPException(status_code=400, detail=str(e))

    window = TimeWindow(day_bounds_utc(first, zone).start, day_bounds_utc(last, zone).end)
    service = SlotService(db)
    try:
        slots = await service.list_slots(event_type_id, window, timezone)
    except EventTypeNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        logger.error(f"Slot listing misconfigured for event type {event_type_id}: {e}")
        raise HTTPException(status_code=500, detail="Event type is misconfigured")

    grouped: Dict[str, List[Dict[str, Any]]] = OrderedDict()
    for slot in slots:
        local_day = slot.start.astimezone(zone).date().isoformat()
        grouped.setdefault(local_day, []).append(
            {
                "start": slot.start.isoformat(),
                "end": slot.end.isoformat(),
                "time": slot.local_time,
                "hosts": list(slot.free_host_ids),
            }
        )

    return {
        "event_type_id": event_type_id,
        "timezone": timezone,
        "count": len(slots),
        "slots": grouped,
    }
