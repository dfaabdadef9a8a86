from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from slotwise.core.database import get_db
from slotwise.core.errors import (
    BookingNotFound,
    ConfigurationError,
    EventTypeNotFound,
    InvalidTransition,
    SchedulingError,
)
from slotwise.models import Booking
from slotwise.scheduling.intervals import load_zone
from slotwise.services.booking_service import (
    AttendeeInfo,
    BookingResult,
    BookingService,
    BookingStatus,
    CancelScope,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


class _BaseArgs(BaseModel):
    class Config:
        extra = "ignore"


class AttendeeArgs(_BaseArgs):
    name: str
    email: str
    timezone: str = "UTC"
    notes: Optional[str] = None


class CreateBookingArgs(_BaseArgs):
    event_type_id: str
    start: datetime
    attendee: AttendeeArgs
    recurring_count: Optional[int] = None
    all_or_nothing: bool = False


class CancelBookingArgs(_BaseArgs):
    scope: CancelScope = CancelScope.ONE
    reason: Optional[str] = None


class RejectBookingArgs(_BaseArgs):
    reason: Optional[str] = None


class RescheduleBookingArgs(_BaseArgs):
    start: datetime
    reason: Optional[str] = None


def _booking_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "id": str(booking.id),
        "uid": booking.uid,
        "event_type_id": str(booking.event_type_id),
        "host_id": str(booking.host_id),
        "start": booking.start_time.isoformat(),
        "end": booking.end_time.isoformat(),
        "status": booking.status,
        "recurring_series_id": booking.recurring_series_id,
        "rescheduled_from_uid": booking.rescheduled_from_uid,
        "cancellation_reason": booking.cancellation_reason,
    }


def _result_payload(result: BookingResult) -> Dict[str, Any]:
    return {
        "status": result.status.value,
        "booking_id": result.booking_id,
        "assigned_host_ids": list(result.assigned_host_ids),
        "confirmation": result.confirmation,
        "series_id": result.series_id,
        "reason": result.reason,
        "occurrences": [
            {
                "start": o.start.isoformat(),
                "status": o.status.value,
                "booking_id": o.booking_id,
                "host_ids": list(o.host_ids),
                "reason": o.reason,
            }
            for o in result.occurrences
        ],
    }


def _result_response(result: BookingResult, created_status: int = 201) -> JSONResponse:
    status_code = {
        BookingStatus.COMMITTED: created_status,
        BookingStatus.CONFLICT: 409,
        BookingStatus.REJECTED_POLICY: 422,
    }[result.status]
    return JSONResponse(status_code=status_code, content=_result_payload(result))


def _http_error(e: SchedulingError) -> HTTPException:
    """Map a scheduling error raised outside the commit path to HTTP."""
    if isinstance(e, (BookingNotFound, EventTypeNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConfigurationError):
        logger.error(f"Booking request hit a configuration error: {e}")
        return HTTPException(status_code=500, detail="Event type is misconfigured")
    return HTTPException(status_code=400, detail=str(e))


@router.post("/bookings")
async def create_booking(args: CreateBookingArgs, db: AsyncSession = Depends(get_db)):
    """Reserve a slot previously offered by GET /slots.

    201 on commit, 409 when the slot is no longer free, 422 with a reason
    when the start breaks a scheduling policy.
    """
    try:
        load_zone(args.attendee.timezone)
    except ConfigurationError as e:
        # Attendee input, not operator configuration
        raise HTTPException(status_code=400, detail=str(e))

    service = BookingService(db)
    attendee = AttendeeInfo(**args.attendee.model_dump())
    try:
        result = await service.create_booking(
            args.event_type_id,
            args.start,
            attendee,
            recurring_count=args.recurring_count,
            all_or_nothing=args.all_or_nothing,
        )
    except SchedulingError as e:
        raise _http_error(e)
    return _result_response(result)


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    args: Optional[CancelBookingArgs] = None,
    db: AsyncSession = Depends(get_db),
):
    args = args or CancelBookingArgs()
    service = BookingService(db)
    try:
        cancelled: List[Booking] = await service.cancel_booking(booking_id, args.scope, args.reason)
    except SchedulingError as e:
        raise _http_error(e)
    return {"cancelled": [_booking_payload(b) for b in cancelled]}


@router.post("/bookings/{booking_id}/accept")
async def accept_booking(booking_id: str, db: AsyncSession = Depends(get_db)):
    service = BookingService(db)
    try:
        booking = await service.accept_booking(booking_id)
    except SchedulingError as e:
        raise _http_error(e)
    return _booking_payload(booking)


@router.post("/bookings/{booking_id}/reject")
async def reject_booking(
    booking_id: str,
    args: Optional[RejectBookingArgs] = None,
    db: AsyncSession = Depends(get_db),
):
    args = args or RejectBookingArgs()
    service = BookingService(db)
    try:
        booking = await service.reject_booking(booking_id, args.reason)
    except SchedulingError as e:
        raise _http_error(e)
    return _booking_payload(booking)


@router.post("/bookings/{booking_id}/reschedule")
async def reschedule_booking(
    booking_id: str,
    args: RescheduleBookingArgs,
    db: AsyncSession = Depends(get_db),
):
    service = BookingService(db)
    try:
        result = await service.reschedule_booking(booking_id, args.start, args.reason)
    except SchedulingError as e:
        raise _http_error(e)
    return _result_response(result)
