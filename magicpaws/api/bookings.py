"""
Booking routes.

- GET   /api/services          active bookable services
- GET   /api/bookings          own bookings (all bookings for admins)
- POST  /api/bookings          request a booking
- GET   /api/bookings/{id}     one booking
- PATCH /api/bookings/{id}     admin update, or client cancellation
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from magicpaws.core.auth import get_current_principal
from magicpaws.features.bookings.service import (
    create_booking,
    get_booking,
    list_bookings,
    list_services,
    update_booking,
)
from magicpaws.models.principal import Principal


router = APIRouter(tags=["bookings"])


class BookingCreate(BaseModel):
    service_type_id: str
    requested_date: datetime
    requested_time: Optional[str] = Field(None, max_length=20)
    duration_minutes: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BookingUpdate(BaseModel):
    status: Optional[str] = None
    confirmed_date: Optional[datetime] = None
    confirmed_time: Optional[str] = Field(None, max_length=20)
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None


@router.get("/api/services")
def services():
    return {"services": list_services()}


@router.get("/api/bookings")
def bookings(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
):
    return {"bookings": list_bookings(principal, status=status, limit=limit)}


@router.post("/api/bookings", status_code=201)
def request_booking(body: BookingCreate, principal: Principal = Depends(get_current_principal)):
    booking = create_booking(
        principal,
        body.service_type_id,
        body.requested_date,
        requested_time=body.requested_time,
        duration_minutes=body.duration_minutes,
        notes=body.notes,
    )
    return {"booking": booking}


@router.get("/api/bookings/{booking_id}")
def booking(booking_id: str, principal: Principal = Depends(get_current_principal)):
    return {"booking": get_booking(principal, booking_id)}


@router.patch("/api/bookings/{booking_id}")
def change_booking(booking_id: str, body: BookingUpdate, principal: Principal = Depends(get_current_principal)):
    return {"booking": update_booking(principal, booking_id, body.model_dump(exclude_unset=True))}
