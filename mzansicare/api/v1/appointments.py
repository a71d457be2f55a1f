from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ...api.deps import get_appointment_service, get_current_user, get_operator_user, is_staff
from ...models.user import User
from ...schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentResponse,
    SlotAvailability,
)
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("/slots", response_model=List[SlotAvailability])
async def list_slots(
    facility_id: str,
    day: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Bookable times at a facility on one day."""
    return service.available_slots(facility_id, day)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book an appointment; a reminder is scheduled a day before it."""
    return service.book(current_user.id, data)

@router.get("/mine", response_model=List[AppointmentResponse])
async def my_appointments(
    include_cancelled: bool = False,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    return service.list_for(current_user.id, include_cancelled=include_cancelled)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    data: Optional[AppointmentCancel] = None,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel an appointment (owner or operator)."""
    return service.cancel(
        appointment_id,
        current_user.id,
        is_staff=is_staff(current_user),
        reason=data.reason if data else None,
    )

@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: str,
    operator: User = Depends(get_operator_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    return service.confirm(appointment_id)
