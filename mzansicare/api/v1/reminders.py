from typing import List

from fastapi import APIRouter, Depends, status

from ...api.deps import get_current_user, get_reminder_service
from ...models.user import User
from ...schemas.reminder import MarkedRead, ReminderCreate, ReminderResponse
from ...services.reminder_service import ReminderService

router = APIRouter(prefix="/reminders", tags=["Reminders"])

@router.get("", response_model=List[ReminderResponse])
async def list_reminders(
    due_only: bool = False,
    current_user: User = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service)
):
    """Pending reminders, soonest first."""
    return service.list_for(current_user.id, due_only=due_only)

@router.post("", response_model=ReminderResponse, status_code=status.HTTP_201_CREATED)
async def create_reminder(
    data: ReminderCreate,
    current_user: User = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service)
):
    return service.create(current_user.id, data)

@router.post("/read-all", response_model=MarkedRead)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service)
):
    return MarkedRead(updated=service.mark_all_read(current_user.id))

@router.post("/{reminder_id}/read", response_model=ReminderResponse)
async def mark_read(
    reminder_id: str,
    current_user: User = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service)
):
    return service.mark_read(reminder_id, current_user.id)
