from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_user
from ...core.database import get_db
from ...models.user import User
from ...schemas.feedback import FeedbackCreate, FeedbackResponse
from ...services.feedback_service import FeedbackService

router = APIRouter(prefix="/feedback", tags=["Feedback"])

@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    data: FeedbackCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return FeedbackService(db).submit(current_user.id, data)

@router.get("/mine", response_model=List[FeedbackResponse])
async def my_feedback(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The caller's ten most recent feedback entries."""
    return FeedbackService(db).recent_for(current_user.id)
