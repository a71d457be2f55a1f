from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.feedback import FeedbackCategory


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    category: FeedbackCategory = FeedbackCategory.OTHER
    comment: Optional[str] = Field(default=None, max_length=2000)
    facility_id: Optional[str] = None


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: Optional[str] = None
    rating: int
    category: FeedbackCategory
    comment: Optional[str] = None
    created_at: datetime
