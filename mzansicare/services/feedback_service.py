from typing import List

from sqlalchemy.orm import Session

from ..models.feedback import Feedback
from ..schemas.feedback import FeedbackCreate


class FeedbackService:
    def __init__(self, db: Session):
        self.db = db

    def submit(self, user_id: str, data: FeedbackCreate) -> Feedback:
        feedback = Feedback(
            user_id=user_id,
            facility_id=data.facility_id,
            rating=data.rating,
            category=data.category,
            comment=(data.comment or "").strip() or None,
        )
        self.db.add(feedback)
        self.db.commit()
        self.db.refresh(feedback)
        return feedback

    def recent_for(self, user_id: str, limit: int = 10) -> List[Feedback]:
        return self.db.query(Feedback).filter(
            Feedback.user_id == user_id
        ).order_by(Feedback.created_at.desc(), Feedback.id.desc()).limit(limit).all()
