from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum
import enum

from ..core.clock import utcnow
from ..core.database import Base

class FeedbackCategory(str, enum.Enum):
    HYGIENE = "hygiene"
    STAFF = "staff"
    WAITING_TIME = "waiting_time"
    SERVICE = "service"
    OTHER = "other"

class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    facility_id = Column(String(64), nullable=True)
    rating = Column(Integer, nullable=False)
    category = Column(SQLEnum(FeedbackCategory), nullable=False, default=FeedbackCategory.OTHER)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Feedback(id={self.id}, user_id={self.user_id}, rating={self.rating})>"
