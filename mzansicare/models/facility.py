from sqlalchemy import Column, String, DateTime, Float, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class FacilityKind(str, enum.Enum):
    CLINIC = "clinic"
    HOSPITAL = "hospital"

class Facility(Base):
    __tablename__ = "facilities"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    kind = Column(SQLEnum(FacilityKind), nullable=False, default=FacilityKind.CLINIC)
    address = Column(String(255), nullable=True)
    phone = Column(String(40), nullable=True)

    # Either both set or treated as unknown
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    services = Column(JSON, nullable=False, default=list)
    hours = Column(JSON, nullable=True)  # {"mon": [["08:00", "17:00"]], ...}
    avg_service_minutes = Column(Float, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Facility(id='{self.id}', name='{self.name}')>"
