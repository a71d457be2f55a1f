from typing import List, Literal, Optional

from pydantic import BaseModel, Field


Urgency = Literal["low", "medium", "high"]
Risk = Literal["low", "medium", "high"]


class TriageRequest(BaseModel):
    symptoms: str = Field(..., min_length=1, max_length=2000)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    conditions: Optional[str] = Field(default=None, max_length=500)


class TriageResponse(BaseModel):
    urgency: Urgency
    score: int
    suggested_clinic: str
    estimated_wait: str


class MedCheckRequest(BaseModel):
    current_meds: List[str] = Field(default_factory=list)
    new_med: str = Field(..., min_length=1, max_length=200)
    patient_conditions: List[str] = Field(default_factory=list)


class Interaction(BaseModel):
    drugs: List[str]
    risk: Risk
    effect: str
    suggestion: str


class MedCheckResponse(BaseModel):
    safe: bool
    interactions: List[Interaction]
    south_africa_specific: bool = True
