from fastapi import APIRouter, Depends

from ...api.deps import get_current_user
from ...models.user import User
from ...schemas.ai import MedCheckRequest, MedCheckResponse, TriageRequest, TriageResponse
from ...services.triage import check_medication, triage

router = APIRouter(prefix="/ai", tags=["AI helpers"])

@router.post("/triage", response_model=TriageResponse)
async def ai_triage(
    data: TriageRequest,
    current_user: User = Depends(get_current_user)
):
    """Suggest an urgency level and clinic type for the described symptoms."""
    return triage(data.symptoms, age=data.age, conditions=data.conditions)

@router.post("/med-check", response_model=MedCheckResponse)
async def ai_med_check(
    data: MedCheckRequest,
    current_user: User = Depends(get_current_user)
):
    """Flag known interactions between current medication and a new one."""
    return check_medication(data.current_meds, data.new_med, data.patient_conditions)
