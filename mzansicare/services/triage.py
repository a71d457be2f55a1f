"""Rule-based symptom triage and medication interaction checks.

These are deliberately simple keyword heuristics meant to point patients to
the right queue, not clinical decision support.
"""
from typing import Iterable, List, Optional

from ..schemas.ai import Interaction, MedCheckResponse, TriageResponse

SYMPTOM_WEIGHTS = {
    "chest pain": 3,
    "breathless": 2,
    "bleeding": 2,
    "faint": 2,
    "fever": 1,
    "cough": 1,
    "dehydration": 2,
}

ESTIMATED_WAIT = {
    "high": "10-20 min",
    "medium": "30-60 min",
    "low": "60-120 min",
}

NSAIDS = {"ibuprofen", "aspirin", "naproxen"}


def triage(symptoms: str, age: Optional[int] = None, conditions: Optional[str] = None) -> TriageResponse:
    text = (symptoms or "").lower()
    score = sum(weight for keyword, weight in SYMPTOM_WEIGHTS.items() if keyword in text)
    if (age or 0) >= 65:
        score += 1
    if "pregnan" in (conditions or "").lower():
        score += 1

    if score >= 4:
        urgency = "high"
    elif score >= 2:
        urgency = "medium"
    else:
        urgency = "low"

    if "chest" in text:
        suggested = "Emergency / GP"
    elif "cough" in text:
        suggested = "GP / Respiratory"
    else:
        suggested = "General"

    return TriageResponse(
        urgency=urgency,
        score=score,
        suggested_clinic=suggested,
        estimated_wait=ESTIMATED_WAIT[urgency],
    )


def check_medication(
    current_meds: Iterable[str],
    new_med: str,
    patient_conditions: Iterable[str] = (),
) -> MedCheckResponse:
    current = [m.lower().strip() for m in current_meds]
    new = (new_med or "").lower().strip()
    conditions = [c.lower() for c in patient_conditions]
    interactions: List[Interaction] = []

    if "warfarin" in current and new in NSAIDS:
        interactions.append(Interaction(
            drugs=["Warfarin", new_med],
            risk="high",
            effect="Increased bleeding risk",
            suggestion="Consider paracetamol (acetaminophen) and consult your clinician.",
        ))
    if any("asthma" in c for c in conditions) and "propranolol" in new:
        interactions.append(Interaction(
            drugs=[new_med],
            risk="medium",
            effect="May worsen bronchospasm in asthma",
            suggestion="Ask about cardioselective alternatives or non-pharmacological options.",
        ))

    return MedCheckResponse(safe=not interactions, interactions=interactions)
