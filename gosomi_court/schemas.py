"""
Pydantic Schemas for Gosomi Court
=================================

Enums, value types and request/response models.

Value types (Penalties, FaultRatio, VerdictPayload) are the storage boundary
for the JSON columns on `cases`: anything written to or read from those
columns goes through them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================

class CaseStatus(str, Enum):
    """Primary case lifecycle status"""
    SUMMONED = "SUMMONED"
    DEFENSE_SUBMITTED = "DEFENSE_SUBMITTED"
    VERDICT_READY = "VERDICT_READY"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    UNDER_APPEAL = "UNDER_APPEAL"


class AppealStatus(str, Enum):
    """Appeal sub-state, layered on top of CaseStatus"""
    NONE = "NONE"
    REQUESTED = "REQUESTED"
    RESPONDED = "RESPONDED"
    DONE = "DONE"


class PenaltyChoice(str, Enum):
    SERIOUS = "SERIOUS"
    FUNNY = "FUNNY"


class JuryMode(str, Enum):
    RANDOM = "RANDOM"
    INVITE = "INVITE"


class JurorStatus(str, Enum):
    INVITED = "INVITED"
    VOTED = "VOTED"


class PartyRole(str, Enum):
    """Submitter role for evidence, and the side a juror votes against"""
    PLAINTIFF = "PLAINTIFF"
    DEFENDANT = "DEFENDANT"


class EvidenceType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class EvidenceStage(str, Enum):
    INITIAL = "INITIAL"
    APPEAL = "APPEAL"


class VerdictResult(str, Enum):
    GUILTY = "GUILTY"
    NOT_GUILTY = "NOT_GUILTY"
    BOTH_AT_FAULT = "BOTH_AT_FAULT"
    SETTLEMENT = "SETTLEMENT"


class Intensity(str, Enum):
    LOW = "low"
    MID = "mid"
    HIGH = "high"


class JudgeMode(str, Enum):
    """Which external judge backs verdict generation"""
    NONE = "none"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class NotificationType(str, Enum):
    SUMMON = "SUMMON"
    JUROR_INVITED = "JUROR_INVITED"
    DEFENSE_SUBMITTED = "DEFENSE_SUBMITTED"
    VERDICT_COMPLETED = "VERDICT_COMPLETED"
    APPEAL_REQUESTED = "APPEAL_REQUESTED"
    APPEAL_RESPONDED = "APPEAL_RESPONDED"
    APPEAL_VERDICT_READY = "APPEAL_VERDICT_READY"


# =============================================================================
# VALUE TYPES (verdict contract)
# =============================================================================

class LawRef(BaseModel):
    """Reference to a legal-code article"""
    id: StrictStr
    category: StrictStr


class Penalties(BaseModel):
    """Penalty options offered by the judge, 0-3 per category"""
    serious: List[StrictStr] = Field(..., max_length=3)
    funny: List[StrictStr] = Field(..., max_length=3)

    def options_for(self, choice: PenaltyChoice) -> List[str]:
        if choice is PenaltyChoice.SERIOUS:
            return self.serious
        return self.funny


class FaultRatio(BaseModel):
    """Fault split between the parties; always sums to 100"""
    plaintiff: StrictInt = Field(..., ge=0, le=100)
    defendant: StrictInt = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def _sums_to_hundred(self) -> "FaultRatio":
        if self.plaintiff + self.defendant != 100:
            raise ValueError(
                f"faultRatio must sum to 100 (got {self.plaintiff}+{self.defendant})"
            )
        return self


class VerdictPayload(BaseModel):
    """
    Structured verdict returned by the judge.

    Validation is strict: wrong types are rejected, never coerced.
    The empty-penalties policy for BOTH_AT_FAULT is asked for in the prompt
    but not checked here.
    """
    result: VerdictResult
    intensity: Intensity
    lawRefs: List[LawRef] = Field(..., min_length=1, max_length=3)
    oneLine: StrictStr
    reasoning: StrictStr
    penalties: Penalties
    faultRatio: FaultRatio

    @property
    def verdict_text(self) -> str:
        return f"{self.oneLine}\n\n{self.reasoning}"


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CamelModel(BaseModel):
    """Request body using camelCase keys on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EvidenceInput(CamelModel):
    """Evidence attached to a case or defense"""
    type: EvidenceType = EvidenceType.TEXT
    content: Optional[str] = None
    mime_type: Optional[str] = None


class CreateCaseRequest(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    plaintiff_id: Optional[int] = None
    defendant_id: Optional[int] = None
    jury_enabled: bool = False
    jury_mode: Optional[JuryMode] = None
    jury_invited_user_ids: Optional[List[int]] = None
    law_type: Optional[str] = None
    evidences: Optional[List[EvidenceInput]] = None


class DefenseRequest(CamelModel):
    content: Optional[str] = None
    evidences: Optional[List[EvidenceInput]] = None


class AddEvidenceRequest(CamelModel):
    submitted_by: PartyRole = PartyRole.PLAINTIFF
    stage: EvidenceStage = EvidenceStage.INITIAL
    type: EvidenceType = EvidenceType.TEXT
    content: Optional[str] = None
    mime_type: Optional[str] = None


class JuryVoteRequest(CamelModel):
    user_id: Optional[int] = None
    vote: Optional[str] = None


class PenaltyRequest(CamelModel):
    choice: Optional[str] = None


class AppealRequest(CamelModel):
    appellant_id: Optional[int] = None
    reason: Optional[str] = None


class AppealDefenseRequest(CamelModel):
    content: Optional[str] = None


# =============================================================================
# RESULT MODELS
# =============================================================================

class JuryTally(BaseModel):
    """Vote counts of jurors that have voted"""
    plaintiff: int = 0
    defendant: int = 0

    @property
    def total(self) -> int:
        return self.plaintiff + self.defendant


class SkippedImage(BaseModel):
    evidenceId: int
    file: Optional[str] = None
    reason: str


class VerdictOutcome(BaseModel):
    """Normalized verdict result returned to the caller"""
    ok: bool = True
    cached: bool = False
    caseId: int
    verdictText: Optional[str] = None
    faultRatio: Optional[FaultRatio] = None
    penaltyChoice: Optional[PenaltyChoice] = None
    penaltySelected: Optional[str] = None
    verdict: Optional[VerdictPayload] = None
    usedImages: bool = False
    imagesIgnored: bool = False
    skippedImages: List[SkippedImage] = Field(default_factory=list)


class PenaltyOutcome(BaseModel):
    ok: bool = True
    caseId: int
    choice: PenaltyChoice
    penaltySelected: str
    cached: bool = False


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    judge_mode: JudgeMode = Field(..., description="Configured judge backend")
    timestamp: datetime = Field(..., description="Current timestamp")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Dict[str, Any]] = None
