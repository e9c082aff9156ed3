"""
Response shapes for case reads.

Plain dicts in the camelCase the front end expects; FastAPI encodes the
datetimes.
"""

from typing import Any, Dict, List, Optional

from .db.models import Case, Defense, Evidence, Juror
from .schemas import AppealStatus, CaseStatus, JurorStatus, JuryTally, PartyRole


def display_status(case: Case) -> str:
    """Human-readable status for lists."""
    if case.status == CaseStatus.SUMMONED:
        return "Filed"
    if case.status == CaseStatus.DEFENSE_SUBMITTED:
        return "Awaiting verdict"
    if case.status == CaseStatus.EXPIRED:
        return "Expired"
    if case.status == CaseStatus.UNDER_APPEAL:
        return "Appealed"
    # VERDICT_READY / COMPLETED
    if case.appeal_status in (AppealStatus.REQUESTED, AppealStatus.RESPONDED):
        return "Appealed"
    if case.appeal_status == AppealStatus.DONE:
        return "Retrial complete"
    return "Verdict delivered"


def evidence_view(evidence: Evidence) -> Dict[str, Any]:
    return {
        "id": str(evidence.id),
        "type": evidence.type.value,
        "content": evidence.content,
        "mimeType": evidence.mime_type,
        "submittedBy": evidence.submitted_by.value,
        "stage": evidence.stage.value,
        "isKeyEvidence": False,
        "createdAt": evidence.created_at,
    }


def case_summary(case: Case) -> Dict[str, Any]:
    return {
        "id": case.id,
        "caseNumber": case.case_number,
        "title": case.title,
        "status": case.status.value,
        "appealStatus": case.appeal_status.value,
        "displayStatus": display_status(case),
        "createdAt": case.created_at,
        "plaintiff": case.plaintiff.nickname if case.plaintiff else None,
        "defendant": case.defendant.nickname if case.defendant else None,
        "plaintiffId": case.plaintiff_id,
        "defendantId": case.defendant_id,
        "juryEnabled": bool(case.jury_enabled),
        "juryMode": case.jury_mode.value if case.jury_mode else None,
    }


def case_detail(
    case: Case,
    evidences: List[Evidence],
    defense: Optional[Defense],
    tally: JuryTally,
    total_jurors: int,
    juror: Optional[Juror] = None,
) -> Dict[str, Any]:
    plaintiff_evidences: List[Dict] = []
    defendant_evidences: List[Dict] = []
    for evidence in evidences:
        bucket = plaintiff_evidences if evidence.submitted_by == PartyRole.PLAINTIFF else defendant_evidences
        bucket.append(evidence_view(evidence))

    defendant_response = None
    if defense is not None:
        defendant_response = {
            "statement": defense.content,
            "evidences": defendant_evidences,
            "submittedAt": defense.created_at,
        }

    user_vote = None
    if juror is not None:
        user_vote = {
            "isJuror": True,
            "hasVoted": juror.status == JurorStatus.VOTED,
            "vote": juror.vote.value if juror.vote else None,
        }

    return {
        **case_summary(case),
        "content": case.content,
        "lawType": case.law_type,
        "evidences": plaintiff_evidences,
        "defendantEvidences": defendant_evidences,
        "defendantResponse": defendant_response,
        "juryVotes": {
            "plaintiffWins": tally.plaintiff,
            "defendantWins": tally.defendant,
            "total": tally.total,
            "totalJurors": total_jurors,
        },
        "userVote": user_vote,
        "juryInviteToken": case.jury_invite_token,
        "verdictText": case.verdict_text,
        "verdict": case.verdict_json,
        "verdictAt": case.verdict_at,
        "penalties": case.penalties_json,
        "faultRatio": case.fault_ratio,
        "penaltyMode": case.penalty_choice is not None,
        "penaltyChoice": case.penalty_choice.value if case.penalty_choice else None,
        "penaltySelected": case.penalty_selected,
        "appellantId": case.appellant_id,
        "appealReason": case.appeal_reason,
        "appealResponse": case.appeal_response,
    }


def jury_case_view(case: Case, juror: Juror) -> Dict[str, Any]:
    return {
        "id": case.id,
        "caseNumber": case.case_number,
        "title": case.title,
        "description": case.content,
        "content": case.content,
        "status": case.status.value,
        "createdAt": case.created_at,
        "plaintiff": case.plaintiff.nickname if case.plaintiff else None,
        "defendant": case.defendant.nickname if case.defendant else None,
        "plaintiffId": case.plaintiff_id,
        "defendantId": case.defendant_id,
        "juryEnabled": True,
        "juryStatus": juror.status.value,
        "juryVote": juror.vote.value if juror.vote else None,
    }
