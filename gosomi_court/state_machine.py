"""
Case State Machine
==================

Every transition of a case goes through here:

    SUMMONED -> DEFENSE_SUBMITTED -> VERDICT_READY -> COMPLETED
    SUMMONED / DEFENSE_SUBMITTED -> EXPIRED      (summons token timed out)
    VERDICT_READY / COMPLETED -> UNDER_APPEAL    (once)

The appeal status (NONE -> REQUESTED -> RESPONDED -> DONE) is a second axis
that gates jury votes, the verdict cache and appeal actions.

Guards raise CourtError subclasses before anything is written. Each
transition commits once; notifications are written afterwards and never
fail the transition.
"""

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import Case, Evidence, Summons
from .errors import (
    AlreadySubmitted,
    CaseNotFound,
    CaseStateError,
    CourtError,
    Forbidden,
    NotFound,
    PenaltyLocked,
    SummonsExpired,
    ValidationFailed,
    VerdictGenerationError,
)
from .legal_code import LegalCodeProvider
from .llm import JudgeClient
from .notifications import NotificationEmitter
from .repositories import CaseRepository, EvidenceStore, JuryLedger
from .schemas import (
    AddEvidenceRequest,
    AppealDefenseRequest,
    AppealRequest,
    AppealStatus,
    CaseStatus,
    CreateCaseRequest,
    DefenseRequest,
    EvidenceInput,
    EvidenceStage,
    EvidenceType,
    JuryMode,
    JurorStatus,
    JuryVoteRequest,
    NotificationType,
    PartyRole,
    PenaltyChoice,
    PenaltyOutcome,
    PenaltyRequest,
    VerdictOutcome,
    VerdictPayload,
)
from .verdict import VerdictRequester, is_relative_upload_path
from .views import case_detail, case_summary, jury_case_view
from .win_rate import update_win_rates_for_case

logger = logging.getLogger(__name__)


class CaseLocks:
    """
    Per-case asyncio locks for verdict generation.

    Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, case_id: int):
        lock = self._locks.setdefault(case_id, asyncio.Lock())
        self._holders[case_id] = self._holders.get(case_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[case_id] -= 1
            if self._holders[case_id] == 0:
                del self._holders[case_id]
                self._locks.pop(case_id, None)

    def __len__(self) -> int:
        return len(self._locks)


verdict_locks = CaseLocks()


def _require_text(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationFailed(message)
    return value


def _check_image_path(type: EvidenceType, content: str) -> None:
    if type == EvidenceType.IMAGE and not is_relative_upload_path(content):
        raise ValidationFailed("image path must be relative to the upload root")


def _check_evidence_items(items: Optional[Sequence[EvidenceInput]]) -> List[EvidenceInput]:
    items = list(items or [])
    for item in items:
        _require_text(item.content, "evidence content is required")
        _check_image_path(item.type, item.content)
    return items


class CaseStateMachine:
    """Transitions and reads for cases, bound to one session."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        legal_code: Optional[LegalCodeProvider] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.legal_code = legal_code
        self.cases = CaseRepository(session)
        self.evidence = EvidenceStore(session)
        self.jury = JuryLedger(session)
        self.notifier = NotificationEmitter(session)

    def _get_case(self, case_id: int) -> Case:
        case = self.cases.get(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    def create_case(self, req: CreateCaseRequest) -> Case:
        missing = "title, content, plaintiffId, defendantId are required"
        if not req.plaintiff_id or not req.defendant_id:
            raise ValidationFailed(missing)
        _require_text(req.title, missing)
        _require_text(req.content, missing)
        if not self.cases.user_exists(req.plaintiff_id):
            raise ValidationFailed("plaintiffId not found")
        if not self.cases.user_exists(req.defendant_id):
            raise ValidationFailed("defendantId not found")
        if req.plaintiff_id == req.defendant_id:
            raise ValidationFailed("plaintiff and defendant must be different users")
        evidences = _check_evidence_items(req.evidences)

        jury_mode = req.jury_mode if req.jury_enabled else None
        case = Case(
            case_number=self.cases.next_case_number(),
            title=req.title,
            content=req.content,
            law_type=req.law_type or None,
            status=CaseStatus.SUMMONED,
            plaintiff_id=req.plaintiff_id,
            defendant_id=req.defendant_id,
            jury_enabled=bool(req.jury_enabled),
            jury_mode=jury_mode,
            jury_invite_token=secrets.token_hex(8) if jury_mode == JuryMode.INVITE else None,
        )
        self.cases.add(case)

        for item in evidences:
            self.evidence.add(
                case.id,
                submitted_by=PartyRole.PLAINTIFF,
                stage=EvidenceStage.INITIAL,
                type=item.type,
                content=item.content,
                mime_type=item.mime_type,
            )

        juror_ids = self._select_jurors(case, jury_mode, req.jury_invited_user_ids)
        if juror_ids:
            self.jury.register(case.id, juror_ids)

        self.session.commit()
        logger.info(f"Filed case {case.case_number} (id={case.id}, jurors={len(juror_ids)})")

        self.notifier.emit(case, NotificationType.SUMMON, [case.defendant_id])
        # One write per juror so a failure only loses that juror's notice
        for uid in juror_ids:
            self.notifier.emit(case, NotificationType.JUROR_INVITED, [uid])
        return case

    def _select_jurors(
        self,
        case: Case,
        mode: Optional[JuryMode],
        invited: Optional[Sequence[int]],
    ) -> List[int]:
        parties = (case.plaintiff_id, case.defendant_id)
        limit = self.settings.max_jurors

        if mode == JuryMode.RANDOM:
            return self.jury.random_candidates(parties, limit)

        if mode == JuryMode.INVITE:
            wanted = [uid for uid in dict.fromkeys(invited or []) if uid not in parties]
            known = self.jury.existing_user_ids(wanted)
            dropped = [uid for uid in wanted if uid not in known]
            if dropped:
                logger.info(f"Dropping unknown jury invitees for case {case.id}: {dropped}")
            return [uid for uid in wanted if uid in known][:limit]

        return []

    # ------------------------------------------------------------------
    # Defense
    # ------------------------------------------------------------------

    def submit_defense(self, case_id: int, req: DefenseRequest) -> Case:
        _require_text(req.content, "content is required")
        case = self._get_case(case_id)
        return self._file_defense(case, req)

    def submit_defense_by_token(self, token: str, req: DefenseRequest) -> Case:
        _require_text(req.content, "content is required")
        summons = self._live_summons(token, expire_case=True)
        return self._file_defense(summons.case, req)

    def _file_defense(self, case: Case, req: DefenseRequest) -> Case:
        evidences = _check_evidence_items(req.evidences)

        if self.evidence.get_defense(case.id) is not None:
            if case.status == CaseStatus.SUMMONED:
                # Repair a case whose status update was lost after the defense was stored
                logger.warning(f"Case {case.id} has a defense but is still SUMMONED; correcting status")
                case.status = CaseStatus.DEFENSE_SUBMITTED
                self.session.commit()
            raise AlreadySubmitted("defense already submitted")

        if case.status != CaseStatus.SUMMONED:
            raise CaseStateError(
                f"case status must be SUMMONED to submit defense (is {case.status.value})"
            )

        self.evidence.add_defense(case.id, req.content)
        for item in evidences:
            self.evidence.add(
                case.id,
                submitted_by=PartyRole.DEFENDANT,
                stage=EvidenceStage.INITIAL,
                type=item.type,
                content=item.content,
                mime_type=item.mime_type,
            )
        case.status = CaseStatus.DEFENSE_SUBMITTED
        self.session.commit()
        logger.info(f"Defense filed for case {case.id}")

        self.notifier.emit(case, NotificationType.DEFENSE_SUBMITTED, [case.plaintiff_id])
        return case

    # ------------------------------------------------------------------
    # Summons
    # ------------------------------------------------------------------

    def issue_summons(self, case_id: int) -> Tuple[Summons, bool]:
        """Returns (summons, created). An existing summons is returned as is."""
        case = self._get_case(case_id)
        existing = self.cases.get_summons(case.id)
        if existing is not None:
            return existing, False

        summons = Summons(
            case_id=case.id,
            token=secrets.token_hex(24),
            expires_at=datetime.utcnow() + timedelta(hours=self.settings.summons_ttl_hours),
        )
        self.session.add(summons)
        self.session.commit()
        logger.info(f"Issued summons for case {case.id}, expires {summons.expires_at.isoformat()}")

        self.notifier.emit(case, NotificationType.SUMMON, [case.defendant_id])
        return summons, True

    def _live_summons(self, token: str, expire_case: bool) -> Summons:
        summons = self.cases.get_summons_by_token(token)
        if summons is None:
            raise NotFound("invalid token")

        if summons.is_expired():
            case = summons.case
            if expire_case and case.status in (CaseStatus.SUMMONED, CaseStatus.DEFENSE_SUBMITTED):
                case.status = CaseStatus.EXPIRED
                self.session.commit()
                logger.info(f"Summons for case {case.id} expired; case marked EXPIRED")
            raise SummonsExpired("summon expired")
        return summons

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def add_evidence(self, case_id: int, req: AddEvidenceRequest) -> Evidence:
        _require_text(req.content, "content is required")
        case = self._get_case(case_id)
        return self._add_evidence(case, req.submitted_by, req)

    def add_evidence_by_token(self, token: str, req: AddEvidenceRequest) -> Evidence:
        _require_text(req.content, "content is required")
        summons = self._live_summons(token, expire_case=False)
        return self._add_evidence(summons.case, PartyRole.DEFENDANT, req)

    def _add_evidence(self, case: Case, role: PartyRole, req: AddEvidenceRequest) -> Evidence:
        _check_image_path(req.type, req.content)
        if case.status == CaseStatus.EXPIRED:
            raise CaseStateError("case expired")
        if req.stage == EvidenceStage.APPEAL and case.appeal_status not in (
            AppealStatus.REQUESTED, AppealStatus.RESPONDED
        ):
            raise CaseStateError("appeal evidence requires an active appeal", status_code=400)

        evidence = self.evidence.add(
            case.id,
            submitted_by=role,
            stage=req.stage,
            type=req.type,
            content=req.content,
            mime_type=req.mime_type if req.type == EvidenceType.IMAGE else None,
        )
        self.session.commit()
        return evidence

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def _requester(self, judge: JudgeClient) -> VerdictRequester:
        return VerdictRequester(self.session, judge, legal_code=self.legal_code, settings=self.settings)

    def cached_verdict(self, case: Case) -> Optional[VerdictOutcome]:
        """The stored verdict, while the first-instance cache is valid."""
        if not case.verdict_text:
            return None
        if case.appeal_status not in (AppealStatus.NONE, AppealStatus.REQUESTED):
            return None

        return VerdictOutcome(
            ok=True,
            cached=True,
            caseId=case.id,
            verdictText=case.verdict_text,
            faultRatio=case.fault_ratio_value,
            penaltyChoice=case.penalty_choice,
            penaltySelected=case.penalty_selected,
            verdict=VerdictPayload.model_validate(case.verdict_json) if case.verdict_json else None,
        )

    async def request_verdict(self, case_id: int, judge: JudgeClient) -> VerdictOutcome:
        case = self._get_case(case_id)
        if case.status == CaseStatus.EXPIRED:
            raise CaseStateError("case expired")

        cached = self.cached_verdict(case)
        if cached is not None:
            return cached

        async with verdict_locks.hold(case.id):
            # Another request may have finished while we waited
            self.session.refresh(case)
            cached = self.cached_verdict(case)
            if cached is not None:
                return cached

            try:
                outcome = await self._requester(judge).generate(case, is_appeal=False)
            except VerdictGenerationError:
                self.session.rollback()
                raise
            self.session.commit()

        self.notifier.emit(case, NotificationType.VERDICT_COMPLETED, [case.plaintiff_id, case.defendant_id])
        return outcome

    async def request_appeal_verdict(self, case_id: int, judge: JudgeClient) -> VerdictOutcome:
        case = self._get_case(case_id)
        self._require_open_appeal(case)

        async with verdict_locks.hold(case.id):
            self.session.refresh(case)
            self._require_open_appeal(case)

            try:
                outcome = await self._requester(judge).generate(case, is_appeal=True)
            except VerdictGenerationError:
                self.session.rollback()
                raise
            case.appeal_status = AppealStatus.DONE
            case.status = CaseStatus.COMPLETED
            self.session.commit()

        logger.info(f"Appeal verdict delivered for case {case.id}")
        self.notifier.emit(case, NotificationType.APPEAL_VERDICT_READY, [case.plaintiff_id, case.defendant_id])
        return outcome

    @staticmethod
    def _require_open_appeal(case: Case) -> None:
        if case.appeal_status not in (AppealStatus.REQUESTED, AppealStatus.RESPONDED):
            raise CaseStateError("appeal is not in progress", status_code=400)

    # ------------------------------------------------------------------
    # Jury
    # ------------------------------------------------------------------

    def cast_jury_vote(self, case_id: int, req: JuryVoteRequest) -> None:
        if not req.user_id:
            raise ValidationFailed("userId is required")
        try:
            vote = PartyRole(req.vote)
        except ValueError:
            raise ValidationFailed("vote must be PLAINTIFF or DEFENDANT")

        case = self._get_case(case_id)
        if case.appeal_status != AppealStatus.NONE:
            raise Forbidden("jury voting is closed while an appeal is active")

        juror = self.jury.get_juror(case.id, req.user_id)
        if juror is None:
            raise Forbidden("not a juror for this case")
        if juror.status == JurorStatus.VOTED:
            raise AlreadySubmitted("already voted")

        if not self.jury.record_vote(juror.id, vote):
            self.session.rollback()
            raise AlreadySubmitted("already voted")
        self.session.commit()
        logger.info(f"Juror {req.user_id} voted {vote.value} on case {case.id}")

    # ------------------------------------------------------------------
    # Penalty
    # ------------------------------------------------------------------

    def select_penalty(self, case_id: int, req: PenaltyRequest) -> PenaltyOutcome:
        try:
            choice = PenaltyChoice(str(req.choice or "").upper())
        except ValueError:
            raise ValidationFailed("choice must be SERIOUS or FUNNY")

        case = self.cases.get_for_update(case_id)
        if case is None:
            raise CaseNotFound(case_id)

        if case.penalty_choice is not None:
            if case.penalty_choice == choice:
                return PenaltyOutcome(
                    caseId=case.id,
                    choice=case.penalty_choice,
                    penaltySelected=case.penalty_selected,
                    cached=True,
                )
            raise PenaltyLocked(
                "penalty already selected",
                lockedChoice=case.penalty_choice.value,
                penaltySelected=case.penalty_selected,
            )

        if case.status != CaseStatus.VERDICT_READY or case.penalties_json is None:
            raise CaseStateError("verdict not ready", status_code=400)

        options = case.penalties.options_for(choice)
        if not options:
            raise ValidationFailed("no penalties available", choice=choice.value)

        selected = options[abs(case.id) % len(options)]
        case.penalty_choice = choice
        case.penalty_selected = selected
        case.status = CaseStatus.COMPLETED
        self.session.commit()
        logger.info(f"Penalty {choice.value} selected for case {case.id}")

        try:
            update_win_rates_for_case(self.session, case)
        except (SQLAlchemyError, CourtError) as e:
            self.session.rollback()
            logger.warning(f"Win rate update failed for case {case.id}: {e}")

        return PenaltyOutcome(caseId=case.id, choice=choice, penaltySelected=selected, cached=False)

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    def request_appeal(self, case_id: int, req: AppealRequest) -> Case:
        if not req.appellant_id or not req.reason or not req.reason.strip():
            raise ValidationFailed("appellantId and reason are required")

        case = self._get_case(case_id)
        if case.role_of(req.appellant_id) is None:
            raise Forbidden("only a party to the case can appeal")
        if case.status not in (CaseStatus.VERDICT_READY, CaseStatus.COMPLETED):
            raise CaseStateError(
                f"case cannot be appealed in status {case.status.value}", status_code=400
            )
        if case.appeal_status != AppealStatus.NONE:
            raise CaseStateError("appeal already requested", status_code=400)

        case.appeal_status = AppealStatus.REQUESTED
        case.appellant_id = req.appellant_id
        case.appeal_reason = req.reason
        case.status = CaseStatus.UNDER_APPEAL
        self.session.commit()
        logger.info(f"Appeal requested on case {case.id} by user {req.appellant_id}")

        self.notifier.emit(case, NotificationType.APPEAL_REQUESTED, [case.opponent_of(req.appellant_id)])
        return case

    def submit_appeal_defense(self, case_id: int, req: AppealDefenseRequest) -> Case:
        _require_text(req.content, "content is required")
        case = self._get_case(case_id)
        if case.appeal_status != AppealStatus.REQUESTED:
            raise CaseStateError("appeal is not awaiting a response", status_code=400)

        case.appeal_status = AppealStatus.RESPONDED
        case.appeal_response = req.content
        self.session.commit()

        self.notifier.emit(case, NotificationType.APPEAL_RESPONDED, [case.appellant_id])
        return case

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_case_detail(self, case_id: int, user_id: Optional[int] = None) -> Dict:
        case = self._get_case(case_id)
        juror = self.jury.get_juror(case.id, user_id) if user_id else None
        return case_detail(
            case,
            self.evidence.for_case(case.id),
            self.evidence.get_defense(case.id),
            self.jury.tally(case.id),
            self.jury.juror_count(case.id),
            juror,
        )

    def list_cases(self, q: Optional[str] = None, user_id: Optional[int] = None,
                   status: Optional[str] = None) -> List[Dict]:
        try:
            cases = self.cases.list_cases(q=q, user_id=user_id, status=status)
        except ValueError:
            raise ValidationFailed(f"invalid status filter: {status}")
        return [case_summary(c) for c in cases]

    def jury_cases(self, user_id: int) -> List[Dict]:
        return [jury_case_view(case, juror) for case, juror in self.jury.open_cases_for(user_id)]

    def stats(self) -> Dict:
        return self.cases.stats()
