"""
Data access for the court.

Thin layers over the ORM models, one per storage concern:

- CaseRepository: cases, users, the case-number sequence
- EvidenceStore:  evidence items and defenses
- JuryLedger:     juror registration, votes and tallies

None of these commit; the state machine owns transaction boundaries.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from .db.models import Case, CaseSequence, Defense, Evidence, Juror, Summons, User
from .schemas import (
    CaseStatus,
    EvidenceStage,
    EvidenceType,
    JurorStatus,
    JuryTally,
    PartyRole,
)

logger = logging.getLogger(__name__)

CASE_NUMBER_TAG = "GOSOMI"


def format_case_number(year: int, seq: int) -> str:
    return f"{year}-{CASE_NUMBER_TAG}-{seq:03d}"


class CaseRepository:
    """Cases and the users that take part in them."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def user_exists(self, user_id: int) -> bool:
        return self.get_user(user_id) is not None

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def get(self, case_id: int) -> Optional[Case]:
        return self.session.get(Case, case_id)

    def get_for_update(self, case_id: int) -> Optional[Case]:
        """Fetch a case holding a row lock (no-op on SQLite)."""
        stmt = select(Case).where(Case.id == case_id).with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, case: Case) -> Case:
        self.session.add(case)
        self.session.flush()
        return case

    def next_case_number(self, year: Optional[int] = None) -> str:
        """
        Allocate the next sequential case number for the year.

        The sequence row is locked for the rest of the transaction, so two
        concurrent filings can never share a number.
        """
        year = year or datetime.utcnow().year
        stmt = select(CaseSequence).where(CaseSequence.year == year).with_for_update()
        seq = self.session.execute(stmt).scalar_one_or_none()
        if seq is None:
            seq = CaseSequence(year=year, last_value=0)
            self.session.add(seq)
            self.session.flush()

        seq.last_value += 1
        self.session.flush()
        return format_case_number(year, seq.last_value)

    def list_cases(
        self,
        *,
        q: Optional[str] = None,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[Case]:
        """Newest first; `status` accepts ONGOING, COMPLETED or a raw status."""
        stmt = select(Case)

        if q:
            like = f"%{q}%"
            matching_users = select(User.id).where(User.nickname.like(like))
            stmt = stmt.where(
                or_(
                    Case.case_number.like(like),
                    Case.title.like(like),
                    Case.plaintiff_id.in_(matching_users),
                    Case.defendant_id.in_(matching_users),
                )
            )

        if user_id:
            juror_cases = select(Juror.case_id).where(Juror.user_id == user_id)
            stmt = stmt.where(
                or_(
                    Case.plaintiff_id == user_id,
                    Case.defendant_id == user_id,
                    Case.id.in_(juror_cases),
                )
            )

        if status:
            if status == "ONGOING":
                stmt = stmt.where(Case.status.notin_([CaseStatus.COMPLETED, CaseStatus.EXPIRED]))
            else:
                stmt = stmt.where(Case.status == CaseStatus(status))

        stmt = stmt.order_by(Case.id.desc())
        return list(self.session.execute(stmt).scalars().all())

    def completed_cases_for(self, user_id: int) -> List[Case]:
        stmt = select(Case).where(
            or_(Case.plaintiff_id == user_id, Case.defendant_id == user_id),
            Case.status == CaseStatus.COMPLETED,
        )
        return list(self.session.execute(stmt).scalars().all())

    def stats(self, today: Optional[date] = None) -> dict:
        """Home screen counters."""
        today = today or datetime.utcnow().date()
        start = datetime(today.year, today.month, today.day)

        total = self.session.scalar(select(func.count(Case.id))) or 0
        today_verdicts = self.session.scalar(
            select(func.count(Case.id)).where(
                Case.verdict_text.isnot(None),
                Case.verdict_at >= start,
            )
        ) or 0
        ongoing = self.session.scalar(
            select(func.count(Case.id)).where(
                Case.verdict_text.is_(None),
                Case.status.notin_([CaseStatus.EXPIRED, CaseStatus.COMPLETED]),
            )
        ) or 0
        return {"total": total, "todayVerdict": today_verdicts, "ongoing": ongoing}

    # ------------------------------------------------------------------
    # Summons
    # ------------------------------------------------------------------

    def get_summons(self, case_id: int) -> Optional[Summons]:
        stmt = select(Summons).where(Summons.case_id == case_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_summons_by_token(self, token: str) -> Optional[Summons]:
        stmt = select(Summons).where(Summons.token == token)
        return self.session.execute(stmt).scalar_one_or_none()


class EvidenceStore:
    """Append-only evidence plus the single defense row per case."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def add(
        self,
        case_id: int,
        *,
        submitted_by: PartyRole,
        stage: EvidenceStage = EvidenceStage.INITIAL,
        type: EvidenceType = EvidenceType.TEXT,
        content: str,
        mime_type: Optional[str] = None,
    ) -> Evidence:
        evidence = Evidence(
            case_id=case_id,
            submitted_by=submitted_by,
            stage=stage,
            type=type,
        )
        if type == EvidenceType.IMAGE:
            evidence.file_path = content
            evidence.mime_type = mime_type
        else:
            evidence.text_content = content
        self.session.add(evidence)
        self.session.flush()
        return evidence

    def for_case(
        self,
        case_id: int,
        *,
        submitted_by: Optional[PartyRole] = None,
        stage: Optional[EvidenceStage] = None,
        type: Optional[EvidenceType] = None,
    ) -> List[Evidence]:
        stmt = select(Evidence).where(Evidence.case_id == case_id)
        if submitted_by is not None:
            stmt = stmt.where(Evidence.submitted_by == submitted_by)
        if stage is not None:
            stmt = stmt.where(Evidence.stage == stage)
        if type is not None:
            stmt = stmt.where(Evidence.type == type)
        stmt = stmt.order_by(Evidence.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def texts(self, case_id: int, submitted_by: PartyRole, stage: EvidenceStage) -> List[str]:
        rows = self.for_case(case_id, submitted_by=submitted_by, stage=stage, type=EvidenceType.TEXT)
        return [r.text_content for r in rows if r.text_content]

    def images(self, case_id: int, submitted_by: PartyRole) -> List[Evidence]:
        rows = self.for_case(case_id, submitted_by=submitted_by, type=EvidenceType.IMAGE)
        return [r for r in rows if r.file_path]

    # ------------------------------------------------------------------
    # Defense
    # ------------------------------------------------------------------

    def get_defense(self, case_id: int) -> Optional[Defense]:
        stmt = select(Defense).where(Defense.case_id == case_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def add_defense(self, case_id: int, content: str) -> Defense:
        defense = Defense(case_id=case_id, content=content)
        self.session.add(defense)
        self.session.flush()
        return defense


class JuryLedger:
    """Juror rows and the vote tally derived from them."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def random_candidates(self, exclude: Iterable[int], limit: int) -> List[int]:
        """Uniformly random user ids, skipping `exclude`."""
        stmt = (
            select(User.id)
            .where(User.id.notin_(list(exclude)))
            .order_by(func.random())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def existing_user_ids(self, user_ids: Sequence[int]) -> set:
        if not user_ids:
            return set()
        stmt = select(User.id).where(User.id.in_(list(user_ids)))
        return set(self.session.execute(stmt).scalars().all())

    def register(self, case_id: int, user_ids: Sequence[int]) -> List[Juror]:
        jurors = [Juror(case_id=case_id, user_id=uid, status=JurorStatus.INVITED) for uid in user_ids]
        self.session.add_all(jurors)
        self.session.flush()
        return jurors

    def get_juror(self, case_id: int, user_id: int) -> Optional[Juror]:
        stmt = select(Juror).where(Juror.case_id == case_id, Juror.user_id == user_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def record_vote(self, juror_id: int, vote: PartyRole) -> bool:
        """
        Mark a juror as voted. Returns False when the juror had already
        voted, including when a concurrent request got there first.
        """
        stmt = (
            update(Juror)
            .where(Juror.id == juror_id, Juror.status == JurorStatus.INVITED)
            .values(status=JurorStatus.VOTED, vote=vote, voted_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def tally(self, case_id: int) -> JuryTally:
        stmt = (
            select(Juror.vote, func.count(Juror.id))
            .where(Juror.case_id == case_id, Juror.status == JurorStatus.VOTED)
            .group_by(Juror.vote)
        )
        tally = JuryTally()
        for vote, count in self.session.execute(stmt).all():
            if vote == PartyRole.PLAINTIFF:
                tally.plaintiff = int(count)
            elif vote == PartyRole.DEFENDANT:
                tally.defendant = int(count)
        return tally

    def juror_count(self, case_id: int) -> int:
        return self.session.scalar(select(func.count(Juror.id)).where(Juror.case_id == case_id)) or 0

    def open_cases_for(self, user_id: int) -> List[tuple]:
        """(case, juror) pairs for cases the user sits on that are still open."""
        stmt = (
            select(Case, Juror)
            .join(Juror, Juror.case_id == Case.id)
            .where(
                Juror.user_id == user_id,
                Case.plaintiff_id != user_id,
                Case.defendant_id != user_id,
                Case.status.notin_([CaseStatus.COMPLETED, CaseStatus.EXPIRED]),
            )
            .order_by(Case.created_at.desc(), Case.id.desc())
        )
        return [(c, j) for c, j in self.session.execute(stmt).all()]
