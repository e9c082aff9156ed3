"""
SQLAlchemy Models for Database
==============================

Schema for the mock court:
- Users (parties and jurors)
- Cases with verdict and appeal state
- Evidence, defenses, jurors, summons tokens
- Notifications (side-channel outbox)
- Case number sequence

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean, DateTime, Enum, ForeignKey,
    UniqueConstraint, Index, JSON, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base

from ..schemas import (
    AppealStatus,
    CaseStatus,
    EvidenceStage,
    EvidenceType,
    FaultRatio,
    JuryMode,
    JurorStatus,
    PartyRole,
    Penalties,
    PenaltyChoice,
    VerdictPayload,
)

Base = declarative_base()


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    """A person who can sue, be sued, or sit on a jury"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nickname = Column(String(100), nullable=False)
    profile_image = Column(String(500), nullable=True)
    win_rate = Column(Float, default=50.0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# CASES
# =============================================================================

class Case(Base):
    """One dispute between a plaintiff and a defendant"""
    __tablename__ = "cases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_number = Column(String(50), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    law_type = Column(String(50), nullable=True)  # advisory category tag
    status = Column(Enum(CaseStatus), default=CaseStatus.SUMMONED, nullable=False)

    plaintiff_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    defendant_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Verdict
    verdict_text = Column(Text, nullable=True)
    verdict_json = Column(JSON, nullable=True)
    penalties_json = Column(JSON, nullable=True)
    fault_ratio = Column(JSON, nullable=True)
    penalty_choice = Column(Enum(PenaltyChoice), nullable=True)
    penalty_selected = Column(Text, nullable=True)
    verdict_at = Column(DateTime, nullable=True)

    # Appeal
    appeal_status = Column(Enum(AppealStatus), default=AppealStatus.NONE, nullable=False)
    appellant_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    appeal_reason = Column(Text, nullable=True)
    appeal_response = Column(Text, nullable=True)

    # Jury
    jury_enabled = Column(Boolean, default=False, nullable=False)
    jury_mode = Column(Enum(JuryMode), nullable=True)
    jury_invite_token = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "(penalty_choice IS NULL AND penalty_selected IS NULL) OR "
            "(penalty_choice IS NOT NULL AND penalty_selected IS NOT NULL)",
            name="ck_case_penalty_pair",
        ),
        Index("ix_cases_plaintiff", "plaintiff_id"),
        Index("ix_cases_defendant", "defendant_id"),
    )

    # Relationships
    plaintiff = relationship("User", foreign_keys=[plaintiff_id])
    defendant = relationship("User", foreign_keys=[defendant_id])
    evidences = relationship("Evidence", back_populates="case", cascade="all, delete-orphan",
                             order_by="Evidence.id")
    defense = relationship("Defense", back_populates="case", uselist=False, cascade="all, delete-orphan")
    jurors = relationship("Juror", back_populates="case", cascade="all, delete-orphan")
    summons = relationship("Summons", back_populates="case", uselist=False, cascade="all, delete-orphan")

    # -- typed views over the JSON columns ---------------------------------

    @property
    def penalties(self) -> Optional[Penalties]:
        if self.penalties_json is None:
            return None
        return Penalties.model_validate(self.penalties_json)

    @property
    def fault_ratio_value(self) -> Optional[FaultRatio]:
        if self.fault_ratio is None:
            return None
        return FaultRatio.model_validate(self.fault_ratio)

    def apply_verdict(self, verdict: VerdictPayload) -> None:
        """Overwrite verdict fields; a new verdict always clears the penalty pick."""
        self.verdict_text = verdict.verdict_text
        self.verdict_json = verdict.model_dump(mode="json")
        self.penalties_json = verdict.penalties.model_dump(mode="json")
        self.fault_ratio = verdict.faultRatio.model_dump(mode="json")
        self.penalty_choice = None
        self.penalty_selected = None
        self.status = CaseStatus.VERDICT_READY
        self.verdict_at = datetime.utcnow()

    def role_of(self, user_id: int) -> Optional[PartyRole]:
        if user_id == self.plaintiff_id:
            return PartyRole.PLAINTIFF
        if user_id == self.defendant_id:
            return PartyRole.DEFENDANT
        return None

    def opponent_of(self, user_id: int) -> int:
        return self.defendant_id if user_id == self.plaintiff_id else self.plaintiff_id


class CaseSequence(Base):
    """Per-year counter backing case numbers"""
    __tablename__ = "case_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, default=0, nullable=False)


class Evidence(Base):
    """Evidence item; append-only"""
    __tablename__ = "evidences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    type = Column(Enum(EvidenceType, values_callable=lambda e: [m.value for m in e]),
                  default=EvidenceType.TEXT, nullable=False)
    text_content = Column(Text, nullable=True)
    file_path = Column(String(500), nullable=True)  # relative to UPLOAD_ROOT
    mime_type = Column(String(100), nullable=True)
    submitted_by = Column(Enum(PartyRole), nullable=False)
    stage = Column(Enum(EvidenceStage), default=EvidenceStage.INITIAL, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_evidences_case_role_stage", "case_id", "submitted_by", "stage"),
    )

    case = relationship("Case", back_populates="evidences")

    @property
    def content(self) -> str:
        return self.text_content or self.file_path or ""


class Defense(Base):
    """Defendant's statement; at most one per case"""
    __tablename__ = "defenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, unique=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    case = relationship("Case", back_populates="defense")


class Juror(Base):
    """Juror assignment and vote"""
    __tablename__ = "jurors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(JurorStatus), default=JurorStatus.INVITED, nullable=False)
    vote = Column(Enum(PartyRole), nullable=True)
    voted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("case_id", "user_id", name="uq_juror_case_user"),
    )

    case = relationship("Case", back_populates="jurors")
    user = relationship("User")


class Summons(Base):
    """Time-limited access token for an unauthenticated defendant"""
    __tablename__ = "summons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, unique=True)
    token = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    case = relationship("Case", back_populates="summons")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or datetime.utcnow())


class Notification(Base):
    """Notification outbox row"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    case_id = Column(Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=True)
    type = Column(String(50), nullable=False)
    message = Column(String(500), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notifications_user", "user_id", "created_at"),
    )
