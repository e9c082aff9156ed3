"""
Notification outbox.

Notifications are a side channel: they are written after the transition that
caused them has committed, and a failure to write one is logged and dropped.
It never undoes or fails the transition.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.models import Case, Notification
from .schemas import NotificationType

logger = logging.getLogger(__name__)

MESSAGES = {
    NotificationType.SUMMON: "You have been summoned to case {case_number}.",
    NotificationType.JUROR_INVITED: "You have been invited to sit on the jury for case {case_number}.",
    NotificationType.DEFENSE_SUBMITTED: "The defendant has answered case {case_number}.",
    NotificationType.VERDICT_COMPLETED: "The verdict for case {case_number} is in.",
    NotificationType.APPEAL_REQUESTED: "An appeal was filed in case {case_number}.",
    NotificationType.APPEAL_RESPONDED: "The other party answered your appeal in case {case_number}.",
    NotificationType.APPEAL_VERDICT_READY: "The appeal verdict for case {case_number} is in.",
}

LINK_SUFFIXES = {
    NotificationType.VERDICT_COMPLETED.value: "/verdict",
    NotificationType.JUROR_INVITED.value: "/jury",
    NotificationType.APPEAL_REQUESTED.value: "/appeal",
    NotificationType.APPEAL_VERDICT_READY.value: "/verdict",
}


def notification_link(type: str, case_id: Optional[int]) -> Optional[str]:
    """Front-end route a notification points at."""
    if case_id is None:
        return None
    return f"/case/{case_id}{LINK_SUFFIXES.get(type, '')}"


class NotificationEmitter:
    """Best-effort writer for the notifications table."""

    def __init__(self, session: Session):
        self.session = session

    def emit(self, case: Case, type: NotificationType, user_ids: Iterable[int], message: Optional[str] = None) -> int:
        """
        Write one notification per user and commit them.

        Returns the number written; 0 when the write failed.
        """
        user_ids = [uid for uid in user_ids if uid is not None]
        if not user_ids:
            return 0

        text = message or MESSAGES[type].format(case_number=case.case_number)
        try:
            for uid in user_ids:
                self.session.add(Notification(user_id=uid, case_id=case.id, type=type.value, message=text))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to write {type.value} notification for case {case.id}: {e}")
            return 0

        logger.info(f"Notified {len(user_ids)} user(s): {type.value} case={case.id}")
        return len(user_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_for(self, user_id: int) -> List[dict]:
        stmt = (
            select(Notification, Case.case_number, Case.title)
            .outerjoin(Case, Case.id == Notification.case_id)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        items = []
        for note, case_number, case_title in self.session.execute(stmt).all():
            items.append({
                "id": note.id,
                "userId": note.user_id,
                "caseId": note.case_id,
                "caseNumber": case_number,
                "caseTitle": case_title,
                "type": note.type,
                "message": note.message,
                "read": bool(note.is_read),
                "link": notification_link(note.type, note.case_id),
                "createdAt": note.created_at,
            })
        return items

    def mark_read(self, notification_id: int) -> bool:
        result = self.session.execute(
            update(Notification).where(Notification.id == notification_id).values(is_read=True)
        )
        self.session.commit()
        return result.rowcount > 0
