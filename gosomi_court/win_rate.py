"""
Win-rate aggregation.

A party wins a completed case when the opponent carries strictly more fault.
Win rate = wins / completed cases * 100, rounded to 2 places; 50.0 when the
user has no completed cases.
"""

import logging
from typing import Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .db.models import Case
from .errors import NotFound
from .repositories import CaseRepository

logger = logging.getLogger(__name__)

DEFAULT_WIN_RATE = 50.0


def outcome_for(case: Case, user_id: int) -> Optional[str]:
    """'win', 'loss', 'tie', or None when the fault ratio is unusable."""
    try:
        ratio = case.fault_ratio_value
    except ValidationError:
        logger.warning(f"Case {case.id} has an invalid fault ratio; not counted as a win")
        return None
    if ratio is None:
        return None

    mine, theirs = (
        (ratio.plaintiff, ratio.defendant) if case.plaintiff_id == user_id
        else (ratio.defendant, ratio.plaintiff)
    )
    if theirs > mine:
        return "win"
    if mine > theirs:
        return "loss"
    return "tie"


def compute_win_rate(session: Session, user_id: int) -> float:
    cases = CaseRepository(session).completed_cases_for(user_id)
    if not cases:
        return DEFAULT_WIN_RATE
    wins = sum(1 for c in cases if outcome_for(c, user_id) == "win")
    return round(wins / len(cases) * 100, 2)


def update_user_win_rate(session: Session, user_id: int) -> float:
    """Recompute and store a user's win rate. Does not commit."""
    user = CaseRepository(session).get_user(user_id)
    if user is None:
        raise NotFound("user not found", userId=user_id)

    user.win_rate = compute_win_rate(session, user_id)
    session.flush()
    logger.info(f"Updated win rate for user {user_id}: {user.win_rate}%")
    return user.win_rate


def update_win_rates_for_case(session: Session, case: Case) -> None:
    """Recompute both parties' win rates and commit."""
    update_user_win_rate(session, case.plaintiff_id)
    update_user_win_rate(session, case.defendant_id)
    session.commit()


def user_stats(session: Session, user_id: int) -> Dict:
    """Read-only summary of a user's completed cases."""
    repo = CaseRepository(session)
    user = repo.get_user(user_id)
    if user is None:
        raise NotFound("user not found", userId=user_id)

    counts = {"win": 0, "loss": 0, "tie": 0}
    cases = repo.completed_cases_for(user_id)
    for case in cases:
        outcome = outcome_for(case, user_id)
        if outcome:
            counts[outcome] += 1

    return {
        "userId": user.id,
        "nickname": user.nickname,
        "total": len(cases),
        "wins": counts["win"],
        "losses": counts["loss"],
        "ties": counts["tie"],
        "winRate": user.win_rate,
    }
