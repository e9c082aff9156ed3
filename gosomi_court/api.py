"""
Gosomi Court API
================

FastAPI endpoints for the mock court.

Case lifecycle:
- POST /cases                        - File a case
- GET  /cases                        - List / search cases
- GET  /cases/stats                  - Home screen counters
- GET  /cases/{id}                   - Case detail
- POST /cases/{id}/defense           - Submit defense
- POST /cases/{id}/evidence          - Add evidence
- POST /cases/{id}/verdict           - Request (or fetch cached) verdict
- POST /cases/{id}/jury/vote         - Juror vote
- POST /cases/{id}/penalty           - Pick penalty category
- POST /cases/{id}/appeal            - Request appeal
- POST /cases/{id}/appeal/defense    - Answer appeal
- POST /cases/{id}/appeal/verdict    - Final (appeal) verdict

Summons:
- POST /cases/{id}/summon            - Issue / fetch summons token
- POST /summons/{token}/defense      - Defense via token
- POST /summons/{token}/evidence     - Evidence via token

Other:
- GET  /jury/cases?userId=           - Open cases the user sits on
- GET  /users/{id}/stats             - Win statistics
- GET  /notifications?userId=        - Notifications with links
- POST /notifications/{id}/read      - Mark read
- GET  /health                       - Health check

Every route is served at the root and again under /api.

Run with:
    uvicorn gosomi_court.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import get_settings
from .db.session import get_db, init_db
from .errors import CourtError, ValidationFailed
from .llm import JudgeClient, get_judge
from .notifications import NotificationEmitter
from .schemas import (
    AddEvidenceRequest,
    AppealDefenseRequest,
    AppealRequest,
    CreateCaseRequest,
    DefenseRequest,
    HealthResponse,
    JuryVoteRequest,
    PenaltyOutcome,
    PenaltyRequest,
    VerdictOutcome,
)
from .state_machine import CaseStateMachine
from .views import evidence_view
from .win_rate import user_stats

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Gosomi Court",
    description="Mock court for everyday disputes between friends",
    version=get_settings().service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)


def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins


CORS_ALLOW_ORIGINS = _parse_cors_origins(get_settings().cors_allow_origins)
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

router = APIRouter(tags=["court"])


# =============================================================================
# Dependencies
# =============================================================================

def get_judge_client() -> JudgeClient:
    """Judge used for verdicts; overridden in tests."""
    return get_judge()


def get_state_machine(db: Session = Depends(get_db)) -> CaseStateMachine:
    return CaseStateMachine(db)


# =============================================================================
# Cases
# =============================================================================

@router.post("/cases", status_code=201)
async def create_case(req: CreateCaseRequest, court: CaseStateMachine = Depends(get_state_machine)):
    case = court.create_case(req)
    return {
        "ok": True,
        "caseId": case.id,
        "caseNumber": case.case_number,
        "title": case.title,
        "status": case.status.value,
    }


@router.get("/cases")
async def list_cases(
    q: Optional[str] = None,
    userId: Optional[int] = None,
    status: Optional[str] = None,
    court: CaseStateMachine = Depends(get_state_machine),
):
    return {"ok": True, "data": court.list_cases(q=q, user_id=userId, status=status)}


@router.get("/cases/stats")
async def case_stats(court: CaseStateMachine = Depends(get_state_machine)):
    return {"ok": True, "stats": court.stats()}


@router.get("/cases/{case_id}")
async def get_case(
    case_id: int,
    userId: Optional[int] = None,
    court: CaseStateMachine = Depends(get_state_machine),
):
    return court.get_case_detail(case_id, user_id=userId)


@router.post("/cases/{case_id}/defense")
async def submit_defense(
    case_id: int,
    req: DefenseRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    case = court.submit_defense(case_id, req)
    return {"ok": True, "caseId": case.id}


@router.post("/cases/{case_id}/evidence", status_code=201)
async def add_evidence(
    case_id: int,
    req: AddEvidenceRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    evidence = court.add_evidence(case_id, req)
    return {"ok": True, "caseId": case_id, "evidence": evidence_view(evidence)}


@router.post("/cases/{case_id}/verdict", response_model=VerdictOutcome)
async def request_verdict(
    case_id: int,
    court: CaseStateMachine = Depends(get_state_machine),
    judge: JudgeClient = Depends(get_judge_client),
):
    return await court.request_verdict(case_id, judge)


@router.post("/cases/{case_id}/jury/vote")
async def jury_vote(
    case_id: int,
    req: JuryVoteRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    court.cast_jury_vote(case_id, req)
    return {"ok": True}


@router.post("/cases/{case_id}/penalty", response_model=PenaltyOutcome)
async def select_penalty(
    case_id: int,
    req: PenaltyRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    return court.select_penalty(case_id, req)


# =============================================================================
# Appeals
# =============================================================================

@router.post("/cases/{case_id}/appeal")
async def request_appeal(
    case_id: int,
    req: AppealRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    case = court.request_appeal(case_id, req)
    return {"ok": True, "caseId": case.id, "status": case.appeal_status.value}


@router.post("/cases/{case_id}/appeal/defense")
async def submit_appeal_defense(
    case_id: int,
    req: AppealDefenseRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    case = court.submit_appeal_defense(case_id, req)
    return {"ok": True, "caseId": case.id, "status": case.appeal_status.value}


@router.post("/cases/{case_id}/appeal/verdict", response_model=VerdictOutcome)
async def request_appeal_verdict(
    case_id: int,
    court: CaseStateMachine = Depends(get_state_machine),
    judge: JudgeClient = Depends(get_judge_client),
):
    return await court.request_appeal_verdict(case_id, judge)


# =============================================================================
# Summons
# =============================================================================

@router.post("/cases/{case_id}/summon", status_code=201)
async def issue_summons(case_id: int, court: CaseStateMachine = Depends(get_state_machine)):
    summons, created = court.issue_summons(case_id)
    return {
        "ok": True,
        "caseId": summons.case_id,
        "token": summons.token,
        "expiresAt": summons.expires_at,
        "created": created,
    }


@router.post("/summons/{token}/defense", status_code=201)
async def submit_defense_by_token(
    token: str,
    req: DefenseRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    case = court.submit_defense_by_token(token, req)
    return {"ok": True, "caseId": case.id}


@router.post("/summons/{token}/evidence", status_code=201)
async def add_evidence_by_token(
    token: str,
    req: AddEvidenceRequest,
    court: CaseStateMachine = Depends(get_state_machine),
):
    evidence = court.add_evidence_by_token(token, req)
    return {"ok": True, "caseId": evidence.case_id, "evidence": evidence_view(evidence)}


# =============================================================================
# Jury, users, notifications
# =============================================================================

@router.get("/jury/cases")
async def jury_cases(
    userId: Optional[int] = Query(None),
    court: CaseStateMachine = Depends(get_state_machine),
):
    if not userId:
        raise ValidationFailed("userId is required")
    return {"ok": True, "data": court.jury_cases(userId)}


@router.get("/users/{user_id}/stats")
async def get_user_stats(user_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "stats": user_stats(db, user_id)}


@router.get("/notifications")
async def list_notifications(userId: Optional[int] = Query(None), db: Session = Depends(get_db)):
    if not userId:
        raise ValidationFailed("userId required")
    return {"ok": True, "data": NotificationEmitter(db).list_for(userId)}


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: int, db: Session = Depends(get_db)):
    NotificationEmitter(db).mark_read(notification_id)
    return {"ok": True}


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        judge_mode=settings.judge_mode,
        timestamp=datetime.utcnow(),
    )


app.include_router(router)
app.include_router(router, prefix="/api")


# =============================================================================
# Startup/Shutdown
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting Gosomi Court v{settings.service_version}")
    logger.info(f"Judge mode: {settings.judge_mode.value}")
    for warning in settings.validate_judge_config():
        logger.warning(warning)
    init_db()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await get_judge().close()
    logger.info("Gosomi Court stopped")


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(CourtError)
async def court_error_handler(request: Request, exc: CourtError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and params are plain 400s, like every other input error."""
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "invalid request", "details": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return valid JSON"""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc.__class__.__name__)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gosomi_court.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
