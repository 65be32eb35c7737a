# app/routers/ai_interview.py
# AI 면접: 시작 -> 응답(턴) 반복 -> 완료(요약)
from fastapi import APIRouter, Depends

from app.deps import get_current_user, get_session_service
from app.schemas.sessions import (
    AIInterviewConfig,
    AIInterviewStartResponse,
    RespondRequest,
    SessionResult,
    TurnResponse,
)
from app.services.activity_sessions import ActivitySessionService

router = APIRouter(prefix="/api/ai-interview", tags=["ai-interview"])


@router.post("/start", response_model=AIInterviewStartResponse, status_code=201)
def start_interview(
    payload: AIInterviewConfig,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    session = service.start(current["id"], payload)
    return AIInterviewStartResponse(
        session_id=session.id,
        question=session.config["opening_question"],
        total_questions=service.interviewer.question_budget,
        estimated_duration=payload.profile.duration_minutes if payload.profile else 45,
    )


@router.post("/{session_id}/respond", response_model=TurnResponse)
def respond(
    session_id: str,
    payload: RespondRequest,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return service.respond(current["id"], session_id, payload.response)


@router.get("/{session_id}")
def interview_status(
    session_id: str,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return service.interview_status(current["id"], session_id)


@router.post("/{session_id}/complete", response_model=SessionResult)
def complete_interview(
    session_id: str,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return service.complete(current["id"], session_id)
