# app/routers/sessions.py
# 연습 세션(quick_quiz | mcq | structured_interview | ai_interview) 공통 라우트
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_current_user, get_session_service
from app.schemas.sessions import (
    AnswerResult,
    CompleteSessionRequest,
    SessionListItem,
    SessionResult,
    SessionView,
    StartSessionRequest,
    SubmitAnswerRequest,
)
from app.services.activity_sessions import ActivitySessionService

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/start", response_model=SessionView, status_code=201)
def start_session(
    payload: StartSessionRequest,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    session = service.start(current["id"], payload.config)
    return SessionView.from_model(session)


@router.get("", response_model=List[SessionListItem])
def list_sessions(
    kind: Optional[str] = Query(None),
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return [SessionListItem.from_model(s) for s in service.list_sessions(current["id"], kind)]


@router.get("/{session_id}", response_model=SessionView)
def get_session(
    session_id: str,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return SessionView.from_model(service.get_owned(current["id"], session_id))


@router.post("/{session_id}/answers", response_model=AnswerResult)
def submit_answer(
    session_id: str,
    payload: SubmitAnswerRequest,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return service.submit_answer(
        current["id"],
        session_id,
        payload.item_index,
        payload.answer,
        language=payload.language,
        time_taken_sec=payload.time_taken_sec,
    )


@router.post("/{session_id}/complete", response_model=SessionResult)
def complete_session(
    session_id: str,
    payload: Optional[CompleteSessionRequest] = None,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    batch = payload.answers if payload else None
    return service.complete(current["id"], session_id, batch)


@router.get("/{session_id}/result", response_model=SessionResult)
def get_session_result(
    session_id: str,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return service.get_result(current["id"], session_id)


@router.post("/{session_id}/abandon", response_model=SessionView)
def abandon_session(
    session_id: str,
    current=Depends(get_current_user),
    service: ActivitySessionService = Depends(get_session_service),
):
    return SessionView.from_model(service.abandon(current["id"], session_id))
