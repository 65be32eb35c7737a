# app/deps.py
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.db.base import SessionLocal
from app.models.user_profile import UserProfile
from app.services.activity_sessions import ActivitySessionService
from app.services.ai_interviewer import AIInterviewer
from app.services.answer_eval import AnswerEvaluationService
from app.services.auth import verify_bearer
from app.services.code_execution import Judge0Executor
from app.services.conversation_store import InMemoryConversationStore, conversation_store
from app.services.item_pool import SqlItemPool
from app.services.session_store import SqlSessionStore
from app.services.stats_reconciliation import StatsReconciler
from app.services.text_generation import TextGenerator

# ----------------------------
# DB 세션
# ----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# ----------------------------
# 현재 사용자 가져오기
# ----------------------------
def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """토큰의 sub로 UserProfile을 찾고, 없으면 만든다."""
    try:
        claims = verify_bearer(authorization)
    except ValueError:
        raise HTTPException(status_code=401, detail={"message": "unauthorized", "detail": "invalid or missing token"})

    prof = db.get(UserProfile, claims["user_id"])
    if prof is None:
        prof = UserProfile(id=claims["user_id"], display_name=claims.get("name"), status="active")
        db.add(prof)
        db.commit()
        db.refresh(prof)

    if prof.status != "active":
        raise HTTPException(status_code=403, detail={"message": "forbidden", "detail": f"account is {prof.status}"})

    return {
        "id": claims["user_id"],
        "role": claims.get("role"),
        "profile": prof,
    }


def require_admin(current=Depends(get_current_user)):
    if current["role"] != "admin":
        raise HTTPException(status_code=403, detail={"message": "forbidden", "detail": "admin only"})
    return current

# ----------------------------
# 협력자 (프로세스 단위 1개)
# ----------------------------
@lru_cache
def get_text_generator() -> TextGenerator:
    return TextGenerator()


@lru_cache
def get_executor() -> Judge0Executor:
    return Judge0Executor()


def get_conversation_store() -> InMemoryConversationStore:
    return conversation_store


def get_interviewer(
    store: InMemoryConversationStore = Depends(get_conversation_store),
    generator: TextGenerator = Depends(get_text_generator),
) -> AIInterviewer:
    return AIInterviewer(store, generator)

# ----------------------------
# 요청 단위 서비스
# ----------------------------
def get_session_service(
    db: Session = Depends(get_db),
    interviewer: AIInterviewer = Depends(get_interviewer),
    generator: TextGenerator = Depends(get_text_generator),
    executor: Judge0Executor = Depends(get_executor),
) -> ActivitySessionService:
    return ActivitySessionService(
        store=SqlSessionStore(db),
        pool=SqlItemPool(db),
        reconciler=StatsReconciler(db),
        interviewer=interviewer,
        evaluator=AnswerEvaluationService(generator),
        executor=executor,
    )


def get_reconciler(db: Session = Depends(get_db)) -> StatsReconciler:
    return StatsReconciler(db)
