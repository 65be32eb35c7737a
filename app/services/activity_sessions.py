"""
ActivitySession 상태 머신: created -> in_progress -> {completed | abandoned}

동시성 계약
- complete(): 조건부 UPDATE로 state=completed 전이를 먼저 하고, 전이 시점에 저장된 answers로
  채점해서 result를 기록한다. 채점이 실패하면 전이를 되돌린다.
  전이에 실패하면(다른 요청이 먼저 완료) 재조회해서 저장된 결과를 idempotent=True로 돌려준다.
  result가 아직 기록 중이면 RESULT_WAIT_SECONDS 동안 기다리고, 넘기면 ConcurrentStateConflict.
- 통계 반영(StatsReconciler)은 CAS에 성공한 요청에서만, 정확히 한 번 호출된다.
  실패는 로그만 남기고 완료 응답은 그대로 성공시킨다.

답변 정책
- quick_quiz, mcq: 먼저 기록된 답변 유지 (first-write-wins)
- structured_interview, ai_interview: 덮어쓰기 (최종 제출 전 수정 허용)
"""
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.config import settings
from app.models.sessions import ACTIVE_STATES, ActivitySession
from app.schemas.sessions import (
    AIInterviewConfig,
    AnswerResult,
    McqConfig,
    QuickQuizConfig,
    SessionResult,
    SessionScore,
    StructuredInterviewConfig,
    parse_session_config,
)
from app.services import grading
from app.services.ai_interviewer import opening_question_for
from app.services.clock import as_utc, utcnow
from app.services.errors import (
    AccessDenied,
    ConcurrentStateConflict,
    InvalidParameters,
    SessionNotActive,
    SessionNotFound,
)

logger = logging.getLogger(__name__)

QUIZ_KINDS = ("quick_quiz", "mcq")

RESULT_WAIT_SECONDS = 2.0
RESULT_POLL_SECONDS = 0.02

STRUCTURED_ITEM_TYPES = {
    "coding": ["coding"],
    "behavioral": ["behavioral"],
    "technical": ["technical"],
    "mixed": ["coding", "behavioral", "technical"],
}


def answer_history(session: ActivitySession) -> List[Dict[str, Any]]:
    """AI 면접 답변 기록을 턴 순서대로."""
    answers = session.answers or {}
    return [answers[k] for k in sorted(answers, key=int)]


class ActivitySessionService:
    def __init__(
        self,
        store,
        pool=None,
        reconciler=None,
        interviewer=None,
        evaluator=None,
        executor=None,
    ):
        self.store = store
        self.pool = pool
        self.reconciler = reconciler
        self.interviewer = interviewer
        self.evaluator = evaluator
        self.executor = executor

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_owned(self, user_id: str, session_id: str) -> ActivitySession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(f"session {session_id} not found")
        if session.user_id != user_id:
            raise AccessDenied("session belongs to another user")
        return session

    def list_sessions(self, user_id: str, kind: Optional[str] = None) -> List[ActivitySession]:
        return self.store.list_for_owner(user_id, kind)

    # ------------------------------------------------------------------
    # 시작
    # ------------------------------------------------------------------

    def _sample_items(self, config) -> List[Dict]:
        if isinstance(config, QuickQuizConfig):
            if config.count not in settings.quick_practice_counts:
                raise InvalidParameters(f"count must be one of {settings.quick_practice_counts}")
            categories = config.categories or settings.quick_practice_default_categories
            unknown = [c for c in categories if c not in settings.quick_practice_categories]
            if unknown:
                raise InvalidParameters(f"unknown categories: {unknown}")
            return self.pool.sample(["mcq"], config.count, categories)
        if isinstance(config, McqConfig):
            return self.pool.sample(["mcq"], config.count, [config.category], config.difficulty)
        if isinstance(config, StructuredInterviewConfig):
            types = STRUCTURED_ITEM_TYPES[config.interview_type]
            return self.pool.sample(types, config.question_count, None, config.difficulty)
        return []

    def start(self, user_id: str, config) -> ActivitySession:
        items = self._sample_items(config)

        if isinstance(config, AIInterviewConfig):
            opening = config.opening_question or opening_question_for(config)
            config = config.model_copy(update={"opening_question": opening, "current_question": opening})

        session = ActivitySession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            kind=config.kind,
            state="created",
            config=config.model_dump(mode="json"),
            items=items,
            answers={},
        )
        session = self.store.add(session)
        if self.reconciler is not None:
            self.reconciler.record_start(user_id)

        if isinstance(config, AIInterviewConfig):
            self.interviewer.initialize(session.id, config)

        logger.info("[SESSION] started session_id=%s user_id=%s kind=%s items=%s",
                    session.id, user_id, session.kind, len(items))
        return self.touch(session)

    def touch(self, session: ActivitySession) -> ActivitySession:
        """created -> in_progress. 이미 in_progress면 그대로."""
        if session.state == "in_progress":
            return session
        if session.state != "created":
            raise SessionNotActive(f"session is {session.state}")
        ok, current = self.store.update_in_state(
            session.id, ["created"], state="in_progress", started_at=utcnow()
        )
        if current is None:
            raise SessionNotFound(f"session {session.id} not found")
        if not ok and current.state != "in_progress":
            raise SessionNotActive(f"session is {current.state}")
        return current

    # ------------------------------------------------------------------
    # 답변
    # ------------------------------------------------------------------

    def _require_in_progress(self, session: ActivitySession) -> None:
        if session.state != "in_progress":
            raise SessionNotActive(f"session is {session.state}")

    def _item_at(self, session: ActivitySession, item_index: int) -> Dict:
        items = session.items or []
        if not 0 <= item_index < len(items):
            raise InvalidParameters(f"item_index out of range: {item_index}")
        return items[item_index]

    def _grade(self, session: ActivitySession, item: Dict, answer, language: Optional[str]) -> Dict:
        item_type = item.get("item_type")
        if item_type == "mcq":
            return grading.grade_choice(item, answer)
        if item_type == "coding":
            lang = language or (session.config or {}).get("language") or "python"
            return grading.grade_coding(self.executor, item, answer, lang)
        return grading.grade_freeform(self.evaluator, item, answer)

    def _write_answers(self, session_id: str, answers: Dict) -> ActivitySession:
        ok, current = self.store.update_in_state(session_id, ["in_progress"], answers=answers)
        if not ok:
            raise SessionNotActive(f"session is {current.state if current else 'missing'}")
        return current

    def submit_answer(
        self,
        user_id: str,
        session_id: str,
        item_index: int,
        answer,
        language: Optional[str] = None,
        time_taken_sec: int = 0,
    ) -> AnswerResult:
        session = self.get_owned(user_id, session_id)
        self._require_in_progress(session)

        if session.kind == "ai_interview":
            return self._revise_ai_answer(session, item_index, answer)

        item = self._item_at(session, item_index)
        key = str(item_index)
        answers = dict(session.answers or {})

        if session.kind in QUIZ_KINDS and key in answers:
            previous = answers[key]
            logger.info("[SESSION] duplicate answer ignored session_id=%s item_index=%s", session_id, item_index)
            return AnswerResult(
                item_index=item_index,
                is_correct=bool(previous.get("is_correct")),
                explanation=previous.get("explanation", ""),
                score=previous.get("score"),
                already_answered=True,
            )

        record = self._grade(session, item, answer, language)
        record["time_taken_sec"] = int(time_taken_sec or 0)
        answers[key] = record
        self._write_answers(session_id, answers)

        logger.info("[SESSION] answer session_id=%s item_index=%s correct=%s",
                    session_id, item_index, record.get("is_correct"))
        return AnswerResult(
            item_index=item_index,
            is_correct=bool(record.get("is_correct")),
            explanation=record.get("explanation", ""),
            score=record.get("score"),
            evaluation={k: v for k, v in record.items() if k in ("status", "passed", "total", "results", "evaluation")},
        )

    def _revise_ai_answer(self, session: ActivitySession, item_index: int, answer) -> AnswerResult:
        """이미 진행된 턴의 답변 텍스트만 수정. 새 턴은 respond()로."""
        history = answer_history(session)
        if not isinstance(answer, str) or not answer.strip():
            raise InvalidParameters("interview answer must be text")
        if item_index < 0 or item_index >= len(history):
            raise InvalidParameters("new interview turns must be submitted through respond")
        answers = dict(session.answers or {})
        answers[str(item_index)] = {**answers[str(item_index)], "response": answer}
        self._write_answers(session.id, answers)
        return AnswerResult(item_index=item_index, is_correct=False, explanation="answer revised")

    def respond(self, user_id: str, session_id: str, utterance: str) -> Dict[str, Any]:
        session = self.get_owned(user_id, session_id)
        if session.kind != "ai_interview":
            raise InvalidParameters("respond is only available for ai_interview sessions")
        self._require_in_progress(session)

        config = parse_session_config(session.config)
        history = answer_history(session)
        if len(history) >= self.interviewer.question_budget:
            raise InvalidParameters("all interview questions have been answered; complete the session")

        asked = config.last_question
        self.interviewer.ensure_session(session_id, config, history)
        turn = self.interviewer.process_turn(session_id, utterance)

        answers = dict(session.answers or {})
        answers[str(len(history))] = {
            "question": asked,
            "response": utterance,
            "analysis": turn.analysis,
        }
        new_config = config.model_copy(
            update={"current_question": turn.next_question or config.current_question}
        ).model_dump(mode="json")

        ok, current = self.store.update_in_state(
            session_id, ["in_progress"], answers=answers, config=new_config
        )
        if not ok:
            raise SessionNotActive(f"session is {current.state if current else 'missing'}")

        return {
            "session_id": session_id,
            "analysis": turn.analysis,
            "next_question": turn.next_question,
            "question_number": turn.question_number,
            "total_questions": turn.total_questions,
            "is_complete": turn.is_complete,
            "scores": turn.scores,
        }

    def interview_status(self, user_id: str, session_id: str) -> Dict[str, Any]:
        session = self.get_owned(user_id, session_id)
        if session.kind != "ai_interview":
            raise InvalidParameters("not an ai_interview session")
        status = self.interviewer.status(session_id)
        if status is None:
            # 캐시에 없으면 durable shadow로 구성
            config = parse_session_config(session.config)
            answered = len(session.answers or {})
            status = {
                "session_id": session_id,
                "current_question": config.last_question,
                "question_number": min(answered + 1, self.interviewer.question_budget),
                "total_questions": self.interviewer.question_budget,
                "scores": None,
                "turns": answered,
            }
        status["state"] = session.state
        return status

    # ------------------------------------------------------------------
    # 완료
    # ------------------------------------------------------------------

    def _merge_batch(self, session: ActivitySession, batch: Iterable) -> Dict:
        answers = dict(session.answers or {})
        for entry in batch or []:
            item = self._item_at(session, entry.item_index)
            key = str(entry.item_index)
            if key in answers:
                continue
            answers[key] = grading.grade_choice(item, entry.answer)
        return answers

    def _score(self, session: ActivitySession, answers: Dict) -> Dict[str, Any]:
        if session.kind in QUIZ_KINDS:
            score, review = grading.score_choice_session(session.items or [], answers)
            return {"score": score.model_dump(), "review": review, "summary": None}

        if session.kind == "structured_interview":
            score, review = grading.score_structured_session(session.items or [], answers)
            return {"score": score.model_dump(), "review": review, "summary": None}

        config = parse_session_config(session.config)
        history = answer_history(session)
        self.interviewer.ensure_session(session.id, config, history)
        summary = self.interviewer.summarize(session.id)
        score = SessionScore(
            correct=0,
            total=len(history),
            percent=summary["overall_score"],
            breakdown=summary["scores"],
        )
        return {"score": score.model_dump(), "review": [], "summary": summary}

    def _to_result(self, session: ActivitySession, idempotent: bool) -> SessionResult:
        result = session.result or {}
        return SessionResult(
            session_id=session.id,
            kind=session.kind,
            state=session.state,
            score=SessionScore(**(result.get("score") or {})),
            completed_at=as_utc(session.completed_at),
            idempotent=idempotent,
            review=result.get("review") or [],
            summary=result.get("summary"),
        )

    def _stored_result(self, session: ActivitySession) -> SessionResult:
        """completed 세션의 저장된 결과. 채점이 아직 기록 중이면 잠깐 기다린다."""
        deadline = time.monotonic() + RESULT_WAIT_SECONDS
        current = session
        while current is not None and current.state == "completed" and current.result is None:
            if time.monotonic() >= deadline:
                raise ConcurrentStateConflict("session completion is still being scored")
            time.sleep(RESULT_POLL_SECONDS)
            current = self.store.get(session.id)
        if current is None or current.state != "completed":
            raise ConcurrentStateConflict(
                f"session state changed concurrently to {current.state if current else 'missing'}"
            )
        return self._to_result(current, idempotent=True)

    def complete(self, user_id: str, session_id: str, batch_answers: Optional[Iterable] = None) -> SessionResult:
        session = self.get_owned(user_id, session_id)
        if session.state == "completed":
            return self._stored_result(session)
        if session.state == "abandoned":
            raise SessionNotActive("session was abandoned")

        values: Dict[str, Any] = {}
        if batch_answers:
            if session.kind not in QUIZ_KINDS:
                raise InvalidParameters("batch answers are only accepted for quiz sessions")
            values["answers"] = self._merge_batch(session, batch_answers)

        ok, current = self.store.compare_and_swap_state(
            session_id,
            ACTIVE_STATES,
            "completed",
            completed_at=utcnow(),
            **values,
        )

        if not ok:
            if current is not None and current.state == "completed":
                logger.info("[SESSION] complete lost race, returning stored result session_id=%s", session_id)
                return self._stored_result(current)
            raise ConcurrentStateConflict(
                f"session state changed concurrently to {current.state if current else 'missing'}"
            )

        # 전이 이후 answers는 더 이상 바뀌지 않으므로 저장된 값으로 채점한다
        try:
            payload = self._score(current, current.answers or {})
        except Exception:
            self.store.compare_and_swap_state(session_id, ["completed"], session.state, completed_at=None)
            raise
        ok, current = self.store.update_in_state(session_id, ["completed"], result=payload)
        if not ok:
            raise ConcurrentStateConflict(
                f"session state changed concurrently to {current.state if current else 'missing'}"
            )

        logger.info("[SESSION] completed session_id=%s kind=%s percent=%s",
                    session_id, current.kind, payload["score"]["percent"])
        self._reconcile(current)
        return self._to_result(current, idempotent=False)

    def _reconcile(self, session: ActivitySession) -> None:
        if self.reconciler is None:
            return
        try:
            self.reconciler.reconcile(session)
        except Exception:
            # 통계는 부가 효과. 완료 응답은 실패시키지 않는다
            logger.exception("[SESSION] stats reconciliation failed session_id=%s", session.id)
            self.reconciler.db.rollback()

    def get_result(self, user_id: str, session_id: str) -> SessionResult:
        session = self.get_owned(user_id, session_id)
        if session.state != "completed":
            raise SessionNotActive(f"session is {session.state}; no result yet")
        return self._stored_result(session).model_copy(update={"idempotent": False})

    # ------------------------------------------------------------------
    # 중단
    # ------------------------------------------------------------------

    def _abandon(self, session_id: str) -> bool:
        ok, current = self.store.compare_and_swap_state(session_id, ACTIVE_STATES, "abandoned")
        if ok and current is not None and current.kind == "ai_interview" and self.interviewer is not None:
            self.interviewer.store.evict(session_id)
        return ok

    def abandon(self, user_id: str, session_id: str) -> ActivitySession:
        session = self.get_owned(user_id, session_id)
        if session.state == "abandoned":
            return session
        if session.state == "completed":
            raise SessionNotActive("session already completed")
        if not self._abandon(session_id):
            current = self.store.get(session_id)
            if current is None or current.state != "abandoned":
                raise SessionNotActive(f"session is {current.state if current else 'missing'}")
        logger.info("[SESSION] abandoned session_id=%s", session_id)
        return self.store.get(session_id)

    def sweep_stale(self, older_than_minutes: Optional[int] = None, now=None) -> List[str]:
        minutes = older_than_minutes or settings.stale_session_minutes
        cutoff = (now or utcnow()) - timedelta(minutes=minutes)
        abandoned = [sid for sid in self.store.list_stale_ids(ACTIVE_STATES, cutoff) if self._abandon(sid)]
        logger.info("[SESSION] sweep cutoff=%s abandoned=%s", cutoff.isoformat(), len(abandoned))
        return abandoned
