"""
세션 완료 -> 진행도(Progress) + 사용자 요약(UserProfile) 반영.

호출 순서 (한 번의 완료당 정확히 한 번):
    update_daily_activity -> record_completion -> update_skill_progress
    -> update_streak -> 업적 평가 -> UserProfile projection -> commit

예외는 그대로 올린다. 완료 응답을 실패시키지 않는 것은 호출자(ActivitySessionService)의 몫.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.progress import ActivityDelta, Progress, SkillDelta
from app.models.sessions import ActivitySession
from app.models.user_profile import UserProfile
from app.services.achievements import evaluate_achievements
from app.services.clock import as_utc, to_utc_day_key, to_utc_day_start, utcnow
from app.services.errors import InvalidParameters
from app.services.numbers import round_half_up

logger = logging.getLogger(__name__)

QUIZ_KINDS = ("quick_quiz", "mcq")


def session_minutes(session: ActivitySession) -> int:
    """답변별 소요 시간 합이 있으면 그것, 없으면 시작~완료 경과 시간."""
    answers = session.answers or {}
    seconds = sum(int(a.get("time_taken_sec") or 0) for a in answers.values() if isinstance(a, dict))
    if seconds <= 0:
        started = as_utc(session.started_at) or as_utc(session.created_at)
        completed = as_utc(session.completed_at)
        if started and completed and completed > started:
            seconds = (completed - started).total_seconds()
    return max(0, round_half_up(seconds / 60))


def _skill_deltas(session: ActivitySession, result: Dict) -> Dict[str, SkillDelta]:
    items = session.items or []
    answers = session.answers or {}
    percent = (result.get("score") or {}).get("percent", 0)

    if session.kind == "ai_interview":
        interview_type = (session.config or {}).get("interview_type") or "mixed"
        return {f"AI Interview ({interview_type})": SkillDelta(attempted=1, correct=0, score=percent)}

    tallies: Dict[str, Dict[str, int]] = defaultdict(lambda: {"attempted": 0, "correct": 0})
    for idx, item in enumerate(items):
        record = answers.get(str(idx))
        if not record:
            continue
        name = item.get("category") if session.kind in QUIZ_KINDS else f"Interview ({item.get('item_type')})"
        tallies[name]["attempted"] += 1
        if record.get("is_correct"):
            tallies[name]["correct"] += 1
    # 점수는 병합 후 누적 정답률로 계산 (score=None)
    return {name: SkillDelta(attempted=t["attempted"], correct=t["correct"]) for name, t in tallies.items()}


class StatsReconciler:
    def __init__(self, db: Session):
        self.db = db

    def get_or_create_progress(self, user_id: str) -> Progress:
        progress = self.db.query(Progress).filter(Progress.user_id == user_id).first()
        if progress is not None:
            return progress
        progress = Progress(user_id=user_id)
        self.db.add(progress)
        try:
            self.db.flush()
        except IntegrityError:
            # 동시에 다른 요청이 먼저 만든 경우
            self.db.rollback()
            progress = self.db.query(Progress).filter(Progress.user_id == user_id).one()
        return progress

    def record_start(self, user_id: str) -> None:
        profile = self.db.get(UserProfile, user_id)
        if profile is None:
            return
        profile.total_sessions = (profile.total_sessions or 0) + 1
        self.db.commit()

    def reconcile(self, session: ActivitySession, now: Optional[datetime] = None) -> Progress:
        now = now or utcnow()
        result = session.result or {}
        score = result.get("score") or {}
        percent = int(score.get("percent") or 0)
        answered = len(session.answers or {})
        correct = int(score.get("correct") or 0) if session.kind != "ai_interview" else 0
        minutes = session_minutes(session)

        progress = self.get_or_create_progress(session.user_id)
        progress.update_daily_activity(
            now,
            ActivityDelta(
                sessions_completed=1,
                items_attempted=answered,
                time_spent_minutes=minutes,
                average_score=percent,
            ),
            now=now,
        )
        progress.record_completion(percent, attempted=answered, correct=correct, minutes=minutes)
        for skill_name, delta in _skill_deltas(session, result).items():
            progress.update_skill_progress(skill_name, delta, now=now)
        progress.update_streak(now=now)
        unlocked = evaluate_achievements(progress, percent=percent, now=now)

        profile = self.db.get(UserProfile, session.user_id)
        if profile is not None:
            profile.completed_sessions = (profile.completed_sessions or 0) + 1
            profile.average_score = progress.average_score
            profile.streak_days = progress.current_streak
            profile.last_active_at = now

        self.db.commit()
        logger.info(
            "[STATS] reconciled session_id=%s user_id=%s percent=%s streak=%s unlocked=%s",
            session.id, session.user_id, percent, progress.current_streak, unlocked,
        )
        return progress

    def check_in(self, user_id: str, now: Optional[datetime] = None) -> int:
        """로그인 기록 + 연속 학습일 재계산. 갱신된 streak을 돌려준다."""
        now = now or utcnow()
        progress = self.get_or_create_progress(user_id)
        progress.update_daily_activity(now, ActivityDelta(logins=1), now=now)
        streak = progress.update_streak(now=now)
        evaluate_achievements(progress, now=now)

        profile = self.db.get(UserProfile, user_id)
        if profile is not None:
            profile.streak_days = streak
            profile.last_active_at = now
        self.db.commit()
        logger.info("[STATS] check-in user_id=%s streak=%s", user_id, streak)
        return streak

    def analytics(self, user_id: str, timeframe_days: int = 30, now: Optional[datetime] = None) -> Dict:
        """
        최근 timeframe_days 일(오늘 포함) 기준 분석 뷰. 읽기 전용.
        - trends.daily_activity: 기간 안의 일별 버킷
        - trends.score_progression: 기간 안에 완료된 세션 점수, 최신순
        - skills: 상위 5개, 60점 미만 중 낮은 3개
        """
        if timeframe_days < 1:
            raise InvalidParameters("timeframe must be at least 1 day")
        now = now or utcnow()
        since = to_utc_day_start(now - timedelta(days=timeframe_days - 1))
        progress = self.get_or_create_progress(user_id)

        completed = (
            self.db.query(ActivitySession)
            .filter(ActivitySession.user_id == user_id, ActivitySession.state == "completed")
            .all()
        )
        trend = []
        for s in completed:
            completed_at = as_utc(s.completed_at)
            if completed_at is None or completed_at < since:
                continue
            score = (s.result or {}).get("score") or {}
            trend.append({
                "session_id": s.id,
                "date": completed_at.isoformat(),
                "score": int(score.get("percent") or 0),
                "type": s.kind,
            })
        trend.sort(key=lambda p: p["date"], reverse=True)

        return {
            "timeframe": timeframe_days,
            "overview": {
                "completed_sessions": progress.completed_sessions,
                "average_score": progress.average_score,
                "current_streak": progress.current_streak,
                "accuracy_percentage": progress.accuracy_percentage,
            },
            "trends": {
                "daily_activity": [b.to_dict() for b in progress.activity_since(to_utc_day_key(since))],
                "score_progression": trend,
            },
            "skills": {
                "top_skills": [s.to_dict() for s in progress.top_skills()],
                "improvement_areas": [s.to_dict() for s in progress.improvement_areas()],
            },
        }
