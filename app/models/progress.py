# app/models/progress.py
# 사용자별 누적 진행도(Aggregate Record).
# 네 가지 갱신 연산(update_daily_activity / update_skill_progress / update_streak /
# unlock_achievement)은 메모리 상의 객체만 바꾸고, commit은 호출자가 한다.
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    Float,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from app.db.session import Base
from app.services.clock import utcnow, to_utc_day_key, to_utc_day_start, previous_day_key
from app.services.errors import InvalidParameters
from app.services.numbers import clamp_score, percent, require_count, safe_number

_PK = BigInteger().with_variant(Integer, "sqlite")

SKILL_LEVELS = (
    (90, "expert"),
    (70, "advanced"),
    (40, "intermediate"),
)

ACHIEVEMENT_CATEGORIES = ("streak", "score", "completion", "improvement", "milestone")

TOP_SKILL_LIMIT = 5
IMPROVEMENT_AREA_LIMIT = 3
IMPROVEMENT_THRESHOLD = 60


@dataclass
class ActivityDelta:
    logins: int = 0
    sessions_completed: int = 0
    items_attempted: int = 0
    time_spent_minutes: int = 0
    average_score: Optional[float] = None


@dataclass
class SkillDelta:
    attempted: int = 0
    correct: int = 0
    score: Optional[float] = None


def skill_level_for(score: int) -> str:
    for threshold, level in SKILL_LEVELS:
        if score >= threshold:
            return level
    return "beginner"


def is_active_day(bucket) -> bool:
    return any(
        (getattr(bucket, name) or 0) > 0
        for name in ("logins", "sessions_completed", "items_attempted", "time_spent_minutes")
    )


def compute_current_streak(buckets: Iterable, now: Optional[datetime] = None) -> int:
    """오늘(UTC)부터 거꾸로 활동한 날이 끊기지 않고 이어지는 일수. 오늘 활동이 없으면 0."""
    active_keys = {b.day_key for b in buckets if b.day_key and is_active_day(b)}
    streak = 0
    cursor = to_utc_day_key(now or utcnow())
    while cursor and cursor in active_keys:
        streak += 1
        cursor = previous_day_key(cursor)
    return streak


class DailyActivity(Base):
    __tablename__ = "daily_activity"

    id = Column(_PK, primary_key=True)
    progress_id = Column(_PK, ForeignKey("progress.id", ondelete="CASCADE"), nullable=False, index=True)
    day_key = Column(String(10), nullable=False)   # YYYY-MM-DD (UTC)
    date = Column(DateTime(timezone=True), nullable=False)

    logins = Column(Integer, nullable=False, default=0)
    sessions_completed = Column(Integer, nullable=False, default=0)
    items_attempted = Column(Integer, nullable=False, default=0)
    time_spent_minutes = Column(Integer, nullable=False, default=0)
    # 가중 평균은 점수가 있는 세션 수(scored_sessions)와 합계로 유지하고, average_score는 읽기용 캐시
    scored_sessions = Column(Integer, nullable=False, default=0)
    score_total = Column(Float, nullable=False, default=0.0)
    average_score = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("progress_id", "day_key", name="uq_daily_activity_progress_day"),
    )

    def __init__(self, **kwargs):
        for name in ("logins", "sessions_completed", "items_attempted", "time_spent_minutes",
                     "scored_sessions", "average_score"):
            kwargs.setdefault(name, 0)
        kwargs.setdefault("score_total", 0.0)
        super().__init__(**kwargs)

    def to_dict(self) -> dict:
        return {
            "date": self.day_key,
            "logins": self.logins,
            "sessions_completed": self.sessions_completed,
            "items_attempted": self.items_attempted,
            "time_spent_minutes": self.time_spent_minutes,
            "average_score": self.average_score,
        }


class SkillProgress(Base):
    __tablename__ = "skill_progress"

    id = Column(_PK, primary_key=True)
    progress_id = Column(_PK, ForeignKey("progress.id", ondelete="CASCADE"), nullable=False, index=True)
    skill = Column(String(80), nullable=False)
    level = Column(String(20), nullable=False, default="beginner")
    score = Column(Integer, nullable=False, default=0)
    attempted = Column(Integer, nullable=False, default=0)
    correct = Column(Integer, nullable=False, default=0)
    last_practiced = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("progress_id", "skill", name="uq_skill_progress_progress_skill"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("level", "beginner")
        for name in ("score", "attempted", "correct"):
            kwargs.setdefault(name, 0)
        super().__init__(**kwargs)

    def to_dict(self) -> dict:
        return {
            "skill": self.skill,
            "level": self.level,
            "score": self.score,
            "attempted": self.attempted,
            "correct": self.correct,
            "last_practiced": self.last_practiced.isoformat() if self.last_practiced else None,
        }


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(_PK, primary_key=True)
    progress_id = Column(_PK, ForeignKey("progress.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(String(60), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    icon = Column(String(60), nullable=True)
    category = Column(String(20), nullable=False, default="milestone")
    is_visible = Column(Boolean, nullable=False, default=True)
    unlocked_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("progress_id", "achievement_id", name="uq_achievements_progress_achievement"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.achievement_id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
        }


class Progress(Base):
    __tablename__ = "progress"

    _COUNTERS = (
        "total_sessions",
        "completed_sessions",
        "items_attempted",
        "items_correct",
        "best_score",
        "average_score",
        "total_time_minutes",
        "current_streak",
        "longest_streak",
    )

    id = Column(_PK, primary_key=True)
    user_id = Column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # overallStats
    total_sessions = Column(Integer, nullable=False, default=0)
    completed_sessions = Column(Integer, nullable=False, default=0)
    items_attempted = Column(Integer, nullable=False, default=0)
    items_correct = Column(Integer, nullable=False, default=0)
    best_score = Column(Integer, nullable=False, default=0)
    score_total = Column(Float, nullable=False, default=0.0)
    average_score = Column(Integer, nullable=False, default=0)
    total_time_minutes = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_activity_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    daily_activity = relationship(
        "DailyActivity",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DailyActivity.day_key",
    )
    skill_progress = relationship(
        "SkillProgress",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    achievements = relationship(
        "Achievement",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Achievement.unlocked_at",
    )

    def __init__(self, **kwargs):
        for name in self._COUNTERS:
            kwargs.setdefault(name, 0)
        kwargs.setdefault("score_total", 0.0)
        super().__init__(**kwargs)

    # ---------- 조회 ----------

    @property
    def accuracy_percentage(self) -> int:
        return percent(self.items_correct or 0, self.items_attempted or 0)

    def find_day(self, day) -> Optional[DailyActivity]:
        key = to_utc_day_key(day)
        return next((b for b in self.daily_activity if b.day_key == key), None)

    def find_skill(self, skill_name: str) -> Optional[SkillProgress]:
        return next((s for s in self.skill_progress if s.skill == skill_name), None)

    def has_achievement(self, achievement_id: str) -> bool:
        return any(a.achievement_id == achievement_id for a in self.achievements)

    def activity_since(self, day_key: str) -> list:
        return [b for b in self.daily_activity if b.day_key and b.day_key >= day_key]

    def top_skills(self, limit: int = TOP_SKILL_LIMIT) -> list:
        return sorted(self.skill_progress, key=lambda s: -(s.score or 0))[:limit]

    def improvement_areas(self, limit: int = IMPROVEMENT_AREA_LIMIT) -> list:
        """점수가 IMPROVEMENT_THRESHOLD 미만인 스킬, 낮은 순."""
        weak = [s for s in self.skill_progress if (s.score or 0) < IMPROVEMENT_THRESHOLD]
        return sorted(weak, key=lambda s: s.score or 0)[:limit]

    # ---------- 갱신 연산 ----------

    def update_daily_activity(self, day, delta: ActivityDelta, now: Optional[datetime] = None) -> DailyActivity:
        day_start = to_utc_day_start(day)
        if day_start is None:
            raise InvalidParameters(f"invalid date for daily activity: {day!r}")

        logins = require_count("logins", delta.logins)
        sessions = require_count("sessions_completed", delta.sessions_completed)
        attempted = require_count("items_attempted", delta.items_attempted)
        minutes = require_count("time_spent_minutes", delta.time_spent_minutes)

        avg = None
        if delta.average_score is not None:
            avg = safe_number(delta.average_score, fallback=None)
            if avg is None:
                raise InvalidParameters(f"average_score must be a finite number, got {delta.average_score!r}")
            avg = max(0.0, min(100.0, avg))
        # 평균은 세션 수 증분과 함께일 때만 의미가 있다. 평균 없는 세션 증분은 카운터만 올린다
        if avg is not None and sessions == 0:
            raise InvalidParameters("average_score requires a positive sessions_completed increment")

        bucket = self.find_day(day_start)
        if bucket is None:
            bucket = DailyActivity(day_key=to_utc_day_key(day_start), date=day_start)
            self.daily_activity.append(bucket)

        bucket.logins = (bucket.logins or 0) + logins
        bucket.items_attempted = (bucket.items_attempted or 0) + attempted
        bucket.time_spent_minutes = (bucket.time_spent_minutes or 0) + minutes
        bucket.sessions_completed = (bucket.sessions_completed or 0) + sessions
        if avg is not None:
            bucket.scored_sessions = (bucket.scored_sessions or 0) + sessions
            bucket.score_total = (bucket.score_total or 0.0) + avg * sessions
            bucket.average_score = clamp_score(bucket.score_total / bucket.scored_sessions)

        self.last_activity_date = now or utcnow()
        return bucket

    def update_skill_progress(self, skill_name: str, delta: SkillDelta, now: Optional[datetime] = None) -> SkillProgress:
        name = (skill_name or "").strip()
        if not name:
            raise InvalidParameters("skill name is required")
        attempted = require_count("attempted", delta.attempted)
        correct = require_count("correct", delta.correct)
        if correct > attempted:
            raise InvalidParameters("correct cannot exceed attempted")

        skill = self.find_skill(name)
        if skill is None:
            skill = SkillProgress(skill=name)
            self.skill_progress.append(skill)

        skill.attempted = (skill.attempted or 0) + attempted
        skill.correct = (skill.correct or 0) + correct

        if delta.score is not None:
            score = safe_number(delta.score, fallback=None)
            if score is None:
                raise InvalidParameters(f"score must be a finite number, got {delta.score!r}")
            skill.score = clamp_score(score)
        else:
            skill.score = percent(skill.correct, skill.attempted)

        skill.level = skill_level_for(skill.score)
        skill.last_practiced = now or utcnow()
        return skill

    def update_streak(self, now: Optional[datetime] = None) -> int:
        current = compute_current_streak(self.daily_activity, now=now)
        self.current_streak = current
        self.longest_streak = max(self.longest_streak or 0, current)
        return current

    def unlock_achievement(self, descriptor: Dict, now: Optional[datetime] = None) -> Optional[Achievement]:
        """이미 같은 id가 있으면 아무것도 하지 않고 None."""
        achievement_id = str(descriptor.get("id") or "").strip()
        if not achievement_id:
            raise InvalidParameters("achievement id is required")
        if self.has_achievement(achievement_id):
            return None

        category = descriptor.get("category") or "milestone"
        if category not in ACHIEVEMENT_CATEGORIES:
            raise InvalidParameters(f"unknown achievement category: {category}")

        achievement = Achievement(
            achievement_id=achievement_id,
            name=descriptor.get("name") or achievement_id,
            description=descriptor.get("description") or "",
            icon=descriptor.get("icon"),
            category=category,
            is_visible=bool(descriptor.get("is_visible", True)),
            unlocked_at=now or utcnow(),
        )
        self.achievements.append(achievement)
        return achievement

    def record_completion(self, score: int, attempted: int, correct: int, minutes: int) -> None:
        """overallStats 누적. 세션 완료 1건당 정확히 한 번 호출."""
        score = clamp_score(safe_number(score, fallback=0.0))
        self.total_sessions = (self.total_sessions or 0) + 1
        self.completed_sessions = (self.completed_sessions or 0) + 1
        self.items_attempted = (self.items_attempted or 0) + require_count("attempted", attempted)
        self.items_correct = (self.items_correct or 0) + require_count("correct", correct)
        self.total_time_minutes = (self.total_time_minutes or 0) + require_count("minutes", minutes)
        self.best_score = max(self.best_score or 0, score)
        self.score_total = (self.score_total or 0.0) + score
        self.average_score = clamp_score(self.score_total / self.completed_sessions)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "overall_stats": {
                "total_sessions": self.total_sessions,
                "completed_sessions": self.completed_sessions,
                "items_attempted": self.items_attempted,
                "items_correct": self.items_correct,
                "accuracy_percentage": self.accuracy_percentage,
                "best_score": self.best_score,
                "average_score": self.average_score,
                "total_time_minutes": self.total_time_minutes,
                "current_streak": self.current_streak,
                "longest_streak": self.longest_streak,
                "last_activity_date": self.last_activity_date.isoformat() if self.last_activity_date else None,
            },
            "daily_activity": [b.to_dict() for b in self.daily_activity],
            "skill_progress": [s.to_dict() for s in self.skill_progress],
            "achievements": [a.to_dict() for a in self.achievements],
        }
