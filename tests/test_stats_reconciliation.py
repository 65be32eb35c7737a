from datetime import datetime, timedelta, timezone

from app.models.progress import ActivityDelta, Progress, SkillDelta
from app.models.sessions import ActivitySession
from app.models.user_profile import UserProfile
from app.services.achievements import ACHIEVEMENT_RULES, descriptor_for, evaluate_achievements
from app.services.stats_reconciliation import StatsReconciler, session_minutes

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _completed_quiz(user_id, percent=80, session_id="s-1"):
    items = [{"item_type": "mcq", "category": "dsa" if i < 3 else "oop", "prompt": f"q{i}"} for i in range(5)]
    answers = {str(i): {"answer": 0, "is_correct": i != 3, "time_taken_sec": 60} for i in range(5)}
    return ActivitySession(
        id=session_id, user_id=user_id, kind="quick_quiz", state="completed",
        config={"kind": "quick_quiz", "count": 5}, items=items, answers=answers,
        result={"score": {"correct": 4, "total": 5, "percent": percent, "breakdown": {}}},
        started_at=NOW - timedelta(minutes=10), completed_at=NOW,
    )


def test_reconcile_folds_session_into_progress_and_profile(db, user):
    reconciler = StatsReconciler(db)

    progress = reconciler.reconcile(_completed_quiz(user.id), now=NOW)

    bucket = progress.find_day(NOW)
    assert bucket.sessions_completed == 1
    assert bucket.items_attempted == 5
    assert bucket.time_spent_minutes == 5
    assert bucket.average_score == 80
    assert progress.completed_sessions == 1
    assert progress.items_correct == 4
    assert progress.current_streak == 1

    dsa = progress.find_skill("dsa")
    oop = progress.find_skill("oop")
    assert (dsa.attempted, dsa.correct, dsa.score) == (3, 3, 100)
    assert (oop.attempted, oop.correct, oop.score) == (2, 1, 50)
    assert progress.has_achievement("first-session")

    profile = db.get(UserProfile, user.id)
    assert profile.completed_sessions == 1
    assert profile.average_score == 80
    assert profile.streak_days == 1


def test_daily_average_is_weighted_across_sessions(db, user):
    reconciler = StatsReconciler(db)
    reconciler.reconcile(_completed_quiz(user.id, percent=90, session_id="a"), now=NOW)
    progress = reconciler.reconcile(_completed_quiz(user.id, percent=55, session_id="b"), now=NOW)

    bucket = progress.find_day(NOW)
    assert bucket.sessions_completed == 2
    assert bucket.average_score == 73  # 72.5 반올림
    assert progress.average_score == 73
    assert db.query(Progress).filter_by(user_id=user.id).count() == 1


def test_ai_interview_updates_interview_type_skill(db, user):
    session = ActivitySession(
        id="ai-1", user_id=user.id, kind="ai_interview", state="completed",
        config={"kind": "ai_interview", "interview_type": "behavioral"}, items=[],
        answers={"0": {"question": "q", "response": "r"}},
        result={"score": {"correct": 0, "total": 1, "percent": 72, "breakdown": {}}},
        started_at=NOW - timedelta(minutes=20), completed_at=NOW,
    )
    progress = StatsReconciler(db).reconcile(session, now=NOW)

    skill = progress.find_skill("AI Interview (behavioral)")
    assert skill.score == 72
    assert skill.level == "advanced"
    assert progress.items_correct == 0
    assert progress.total_time_minutes == 20


def test_perfect_score_unlocks_once(db, user):
    reconciler = StatsReconciler(db)
    reconciler.reconcile(_completed_quiz(user.id, percent=100, session_id="a"), now=NOW)
    progress = reconciler.reconcile(_completed_quiz(user.id, percent=100, session_id="b"), now=NOW)

    ids = [a.achievement_id for a in progress.achievements]
    assert ids.count("perfect-score") == 1
    assert ids.count("first-session") == 1


def test_streak_seven_achievement_is_unlocked_once(db, user):
    reconciler = StatsReconciler(db)
    progress = reconciler.get_or_create_progress(user.id)
    for n in range(1, 7):
        progress.update_daily_activity(NOW - timedelta(days=n), ActivityDelta(logins=1))
    db.commit()

    assert reconciler.check_in(user.id, now=NOW) == 7
    reconciler.check_in(user.id, now=NOW)

    progress = reconciler.get_or_create_progress(user.id)
    assert [a.achievement_id for a in progress.achievements].count("streak-7") == 1
    assert progress.has_achievement("streak-3")
    assert progress.find_day(NOW).logins == 2
    assert db.get(UserProfile, user.id).streak_days == 7


def test_check_in_creates_progress_lazily(db, user):
    assert db.query(Progress).count() == 0
    assert StatsReconciler(db).check_in(user.id, now=NOW) == 1
    assert db.query(Progress).filter_by(user_id=user.id).one().longest_streak == 1


def test_unlocking_the_same_descriptor_twice_keeps_one_entry():
    progress = Progress(user_id="u")
    progress.unlock_achievement(descriptor_for("streak-7"), now=NOW)
    progress.unlock_achievement(descriptor_for("streak-7"), now=NOW)
    assert [a.achievement_id for a in progress.achievements] == ["streak-7"]


def test_catalogue_conditions_respect_thresholds():
    progress = Progress(user_id="u", completed_sessions=9, current_streak=2)
    assert evaluate_achievements(progress, percent=99, now=NOW) == ["first-session"]
    assert set(ACHIEVEMENT_RULES) >= {"streak-3", "streak-7", "streak-30", "sessions-10", "sessions-50"}


def test_session_minutes_falls_back_to_elapsed_time():
    session = ActivitySession(
        answers={}, started_at=NOW - timedelta(minutes=14, seconds=40), completed_at=NOW,
        created_at=NOW - timedelta(hours=1),
    )
    assert session_minutes(session) == 15


def test_analytics_windows_activity_and_score_trend_by_timeframe(db, user):
    reconciler = StatsReconciler(db)
    old = _completed_quiz(user.id, percent=40, session_id="old")
    old.completed_at = NOW - timedelta(days=10)
    recent = _completed_quiz(user.id, percent=90, session_id="recent")
    db.add_all([old, recent])
    db.commit()
    reconciler.reconcile(old, now=NOW - timedelta(days=10))
    reconciler.reconcile(recent, now=NOW)

    week = reconciler.analytics(user.id, timeframe_days=7, now=NOW)
    assert week["timeframe"] == 7
    assert [d["date"] for d in week["trends"]["daily_activity"]] == ["2024-06-15"]
    assert [p["session_id"] for p in week["trends"]["score_progression"]] == ["recent"]

    month = reconciler.analytics(user.id, timeframe_days=30, now=NOW)
    assert [d["date"] for d in month["trends"]["daily_activity"]] == ["2024-06-05", "2024-06-15"]
    assert [(p["session_id"], p["score"]) for p in month["trends"]["score_progression"]] == [
        ("recent", 90), ("old", 40),
    ]
    assert month["overview"]["completed_sessions"] == 2
    assert month["overview"]["average_score"] == 65


def test_analytics_orders_top_skills_and_improvement_areas(db, user):
    reconciler = StatsReconciler(db)
    progress = reconciler.get_or_create_progress(user.id)
    for name, score in [("a", 95), ("b", 20), ("c", 55), ("d", 70), ("e", 10), ("f", 80), ("g", 45)]:
        progress.update_skill_progress(name, SkillDelta(attempted=1, correct=1, score=score), now=NOW)
    db.commit()

    view = reconciler.analytics(user.id, now=NOW)
    assert [s["skill"] for s in view["skills"]["top_skills"]] == ["a", "f", "d", "c", "g"]
    assert [s["skill"] for s in view["skills"]["improvement_areas"]] == ["e", "b", "g"]
