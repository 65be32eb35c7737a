# app/services/achievements.py
# 업적 카탈로그. 조건은 (progress, percent) -> bool, 재평가해도 unlock_achievement가 중복을 막는다.
import logging
from typing import Dict, List

from app.models.progress import Progress

logger = logging.getLogger(__name__)

ACHIEVEMENT_RULES: Dict[str, Dict] = {
    # ---- 완료 ----
    "first-session": {
        "name": "First Steps",
        "description": "Complete your first practice session",
        "icon": "flag",
        "category": "completion",
        "condition": lambda progress, percent: (progress.completed_sessions or 0) >= 1,
    },
    "sessions-10": {
        "name": "Dedicated Learner",
        "description": "Complete 10 practice sessions",
        "icon": "books",
        "category": "milestone",
        "condition": lambda progress, percent: (progress.completed_sessions or 0) >= 10,
    },
    "sessions-50": {
        "name": "Practice Veteran",
        "description": "Complete 50 practice sessions",
        "icon": "medal",
        "category": "milestone",
        "condition": lambda progress, percent: (progress.completed_sessions or 0) >= 50,
    },

    # ---- 연속 학습 ----
    "streak-3": {
        "name": "On a Roll",
        "description": "Practice 3 days in a row",
        "icon": "fire",
        "category": "streak",
        "condition": lambda progress, percent: (progress.current_streak or 0) >= 3,
    },
    "streak-7": {
        "name": "Week Warrior",
        "description": "Practice 7 days in a row",
        "icon": "fire",
        "category": "streak",
        "condition": lambda progress, percent: (progress.current_streak or 0) >= 7,
    },
    "streak-30": {
        "name": "Unstoppable",
        "description": "Practice 30 days in a row",
        "icon": "trophy",
        "category": "streak",
        "condition": lambda progress, percent: (progress.current_streak or 0) >= 30,
    },

    # ---- 점수 ----
    "perfect-score": {
        "name": "Perfectionist",
        "description": "Score 100% in a session",
        "icon": "star",
        "category": "score",
        "condition": lambda progress, percent: percent is not None and percent >= 100,
    },
    "high-achiever": {
        "name": "High Achiever",
        "description": "Keep an average score of 85 or more over at least 5 sessions",
        "icon": "rocket",
        "category": "improvement",
        "condition": lambda progress, percent: (
            (progress.completed_sessions or 0) >= 5 and (progress.average_score or 0) >= 85
        ),
    },
}


def descriptor_for(achievement_id: str) -> Dict:
    rule = ACHIEVEMENT_RULES[achievement_id]
    return {
        "id": achievement_id,
        "name": rule["name"],
        "description": rule["description"],
        "icon": rule["icon"],
        "category": rule["category"],
    }


def evaluate_achievements(progress: Progress, percent=None, now=None) -> List[str]:
    """
    조건을 만족하는 업적을 모두 unlock. 새로 열린 id 목록을 돌려준다.
    """
    unlocked: List[str] = []
    for achievement_id, rule in ACHIEVEMENT_RULES.items():
        if progress.has_achievement(achievement_id):
            continue
        if rule["condition"](progress, percent):
            if progress.unlock_achievement(descriptor_for(achievement_id), now=now) is not None:
                unlocked.append(achievement_id)
    if unlocked:
        logger.info("[ACHIEVEMENT] unlocked user_id=%s ids=%s", progress.user_id, unlocked)
    return unlocked
