# app/routers/progress.py
# 내 진행도 조회, 기간별 분석, 로그인 체크인(streak 갱신)
from fastapi import APIRouter, Depends, Query

from app.deps import get_current_user, get_reconciler
from app.services.stats_reconciliation import StatsReconciler

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("/me")
def get_my_progress(
    current=Depends(get_current_user),
    reconciler: StatsReconciler = Depends(get_reconciler),
):
    progress = reconciler.get_or_create_progress(current["id"])
    reconciler.db.commit()
    prof = current["profile"]
    return {
        **progress.to_dict(),
        "summary": {
            "total_sessions": prof.total_sessions,
            "completed_sessions": prof.completed_sessions,
            "average_score": prof.average_score,
            "streak_days": prof.streak_days,
            "last_active_at": prof.last_active_at,
        },
    }


@router.post("/check-in")
def check_in(
    current=Depends(get_current_user),
    reconciler: StatsReconciler = Depends(get_reconciler),
):
    streak = reconciler.check_in(current["id"])
    return {"streak_days": streak}


@router.get("/analytics")
def get_my_analytics(
    timeframe: int = Query(30, ge=1, le=365),
    current=Depends(get_current_user),
    reconciler: StatsReconciler = Depends(get_reconciler),
):
    analytics = reconciler.analytics(current["id"], timeframe_days=timeframe)
    reconciler.db.commit()
    return analytics
