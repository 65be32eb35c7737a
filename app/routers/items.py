# app/routers/items.py
# 문제 은행 주제 조회 + 관리자용 문항/세션 관리
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.deps import get_current_user, get_db, get_session_service, require_admin
from app.schemas.items import AddItemsRequest, SweepRequest
from app.services.activity_sessions import ActivitySessionService
from app.services.errors import InvalidParameters
from app.services.item_pool import ITEM_TYPES, SqlItemPool
from app.services.session_store import SqlSessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/items", tags=["items"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/topics")
def list_topics(
    item_type: str = Query("mcq"),
    current=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if item_type not in ITEM_TYPES:
        raise InvalidParameters(f"unknown item_type: {item_type}")
    return {"topics": SqlItemPool(db).topics(item_type)}


@admin_router.post("/items", status_code=201)
def add_items(
    payload: AddItemsRequest,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    created = SqlItemPool(db).add_items(
        [item.model_dump(mode="json") for item in payload.items]
    )
    logger.info("[ADMIN] items added count=%s by=%s", len(created), admin["id"])
    return {"created": len(created), "ids": [item.id for item in created]}


@admin_router.delete("/items/{item_id}")
def remove_item(
    item_id: int,
    admin=Depends(require_admin),
    db: Session = Depends(get_db),
):
    removed = SqlItemPool(db).remove_item(item_id)
    if not removed:
        raise HTTPException(status_code=404, detail={"message": "item_not_found", "detail": f"item {item_id} does not exist"})
    pruned = SqlSessionStore(db).prune_item_references(item_id)
    logger.info("[ADMIN] item removed item_id=%s pruned_sessions=%s by=%s", item_id, pruned, admin["id"])
    return {"removed": item_id, "pruned_sessions": pruned}


@admin_router.post("/sessions/sweep")
def sweep_sessions(
    payload: SweepRequest,
    admin=Depends(require_admin),
    service: ActivitySessionService = Depends(get_session_service),
):
    abandoned = service.sweep_stale(payload.older_than_minutes)
    return {"abandoned": abandoned, "count": len(abandoned)}
