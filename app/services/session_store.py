"""
ActivitySession 영속 저장소.

동시성 계약의 유일한 동기화 지점은 compare_and_swap_state() 이다:
    UPDATE activity_sessions SET state=:new, ... WHERE id=:id AND state IN (:expected)
영향받은 row가 1이면 성공, 0이면 다른 요청이 먼저 상태를 바꾼 것.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.sessions import ActivitySession

logger = logging.getLogger(__name__)


class SqlSessionStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, session_id: str) -> Optional[ActivitySession]:
        # 다른 요청이 바꾼 값을 identity map 캐시 대신 DB에서 다시 읽는다
        return self.db.get(ActivitySession, session_id, populate_existing=True)

    def add(self, session: ActivitySession) -> ActivitySession:
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def update_in_state(
        self,
        session_id: str,
        expected_states: Iterable[str],
        **values,
    ) -> Tuple[bool, Optional[ActivitySession]]:
        """state가 expected_states 중 하나일 때만 values를 기록. (성공 여부, 최신 레코드)"""
        stmt = (
            update(ActivitySession)
            .where(
                ActivitySession.id == session_id,
                ActivitySession.state.in_(list(expected_states)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        ok = result.rowcount == 1
        return ok, self.get(session_id)

    def compare_and_swap_state(
        self,
        session_id: str,
        expected_states: Iterable[str],
        new_state: str,
        **values,
    ) -> Tuple[bool, Optional[ActivitySession]]:
        ok, current = self.update_in_state(session_id, expected_states, state=new_state, **values)
        logger.debug(
            "[SESSION_STORE] cas session_id=%s expected=%s new=%s ok=%s",
            session_id, list(expected_states), new_state, ok,
        )
        return ok, current

    def list_for_owner(self, user_id: str, kind: Optional[str] = None) -> List[ActivitySession]:
        q = self.db.query(ActivitySession).filter(ActivitySession.user_id == user_id)
        if kind:
            q = q.filter(ActivitySession.kind == kind)
        return q.order_by(ActivitySession.created_at.desc()).all()

    def list_stale_ids(self, states: Iterable[str], created_before: datetime) -> List[str]:
        rows = (
            self.db.query(ActivitySession.id)
            .filter(
                ActivitySession.state.in_(list(states)),
                ActivitySession.created_at < created_before,
            )
            .all()
        )
        return [r[0] for r in rows]

    def prune_item_references(self, item_id: int) -> int:
        """삭제된 문항을 가리키는 item_id만 지운다. 세션과 스냅샷 내용은 그대로."""
        pruned = 0
        for session in self.db.query(ActivitySession).all():
            items = session.items or []
            if not any(it.get("item_id") == item_id for it in items):
                continue
            session.items = [
                {**it, "item_id": None} if it.get("item_id") == item_id else it
                for it in items
            ]
            pruned += 1
        if pruned:
            self.db.commit()
        logger.info("[SESSION_STORE] pruned item_id=%s from %s sessions", item_id, pruned)
        return pruned
