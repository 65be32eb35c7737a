# app/services/item_pool.py
# 문제 은행 협력자: 조건에 맞는 문항을 무작위 샘플링, 부족하면 ItemPoolExhausted
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.practice_item import PracticeItem
from app.services.errors import InvalidParameters, ItemPoolExhausted

logger = logging.getLogger(__name__)

ITEM_TYPES = ("mcq", "coding", "behavioral", "technical")


class SqlItemPool:
    def __init__(self, db: Session):
        self.db = db

    def sample(
        self,
        item_types: Iterable[str],
        count: int,
        categories: Optional[Iterable[str]] = None,
        difficulty: Optional[str] = None,
    ) -> List[Dict]:
        types = [t for t in item_types]
        if not types or any(t not in ITEM_TYPES for t in types):
            raise InvalidParameters(f"invalid item types: {types}")
        if count <= 0:
            raise InvalidParameters("count must be positive")

        q = self.db.query(PracticeItem).filter(PracticeItem.item_type.in_(types))
        cats = list(categories or [])
        if cats:
            q = q.filter(PracticeItem.category.in_(cats))
        if difficulty:
            q = q.filter(PracticeItem.difficulty == difficulty)

        sampled = q.order_by(func.random()).limit(count).all()
        if len(sampled) < count:
            logger.info(
                "[POOL] exhausted types=%s categories=%s difficulty=%s found=%s need=%s",
                types, cats, difficulty, len(sampled), count,
            )
            raise ItemPoolExhausted(
                f"Not enough questions in bank for the selected filters. Found {len(sampled)}, need {count}."
            )
        return [item.snapshot() for item in sampled]

    def topics(self, item_type: str = "mcq") -> List[Dict]:
        rows = (
            self.db.query(PracticeItem.category, PracticeItem.difficulty, func.count(PracticeItem.id))
            .filter(PracticeItem.item_type == item_type)
            .group_by(PracticeItem.category, PracticeItem.difficulty)
            .all()
        )
        topics: Dict[str, Dict] = {}
        for category, difficulty, cnt in rows:
            t = topics.setdefault(category, {"name": category, "total": 0, "breakdown": {"easy": 0, "medium": 0, "hard": 0}})
            t["total"] += cnt
            t["breakdown"][difficulty or "easy"] = t["breakdown"].get(difficulty or "easy", 0) + cnt
        return sorted(topics.values(), key=lambda t: t["total"], reverse=True)

    def add_items(self, items: List[Dict]) -> List[PracticeItem]:
        created = []
        for raw in items:
            item = PracticeItem(**raw)
            self.db.add(item)
            created.append(item)
        self.db.commit()
        for item in created:
            self.db.refresh(item)
        return created

    def remove_item(self, item_id: int) -> bool:
        item = self.db.get(PracticeItem, item_id)
        if item is None:
            return False
        self.db.delete(item)
        self.db.commit()
        return True
