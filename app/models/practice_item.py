# app/models/practice_item.py
# 문제 은행: 객관식(mcq), 코딩(coding), 행동/기술 서술형(behavioral|technical)
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, JSON, Index, func
from app.db.session import Base

class PracticeItem(Base):
    __tablename__ = "practice_item"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)
    item_type = Column(String(20), nullable=False)   # mcq|coding|behavioral|technical
    category = Column(String(40), nullable=False)    # dsa|oop|... (퀵 연습 카테고리)
    difficulty = Column(String(10), nullable=False, default="easy")  # easy|medium|hard

    prompt = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)             # mcq 보기
    correct_index = Column(Integer, nullable=True)    # mcq 정답
    explanation = Column(Text, nullable=True)

    # coding: [{"input": "...", "expected_output": "...", "hidden": bool}, ...]
    test_cases = Column(JSON, nullable=True)
    # behavioral/technical: AI 채점 기준
    rubric = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_practice_item_type_category", "item_type", "category"),
    )

    def snapshot(self) -> dict:
        """세션 itemSet에 복사해 넣을 불변 스냅샷."""
        return {
            "item_id": self.id,
            "item_type": self.item_type,
            "category": self.category,
            "difficulty": self.difficulty or "easy",
            "prompt": self.prompt,
            "options": list(self.options or []),
            "correct_index": self.correct_index,
            "explanation": self.explanation or "",
            "test_cases": list(self.test_cases or []),
            "rubric": self.rubric,
            "tags": list(self.tags or []),
        }
