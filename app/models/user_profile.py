# app/models/user_profile.py
# 인증 사용자(sub)를 보조하는 프로필 테이블 + 대시보드용 요약 통계(projection)
from sqlalchemy import Column, String, Integer, DateTime, Enum, func
from sqlalchemy.orm import relationship
from app.db.session import Base

class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String(64), primary_key=True)  # = JWT sub
    display_name = Column(String(100))
    status = Column(
        Enum("active", "blocked", "deleted", name="user_status", native_enum=False),
        nullable=False,
        default="active",
    )

    # 요약 통계: Stats Reconciliation이 갱신
    total_sessions = Column(Integer, nullable=False, default=0)
    completed_sessions = Column(Integer, nullable=False, default=0)
    average_score = Column(Integer, nullable=False, default=0)
    streak_days = Column(Integer, nullable=False, default=0)
    last_active_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    # 계정 삭제 시 세션/진행도 함께 삭제
    sessions = relationship(
        "ActivitySession",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    progress = relationship(
        "Progress",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
