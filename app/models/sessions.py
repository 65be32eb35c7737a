# app/models/sessions.py
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Index, func
from app.db.session import Base

SESSION_STATES = ("created", "in_progress", "completed", "abandoned")
ACTIVE_STATES = ("created", "in_progress")
TERMINAL_STATES = ("completed", "abandoned")

class ActivitySession(Base):
    __tablename__ = "activity_sessions"

    id = Column(String(36), primary_key=True, index=True)  # 클라이언트에 노출되는 uuid
    user_id = Column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(30), nullable=False)    # quick_quiz|mcq|structured_interview|ai_interview
    state = Column(String(20), nullable=False, default="created")  # created|in_progress|completed|abandoned

    config = Column(JSON, nullable=False, default=dict)    # 종류별 설정 + AI 면접 shadow copy
    items = Column(JSON, nullable=False, default=list)     # 생성 후 불변인 문항 스냅샷 목록
    answers = Column(JSON, nullable=False, default=dict)   # {"<item_index>": {answer, is_correct, ...}}
    result = Column(JSON, nullable=True)                   # completed 이후 불변

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_activity_sessions_user_id_created_at", "user_id", "created_at"),
        Index("ix_activity_sessions_state_created_at", "state", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
