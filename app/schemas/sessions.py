# app/schemas/sessions.py
# 세션 종류별 설정(tagged variant)과 요청/응답 스키마
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

Difficulty = Literal["easy", "medium", "hard"]
InterviewType = Literal["behavioral", "technical", "mixed", "system_design"]

# -- 세션 설정 (kind로 구분) --

class QuickQuizConfig(BaseModel):
    kind: Literal["quick_quiz"] = "quick_quiz"
    count: int = Field(..., ge=1, le=100, description="문항 수")
    categories: List[str] = Field(default_factory=list, description="비어 있으면 기본 카테고리")


class McqConfig(BaseModel):
    kind: Literal["mcq"] = "mcq"
    category: str = Field(..., min_length=1, description="주제")
    difficulty: Optional[Difficulty] = None
    count: int = Field(10, ge=1, le=50)


class StructuredInterviewConfig(BaseModel):
    kind: Literal["structured_interview"] = "structured_interview"
    company: str = Field(..., min_length=1, max_length=100)
    role: str = Field(..., min_length=1, max_length=100)
    interview_type: Literal["coding", "behavioral", "technical", "mixed"] = "mixed"
    difficulty: Optional[Difficulty] = None
    language: str = "python"
    question_count: int = Field(5, ge=1, le=20)


class CandidateProfile(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    experience_years: int = Field(0, ge=0, le=60)
    current_role: Optional[str] = None
    target_role: str = Field(..., min_length=1)
    target_company: str = Field(..., min_length=1)
    skills: List[str] = Field(default_factory=list)
    duration_minutes: int = Field(30, ge=5, le=180)


class AIInterviewConfig(BaseModel):
    """AI 면접 설정 + 복구용 shadow copy(opening_question, current_question)."""
    kind: Literal["ai_interview"] = "ai_interview"
    company: Optional[str] = None
    role: Optional[str] = None
    interview_type: InterviewType = "mixed"
    difficulty: Difficulty = "medium"
    profile: Optional[CandidateProfile] = None
    opening_question: Optional[str] = None
    current_question: Optional[str] = None

    @property
    def company_name(self) -> str:
        if self.profile:
            return self.profile.target_company
        return self.company or "the company"

    @property
    def role_name(self) -> str:
        if self.profile:
            return self.profile.target_role
        return self.role or "the role"

    @property
    def last_question(self) -> Optional[str]:
        return self.current_question or self.opening_question


SessionConfig = Annotated[
    Union[QuickQuizConfig, McqConfig, StructuredInterviewConfig, AIInterviewConfig],
    Field(discriminator="kind"),
]

_config_adapter = TypeAdapter(SessionConfig)


def parse_session_config(raw: Dict[str, Any]):
    """DB JSON -> 종류별 설정 모델."""
    return _config_adapter.validate_python(raw or {})


# -- 요청 --

class StartSessionRequest(BaseModel):
    config: SessionConfig


class SubmitAnswerRequest(BaseModel):
    item_index: int = Field(..., ge=0)
    # mcq: 선택 index, coding: 소스코드, 서술형: 답변 텍스트
    answer: Union[int, str]
    language: Optional[str] = None
    time_taken_sec: int = Field(0, ge=0)


class BatchAnswer(BaseModel):
    item_index: int = Field(..., ge=0)
    answer: Union[int, str]


class CompleteSessionRequest(BaseModel):
    answers: List[BatchAnswer] = Field(default_factory=list)


class RespondRequest(BaseModel):
    response: str = Field(..., min_length=1, max_length=10000)

    @field_validator("response")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("응답이 비어 있습니다.")
        return v.strip()


# -- 응답 --

class SessionScore(BaseModel):
    correct: int = 0
    total: int = 0
    percent: int = 0
    breakdown: Dict[str, int] = Field(default_factory=dict)


class AnswerResult(BaseModel):
    item_index: int
    is_correct: bool
    explanation: str = ""
    score: Optional[int] = None
    already_answered: bool = False
    evaluation: Dict[str, Any] = Field(default_factory=dict)


class SessionResult(BaseModel):
    session_id: str
    kind: str
    state: str
    score: SessionScore
    completed_at: Optional[datetime] = None
    idempotent: bool = False
    review: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None


# -- 조회 뷰 --

class ItemView(BaseModel):
    item_index: int
    item_type: str
    category: str
    difficulty: str
    prompt: str
    options: List[str] = Field(default_factory=list)
    # 숨김 케이스는 제외
    examples: List[Dict[str, Any]] = Field(default_factory=list)


class SessionView(BaseModel):
    id: str
    kind: str
    state: str
    config: Dict[str, Any]
    items: List[ItemView]
    answered: List[int]
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, session) -> "SessionView":
        items = [
            ItemView(
                item_index=idx,
                item_type=it.get("item_type", ""),
                category=it.get("category", ""),
                difficulty=it.get("difficulty") or "easy",
                prompt=it.get("prompt", ""),
                options=it.get("options") or [],
                examples=[
                    {"input": tc.get("input", ""), "expected_output": tc.get("expected_output", "")}
                    for tc in it.get("test_cases") or []
                    if not tc.get("hidden")
                ],
            )
            for idx, it in enumerate(session.items or [])
        ]
        return cls(
            id=session.id,
            kind=session.kind,
            state=session.state,
            config=session.config or {},
            items=items,
            answered=sorted(int(k) for k in (session.answers or {})),
            created_at=session.created_at,
            started_at=session.started_at,
            completed_at=session.completed_at,
        )


class SessionListItem(BaseModel):
    id: str
    kind: str
    state: str
    percent: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, session) -> "SessionListItem":
        score = (session.result or {}).get("score") or {}
        return cls(
            id=session.id,
            kind=session.kind,
            state=session.state,
            percent=score.get("percent"),
            created_at=session.created_at,
            completed_at=session.completed_at,
        )


# -- AI 면접 --

class AIInterviewStartResponse(BaseModel):
    session_id: str
    question: str
    question_number: int = 1
    total_questions: int
    estimated_duration: int


class TurnResponse(BaseModel):
    session_id: str
    analysis: Dict[str, Any]
    next_question: Optional[str] = None
    question_number: int
    total_questions: int
    is_complete: bool
    scores: Dict[str, int] = Field(default_factory=dict)
