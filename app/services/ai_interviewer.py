"""
AI 면접관 (대화형 세션)

- 대화 컨텍스트는 주입된 InMemoryConversationStore에만 있다 (휘발성).
- 항목이 사라졌으면 ensure_session()이 durable shadow(마지막 질문, 답변 수)로 복구한다:
    initialize(with_opening=False) -> replay_assistant_turn(last_question) -> cursor 복원
- 외부 AI 실패/형식 오류는 예외로 올리지 않고 fallback 응답으로 대체한다.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.config import settings
from app.services.clock import utcnow
from app.services.conversation_store import ConversationalSession, InMemoryConversationStore
from app.services.errors import SessionNotFound, UpstreamUnavailable
from app.services.numbers import clamp_score, round_half_up, safe_number

logger = logging.getLogger(__name__)

SUB_SCORES = ("communication", "technical", "behavioral")
RECOMMENDATIONS = ("strong_yes", "yes", "maybe", "no")

OPENING_PROMPTS = {
    "behavioral": (
        "Hello! I'm your AI interviewer for the {role} position at {company}. "
        "Let's start with a behavioral question: Tell me about yourself and why you're interested in this role at {company}."
    ),
    "technical": (
        "Welcome to your technical interview for the {role} position at {company}. "
        "Let's begin: Can you walk me through your technical background and experience with the technologies relevant to this role?"
    ),
    "mixed": (
        "Hi! I'm conducting your interview for the {role} position at {company}. "
        "We'll cover both technical and behavioral aspects. Let's start: Tell me about yourself and what draws you to {company}."
    ),
    "system_design": (
        "Welcome to your system design interview for the {role} position at {company}. "
        "Let's start with: Tell me about a complex system you've designed or worked on recently."
    ),
}

FALLBACK_QUESTIONS = [
    "Can you tell me about a challenging project you worked on recently?",
    "How do you handle working under pressure or tight deadlines?",
    "Describe a time when you had to learn a new technology quickly.",
    "What interests you most about working at our company?",
    "How do you approach problem-solving when facing a complex technical issue?",
    "Tell me about a time you had to work with a difficult team member.",
    "What are your thoughts on the latest trends in technology?",
]


@dataclass
class TurnResult:
    analysis: Dict[str, Any]
    next_question: Optional[str]
    question_number: int
    total_questions: int
    is_complete: bool
    scores: Dict[str, int] = field(default_factory=dict)


def _system_prompt(config) -> str:
    if config.profile:
        p = config.profile
        skills = ", ".join(p.skills) or "not specified"
        return (
            f"You are an expert interviewer conducting a {config.interview_type} interview for {p.name}, "
            f"who is applying for a {p.target_role} position at {p.target_company}.\n\n"
            "CANDIDATE PROFILE:\n"
            f"- Name: {p.name}\n"
            f"- Current Role: {p.current_role or 'not specified'}\n"
            f"- Experience: {p.experience_years} years\n"
            f"- Target Role: {p.target_role} at {p.target_company}\n"
            f"- Skills: {skills}\n\n"
            "Conduct a natural, conversational interview. Ask follow-up questions based on their responses, "
            "tailored to their experience level and target role. Ask 6-8 questions total."
        )
    return (
        f"You are an expert technical interviewer conducting a {config.interview_type} interview "
        f"for a {config.role_name} position at {config.company_name}.\n"
        "Ask relevant, insightful questions and intelligent follow-ups. "
        "Evaluate communication, technical skills, and cultural fit.\n"
        f"Difficulty level: {config.difficulty}. Ask 6-8 questions total."
    )


def opening_question_for(config) -> str:
    template = OPENING_PROMPTS.get(config.interview_type) or OPENING_PROMPTS["mixed"]
    return template.format(role=config.role_name, company=config.company_name)


def fallback_analysis() -> Dict[str, Any]:
    return {
        "scores": {"communication": 7, "technical": 6, "behavioral": 7},
        "strengths": ["Clear communication", "Good examples provided"],
        "improvements": ["Could provide more specific details", "Consider discussing metrics"],
        "feedback": "Good response overall. Consider elaborating on specific examples.",
        "fallback": True,
    }


def fallback_follow_up(cursor: int) -> Dict[str, Any]:
    return {
        "question": FALLBACK_QUESTIONS[cursor % len(FALLBACK_QUESTIONS)],
        "type": "behavioral",
        "difficulty": "medium",
        "expected_duration": 3,
        "fallback": True,
    }


def normalize_recommendation(value, overall: int) -> str:
    text = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if text in RECOMMENDATIONS:
        return text
    if overall >= 85:
        return "strong_yes"
    if overall >= 70:
        return "yes"
    if overall >= 50:
        return "maybe"
    return "no"


def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(s) for s in value][:5]


def _normalize_analysis(raw) -> Optional[Dict[str, Any]]:
    """모델 출력 검증. scores가 숫자로 해석되지 않으면 None."""
    if not isinstance(raw, dict) or not isinstance(raw.get("scores"), dict):
        return None
    scores = {}
    for key in SUB_SCORES:
        n = safe_number(raw["scores"].get(key), fallback=None)
        if n is None:
            return None
        scores[key] = max(0, min(10, round_half_up(n)))
    return {
        "scores": scores,
        "strengths": _str_list(raw.get("strengths")),
        "improvements": _str_list(raw.get("improvements")),
        "feedback": str(raw.get("feedback") or ""),
    }


class AIInterviewer:
    def __init__(
        self,
        store: InMemoryConversationStore,
        generator,
        question_budget: Optional[int] = None,
    ):
        self.store = store
        self.generator = generator
        self.question_budget = question_budget or settings.ai_question_budget

    # ---- lifecycle ----

    def get(self, session_id: str) -> Optional[ConversationalSession]:
        return self.store.get(session_id)

    def initialize(self, session_id: str, config, with_opening: bool = True) -> ConversationalSession:
        convo = ConversationalSession(session_id=session_id, config=config)
        convo.add_turn("system", _system_prompt(config))
        if with_opening:
            convo.add_turn("assistant", config.opening_question or opening_question_for(config))
        self.store.put(convo)
        logger.info("[AI_INTERVIEW] init session_id=%s type=%s opening=%s",
                    session_id, config.interview_type, with_opening)
        return convo

    def replay_assistant_turn(self, session_id: str, text: str) -> None:
        convo = self.store.get(session_id)
        if convo is None:
            raise SessionNotFound("Interview session not found")
        convo.add_turn("assistant", text)

    def ensure_session(
        self,
        session_id: str,
        config,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> ConversationalSession:
        """
        캐시에 있으면 그대로, 없으면 durable shadow로 복구.
        history: 저장된 답변 기록 [{"question", "response"}...], cursor는 len(history)
        """
        convo = self.store.get(session_id)
        if convo is not None:
            return convo

        history = history or []
        logger.info("[AI_INTERVIEW] cache miss, replaying session_id=%s answered=%s",
                    session_id, len(history))
        convo = self.initialize(session_id, config, with_opening=False)
        self.replay_assistant_turn(session_id, config.last_question or opening_question_for(config))
        convo.current_question_index = len(history)
        convo.responses = [
            {"question_index": i, "question": h.get("question"), "response": h.get("response", "")}
            for i, h in enumerate(history)
        ]
        # 저장된 턴 분석으로 부분 점수 복원
        for h in history:
            restored = _normalize_analysis(h.get("analysis"))
            if restored is not None:
                self._merge_scores(convo, restored)
        return convo

    # ---- turns ----

    def _analyze(self, convo: ConversationalSession, utterance: str) -> Dict[str, Any]:
        if not self.generator.is_available():
            return fallback_analysis()
        prompt = (
            f"Analyze this interview response for a {convo.config.role_name} position at {convo.config.company_name}:\n\n"
            f'Response: "{utterance}"\n\n'
            "Evaluate on communication clarity (1-10), technical depth (1-10), behavioral indicators (1-10), "
            "specific strengths and areas for improvement.\n"
            'Return JSON: {"scores": {"communication": n, "technical": n, "behavioral": n}, '
            '"strengths": [], "improvements": [], "feedback": ""}'
        )
        try:
            raw = self.generator.generate_json(
                "You are an expert technical interviewer. Analyze responses objectively. Always respond with valid JSON.",
                prompt,
                temperature=0.3,
                max_tokens=1000,
            )
        except UpstreamUnavailable as e:
            logger.warning("[AI_INTERVIEW] analysis failed session_id=%s err=%s", convo.session_id, e.detail)
            return fallback_analysis()

        analysis = _normalize_analysis(raw)
        if analysis is None:
            logger.warning("[AI_INTERVIEW] malformed analysis session_id=%s", convo.session_id)
            return fallback_analysis()
        return analysis

    def _follow_up(self, convo: ConversationalSession, analysis: Dict[str, Any]) -> Dict[str, Any]:
        if not self.generator.is_available():
            return fallback_follow_up(convo.current_question_index)

        context = "\n\n".join(
            f"{m['role'].upper()}: {m['content']}" for m in convo.messages[-4:] if m["role"] != "system"
        )
        prompt = (
            f"Based on the conversation context and analysis, generate the next interview question "
            f"for a {convo.config.role_name} at {convo.config.company_name}.\n"
            f"Interview type: {convo.config.interview_type}\n"
            f"Question number: {convo.current_question_index + 1}/{self.question_budget}\n"
            f"Previous analysis feedback: {analysis.get('feedback', '')}\n\n"
            'Return JSON with: question, type, difficulty, expected_duration'
        )
        try:
            raw = self.generator.generate_json(
                "You are conducting a professional interview. Always respond with valid JSON.\n\n"
                f"Conversation context:\n{context}",
                prompt,
                temperature=0.7,
                max_tokens=500,
            )
        except UpstreamUnavailable as e:
            logger.warning("[AI_INTERVIEW] follow-up failed session_id=%s err=%s", convo.session_id, e.detail)
            return fallback_follow_up(convo.current_question_index)

        question = str((raw or {}).get("question") or "").strip()
        if not question:
            return fallback_follow_up(convo.current_question_index)
        return {
            "question": question,
            "type": str(raw.get("type") or convo.config.interview_type),
            "difficulty": str(raw.get("difficulty") or convo.config.difficulty),
            "expected_duration": safe_number(raw.get("expected_duration"), fallback=3),
        }

    def _merge_scores(self, convo: ConversationalSession, analysis: Dict[str, Any]) -> None:
        # 부분 점수는 지금까지의 최댓값 유지
        for key in SUB_SCORES:
            convo.scores[key] = max(convo.scores[key], analysis["scores"].get(key, 0))
        convo.scores["overall"] = round_half_up(sum(convo.scores[k] for k in SUB_SCORES) / 3)

    def process_turn(self, session_id: str, utterance: str) -> TurnResult:
        convo = self.store.get(session_id)
        if convo is None:
            raise SessionNotFound("Interview session not found")

        asked = convo.last_assistant_turn
        convo.add_turn("user", utterance)
        convo.responses.append({
            "question_index": convo.current_question_index,
            "question": asked,
            "response": utterance,
            "timestamp": utcnow().isoformat(),
        })

        analysis = self._analyze(convo, utterance)
        self._merge_scores(convo, analysis)
        convo.current_question_index += 1

        is_complete = convo.current_question_index >= self.question_budget
        next_question = None
        if not is_complete:
            follow_up = self._follow_up(convo, analysis)
            next_question = follow_up["question"]
            convo.add_turn("assistant", next_question)

        logger.info("[AI_INTERVIEW] turn session_id=%s cursor=%s complete=%s",
                    session_id, convo.current_question_index, is_complete)
        return TurnResult(
            analysis=analysis,
            next_question=next_question,
            question_number=min(convo.current_question_index + 1, self.question_budget),
            total_questions=self.question_budget,
            is_complete=is_complete,
            scores=dict(convo.scores),
        )

    # ---- summary ----

    def _fallback_summary(self, convo: ConversationalSession) -> Dict[str, Any]:
        # 세션별로 재현 가능한 범위 내 점수. 턴 분석 점수가 있으면 그것을 기준으로 한다
        rng = random.Random(convo.session_id)
        scores = {}
        for key, low in (("communication", 75), ("technical", 70), ("behavioral", 80)):
            provisional = convo.scores.get(key, 0)
            scores[key] = provisional * 10 if provisional else rng.randint(low, low + 19)
        overall = round_half_up(sum(scores.values()) / 3)
        return {
            "overall_score": overall,
            "scores": scores,
            "strengths": [
                "Strong communication skills",
                "Good technical understanding",
                "Relevant experience for the role",
            ],
            "improvements": [
                "Could provide more specific examples",
                "Consider discussing quantifiable results",
            ],
            "recommendation": None,
            "fallback": True,
        }

    def summarize(self, session_id: str) -> Dict[str, Any]:
        """최종 요약. 점수는 0-100으로 clamp, 요약 후 캐시 항목 제거."""
        convo = self.store.get(session_id)
        if convo is None:
            raise SessionNotFound("Interview session not found")

        duration = max(0, round_half_up((utcnow() - convo.started_at).total_seconds() / 60))
        raw = None
        if self.generator.is_available():
            prompt = (
                f"Generate a comprehensive interview summary for a {convo.config.role_name} "
                f"position at {convo.config.company_name}.\n"
                f"Interview duration: {duration} minutes\n"
                f"Responses: {[r['response'] for r in convo.responses]}\n\n"
                'Return JSON: {"overall_score": 0-100, "scores": {"communication": 0-100, "technical": 0-100, '
                '"behavioral": 0-100}, "strengths": [], "improvements": [], '
                '"recommendation": "strong yes|yes|maybe|no"}'
            )
            try:
                raw = self.generator.generate_json(
                    "You are an expert interviewer providing final candidate assessment. Always respond with valid JSON.",
                    prompt,
                    temperature=0.2,
                    max_tokens=1500,
                )
            except UpstreamUnavailable as e:
                logger.warning("[AI_INTERVIEW] summary failed session_id=%s err=%s", session_id, e.detail)
                raw = None

        overall = safe_number((raw or {}).get("overall_score"), fallback=None)
        if not isinstance((raw or {}).get("scores"), dict) or overall is None:
            raw = self._fallback_summary(convo)
            overall = raw["overall_score"]

        scores = {
            key: clamp_score(safe_number(raw["scores"].get(key), fallback=0)) for key in SUB_SCORES
        }
        overall = clamp_score(overall)
        summary = {
            "overall_score": overall,
            "scores": scores,
            "strengths": _str_list(raw.get("strengths")),
            "improvements": _str_list(raw.get("improvements")),
            "recommendation": normalize_recommendation(raw.get("recommendation"), overall),
            "duration_minutes": duration,
            "total_questions": len(convo.responses),
            "session_id": session_id,
            "fallback": bool(raw.get("fallback")),
        }
        self.store.evict(session_id)
        logger.info("[AI_INTERVIEW] summarized session_id=%s overall=%s fallback=%s",
                    session_id, overall, summary["fallback"])
        return summary

    def status(self, session_id: str) -> Optional[Dict[str, Any]]:
        convo = self.store.get(session_id)
        if convo is None:
            return None
        return {
            "session_id": session_id,
            "current_question": convo.last_assistant_turn,
            "question_number": min(convo.current_question_index + 1, self.question_budget),
            "total_questions": self.question_budget,
            "scores": dict(convo.scores),
            "turns": len(convo.responses),
        }
