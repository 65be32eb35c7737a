"""
서술형(behavioral/technical) 답변 채점.

- AI가 있으면 rubric 기준 0-100 점수 + 피드백.
- AI 미설정/실패/형식 오류면 답변 길이 기반의 결정적 점수로 대체한다.
"""
import logging
from typing import Dict, Optional

from app.services.errors import UpstreamUnavailable
from app.services.numbers import clamp_score, safe_number

logger = logging.getLogger(__name__)


SHORT_PROMPT = """
너는 기술 면접 코치이다. 지원자의 답변을 채점하되 최종 출력은 아래 JSON 형식만 사용하라:

{
  "score": 0,
  "feedback": ""
}

규칙:
- JSON 외 다른 텍스트 절대 금지.
- score는 0~100 정수.
- 답변이 지나치게 짧다. feedback은 정확히 2문장으로, 드러나지 않은 부분과 추가하면 좋을 내용(상황, 행동, 결과)을 제안한다.
"""


STANDARD_PROMPT = """
너는 기술 면접 코치이다. 지원자의 답변을 채점하되 최종 출력은 아래 JSON 형식만 사용하라:

{
  "score": 0,
  "feedback": ""
}

규칙:
- JSON 외 다른 텍스트 절대 금지.
- score는 0~100 정수. 채점 기준(rubric)이 주어지면 그것을 우선한다.
- feedback은 4문장 이내로, 강점 1~2개와 핵심 개선 전략을 제시한다.
- 마크다운, 목록, 줄바꿈 사용 금지.
"""

# 길이 구간별 대체 점수
LENGTH_FALLBACK_SCORES = {"very_short": 40, "normal": 65, "long": 75}

LENGTH_FALLBACK_FEEDBACK = {
    "very_short": "Your answer is very short. Add the situation, your actions and the measurable result.",
    "normal": "Reasonable answer. Strengthen it with a concrete example and quantified outcomes.",
    "long": "Detailed answer. Make sure the key point comes first and stays focused on the question.",
}


def classify_length(answer_text: str) -> str:

    num_chars = len(answer_text.replace(" ", ""))

    if num_chars < 80:
        return "very_short"
    elif num_chars < 300:
        return "normal"
    else:
        return "long"


def length_fallback(answer_text: str) -> Dict:
    label = classify_length(answer_text or "")
    return {
        "score": LENGTH_FALLBACK_SCORES[label],
        "feedback": LENGTH_FALLBACK_FEEDBACK[label],
        "length": label,
        "evaluated_by": "length_fallback",
    }


class AnswerEvaluationService:

    def __init__(self, generator):
        self.generator = generator

    def evaluate_answer(self, question: str, answer_text: str, rubric: Optional[str] = None) -> Dict:
        if not (answer_text or "").strip():
            return {"score": 0, "feedback": "No answer was provided.", "evaluated_by": "empty"}

        if not self.generator.is_available():
            return length_fallback(answer_text)

        # 길이에 따라 사용할 프롬프트 선택
        length_label = classify_length(answer_text)
        system_prompt = SHORT_PROMPT if length_label == "very_short" else STANDARD_PROMPT

        prompt = f"질문: {question}\n"
        if rubric:
            prompt += f"채점 기준: {rubric}\n"
        prompt += f"답변: {answer_text}"

        try:
            data = self.generator.generate_json(system_prompt, prompt, temperature=0.2, max_tokens=600)
        except UpstreamUnavailable as e:
            logger.warning("[ANSWER_EVAL] AI failed, using length fallback err=%s", e.detail)
            return length_fallback(answer_text)

        score = safe_number((data or {}).get("score"), fallback=None)
        if score is None:
            logger.warning("[ANSWER_EVAL] malformed model output, using length fallback")
            return length_fallback(answer_text)

        return {
            "score": clamp_score(score),
            "feedback": str(data.get("feedback") or ""),
            "length": length_label,
            "evaluated_by": "ai",
        }
