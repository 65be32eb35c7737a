# app/services/grading.py
# 문항 채점(객관식/코딩/서술형)과 세션 점수 집계
import logging
from typing import Dict, List, Tuple

from app.schemas.sessions import SessionScore
from app.services.answer_eval import AnswerEvaluationService
from app.services.code_execution import run_test_cases
from app.services.errors import InvalidParameters, UpstreamUnavailable
from app.services.numbers import percent, round_half_up

logger = logging.getLogger(__name__)

# 서술형/코딩 문항은 이 점수 이상이면 정답으로 집계
PASSING_SCORE = 70

STRUCTURED_WEIGHTS = {"technical": 0.4, "behavioral": 0.3, "communication": 0.3}


def grade_choice(item: Dict, answer) -> Dict:
    options = item.get("options") or []
    if isinstance(answer, bool) or not isinstance(answer, int):
        raise InvalidParameters("multiple-choice answer must be an option index")
    if not 0 <= answer < len(options):
        raise InvalidParameters(f"option index out of range: {answer}")
    is_correct = answer == item.get("correct_index")
    return {
        "answer": answer,
        "is_correct": is_correct,
        "score": 100 if is_correct else 0,
        "explanation": item.get("explanation") or "",
    }


def grade_coding(executor, item: Dict, source, language: str) -> Dict:
    if not isinstance(source, str) or not source.strip():
        raise InvalidParameters("coding answer must be non-empty source code")
    try:
        report = run_test_cases(executor, source, language, item.get("test_cases") or [])
    except UpstreamUnavailable as e:
        # 실행기 장애는 제출 실패가 아니라 미채점 기록으로 남긴다
        logger.warning("[GRADING] executor unavailable item_id=%s err=%s", item.get("item_id"), e.detail)
        return {
            "answer": source,
            "language": language,
            "is_correct": False,
            "score": 0,
            "status": "unevaluated",
            "explanation": "Code execution service is unavailable; this answer was not evaluated.",
        }
    score = report.percentage
    return {
        "answer": source,
        "language": language,
        "is_correct": report.total > 0 and report.passed == report.total,
        "score": score,
        "status": "evaluated",
        "passed": report.passed,
        "total": report.total,
        "results": report.results,
        "explanation": item.get("explanation") or "",
    }


def grade_freeform(evaluator: AnswerEvaluationService, item: Dict, text) -> Dict:
    if not isinstance(text, str):
        raise InvalidParameters("free-form answer must be text")
    evaluation = evaluator.evaluate_answer(item.get("prompt") or "", text, item.get("rubric"))
    return {
        "answer": text,
        "is_correct": evaluation["score"] >= PASSING_SCORE,
        "score": evaluation["score"],
        "explanation": evaluation.get("feedback", ""),
        "evaluation": evaluation,
    }


def _answer_at(answers: Dict, index: int) -> Dict:
    return (answers or {}).get(str(index)) or {}


def score_choice_session(items: List[Dict], answers: Dict) -> Tuple[SessionScore, List[Dict]]:
    """정답 수 / 전체 문항 수. 미응답은 오답."""
    correct = 0
    review = []
    for idx, item in enumerate(items):
        record = _answer_at(answers, idx)
        is_correct = bool(record.get("is_correct"))
        if is_correct:
            correct += 1
        review.append({
            "item_index": idx,
            "prompt": item.get("prompt"),
            "options": item.get("options") or [],
            "selected": record.get("answer"),
            "correct_index": item.get("correct_index"),
            "is_correct": is_correct,
            "explanation": item.get("explanation") or "",
        })
    score = SessionScore(correct=correct, total=len(items), percent=percent(correct, len(items)))
    return score, review


def _bucket_for(item_type: str) -> List[str]:
    if item_type in ("coding", "technical", "mcq"):
        return ["technical", "communication"]
    if item_type == "behavioral":
        return ["behavioral", "communication"]
    return ["communication"]


def score_structured_session(items: List[Dict], answers: Dict) -> Tuple[SessionScore, List[Dict]]:
    """
    technical(코딩/기술) · behavioral · communication(전체) 평균을 가중합.
    문항이 없는 버킷은 가중치에서 제외한다.
    """
    buckets: Dict[str, List[int]] = {k: [] for k in STRUCTURED_WEIGHTS}
    correct = 0
    review = []
    for idx, item in enumerate(items):
        record = _answer_at(answers, idx)
        item_score = int(record.get("score") or 0)
        if record.get("is_correct"):
            correct += 1
        for bucket in _bucket_for(item.get("item_type")):
            buckets[bucket].append(item_score)
        review.append({
            "item_index": idx,
            "item_type": item.get("item_type"),
            "prompt": item.get("prompt"),
            "answered": bool(record),
            "score": item_score,
            "status": record.get("status", "evaluated" if record else "unanswered"),
            "explanation": record.get("explanation", ""),
        })

    breakdown = {k: round_half_up(sum(v) / len(v)) if v else 0 for k, v in buckets.items()}
    weight_total = sum(w for k, w in STRUCTURED_WEIGHTS.items() if buckets[k])
    overall = 0
    if weight_total:
        overall = round_half_up(
            sum(breakdown[k] * w for k, w in STRUCTURED_WEIGHTS.items() if buckets[k]) / weight_total
        )
    score = SessionScore(correct=correct, total=len(items), percent=overall, breakdown=breakdown)
    return score, review
