import threading
from datetime import timedelta

import pytest

from app.models.practice_item import PracticeItem
from app.models.progress import Progress
from app.models.sessions import ActivitySession
from app.schemas.sessions import BatchAnswer, McqConfig, QuickQuizConfig, StructuredInterviewConfig
from app.services import activity_sessions
from app.services.activity_sessions import ActivitySessionService
from app.services.ai_interviewer import AIInterviewer
from app.services.answer_eval import AnswerEvaluationService
from app.services.clock import utcnow
from app.services.conversation_store import InMemoryConversationStore
from app.services.errors import (
    AccessDenied,
    ConcurrentStateConflict,
    InvalidParameters,
    ItemPoolExhausted,
    SessionNotActive,
    SessionNotFound,
)
from app.services.item_pool import SqlItemPool
from app.services.session_store import SqlSessionStore
from app.services.stats_reconciliation import StatsReconciler
from conftest import FakeExecutor, FakeGenerator, FakeReconciler, FakeSessionStore, make_mcq

# A..E 의 정답과 제출 답안: 4/5 정답
CORRECT = {"A": 1, "B": 0, "C": 2, "D": 0, "E": 1}
SUBMITTED = {"A": 1, "B": 0, "C": 2, "D": 1, "E": 1}


def make_service(db, generator=None, executor=None, reconciler=None):
    generator = generator or FakeGenerator(available=False)
    return ActivitySessionService(
        store=SqlSessionStore(db),
        pool=SqlItemPool(db),
        reconciler=reconciler or StatsReconciler(db),
        interviewer=AIInterviewer(InMemoryConversationStore(max_entries=10, ttl_seconds=3600), generator),
        evaluator=AnswerEvaluationService(generator),
        executor=executor or FakeExecutor(),
    )


@pytest.fixture
def five_items(seed_items):
    return seed_items([make_mcq(name, idx) for name, idx in CORRECT.items()])


def _answer_all(service, user_id, session):
    for idx, item in enumerate(session.items):
        service.submit_answer(user_id, session.id, idx, SUBMITTED[item["prompt"]])


def test_start_samples_items_and_moves_to_in_progress(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))

    assert session.state == "in_progress"
    assert session.started_at is not None
    assert sorted(it["prompt"] for it in session.items) == list("ABCDE")
    assert db.get(type(user), user.id).total_sessions == 1


def test_touch_is_idempotent(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    started_at = session.started_at

    again = service.touch(session)
    assert again.state == "in_progress"
    assert again.started_at == started_at


def test_scenario_four_of_five_scores_eighty_and_repeats_idempotently(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    _answer_all(service, user.id, session)

    first = service.complete(user.id, session.id)
    second = service.complete(user.id, session.id)

    assert first.score.correct == 4
    assert first.score.percent == 80
    assert first.idempotent is False
    assert second.idempotent is True
    assert second.score == first.score
    assert second.completed_at == first.completed_at

    # 통계는 한 번만 반영
    progress = db.query(Progress).filter_by(user_id=user.id).one()
    assert progress.completed_sessions == 1
    assert progress.find_day(utcnow()).average_score == 80


def test_review_lists_selected_and_correct_answers(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    _answer_all(service, user.id, session)

    result = service.complete(user.id, session.id)
    wrong = [r for r in result.review if not r["is_correct"]]
    assert len(wrong) == 1
    assert wrong[0]["prompt"] == "D"
    assert wrong[0]["selected"] == 1
    assert wrong[0]["correct_index"] == 0
    assert wrong[0]["explanation"] == "D explanation"


def test_quiz_answers_are_first_write_wins(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    correct = session.items[0]["correct_index"]
    wrong = (correct + 1) % 4

    first = service.submit_answer(user.id, session.id, 0, correct)
    second = service.submit_answer(user.id, session.id, 0, wrong)

    assert first.is_correct is True
    assert second.is_correct is True
    assert second.already_answered is True
    stored = service.get_owned(user.id, session.id).answers["0"]
    assert stored["answer"] == correct


def test_batch_answers_on_complete_do_not_override_recorded_ones(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    first_correct = session.items[0]["correct_index"]
    service.submit_answer(user.id, session.id, 0, (first_correct + 1) % 4)

    batch = [BatchAnswer(item_index=i, answer=it["correct_index"]) for i, it in enumerate(session.items)]
    result = service.complete(user.id, session.id, batch)

    assert result.score.correct == 4
    assert result.score.percent == 80


def test_pool_exhausted_does_not_underfill(db, user, five_items):
    service = make_service(db)
    with pytest.raises(ItemPoolExhausted):
        service.start(user.id, McqConfig(category="dsa", count=10))
    assert db.query(ActivitySession).count() == 0


def test_quick_quiz_validates_count_and_categories(db, user):
    service = make_service(db)
    with pytest.raises(InvalidParameters):
        service.start(user.id, QuickQuizConfig(count=7))
    with pytest.raises(InvalidParameters):
        service.start(user.id, QuickQuizConfig(count=10, categories=["astrology"]))


def test_quick_quiz_uses_default_categories(db, user, seed_items):
    seed_items([make_mcq(f"q{i}", 0, category=c) for i, c in enumerate(["dsa", "oop", "dbms", "os", "networks"] * 2)])
    service = make_service(db)

    session = service.start(user.id, QuickQuizConfig(count=10))
    assert len(session.items) == 10


def test_out_of_range_answers_are_rejected(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    with pytest.raises(InvalidParameters):
        service.submit_answer(user.id, session.id, 9, 0)
    with pytest.raises(InvalidParameters):
        service.submit_answer(user.id, session.id, 0, 7)


def test_ownership_and_missing_sessions(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))

    with pytest.raises(AccessDenied):
        service.submit_answer("intruder", session.id, 0, 0)
    with pytest.raises(SessionNotFound):
        service.complete(user.id, "does-not-exist")


def test_result_is_unavailable_before_completion(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    with pytest.raises(SessionNotActive):
        service.get_result(user.id, session.id)


def test_abandoned_sessions_accept_no_mutation(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))

    assert service.abandon(user.id, session.id).state == "abandoned"
    assert service.abandon(user.id, session.id).state == "abandoned"
    with pytest.raises(SessionNotActive):
        service.submit_answer(user.id, session.id, 0, 0)
    with pytest.raises(SessionNotActive):
        service.complete(user.id, session.id)


def test_completed_sessions_cannot_be_abandoned(db, user, five_items):
    service = make_service(db)
    session = service.start(user.id, McqConfig(category="dsa", count=5))
    service.complete(user.id, session.id)
    with pytest.raises(SessionNotActive):
        service.abandon(user.id, session.id)


def test_reconciliation_failure_does_not_fail_completion(db, user, five_items):
    reconciler = FakeReconciler(fail=True)
    service = make_service(db, reconciler=reconciler)
    session = service.start(user.id, McqConfig(category="dsa", count=5))

    result = service.complete(user.id, session.id)

    assert result.state == "completed"
    assert result.score.total == 5
    assert reconciler.reconciled == [session.id]


# ---------------------------------------------------------------------------
# 동시 완료 (CAS)
# ---------------------------------------------------------------------------

def _quiz_session(session_id="s-1", user_id="user-1"):
    items = [
        {"item_id": i, "item_type": "mcq", "category": "dsa", "prompt": f"q{i}",
         "options": ["a", "b"], "correct_index": 0, "explanation": ""}
        for i in range(4)
    ]
    answers = {str(i): {"answer": 0, "is_correct": i < 3, "score": 100 if i < 3 else 0} for i in range(4)}
    return ActivitySession(
        id=session_id, user_id=user_id, kind="mcq", state="in_progress",
        config={"kind": "mcq", "category": "dsa", "count": 4}, items=items, answers=answers,
    )


def test_concurrent_completes_transition_and_reconcile_exactly_once():
    store = FakeSessionStore()
    reconciler = FakeReconciler()
    service = ActivitySessionService(store=store, reconciler=reconciler)
    store.add(_quiz_session())

    workers = 8
    barrier = threading.Barrier(workers)
    results, errors = [], []

    def worker():
        barrier.wait()
        try:
            results.append(service.complete("user-1", "s-1"))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.cas_success == 1
    assert reconciler.reconciled == ["s-1"]
    assert [r.idempotent for r in results].count(False) == 1
    assert {r.score.percent for r in results} == {75}
    assert len({r.completed_at for r in results}) == 1


def test_answer_landing_before_transition_is_counted_in_score():
    store = FakeSessionStore()
    service = ActivitySessionService(store=store, reconciler=FakeReconciler())
    session = _quiz_session()
    session.answers = {k: v for k, v in session.answers.items() if k != "3"}
    store.add(session)

    cas = store.compare_and_swap_state

    def submit_then_cas(session_id, expected_states, new_state, **values):
        if new_state == "completed":
            store.compare_and_swap_state = cas
            service.submit_answer("user-1", session_id, 3, 0)
        return cas(session_id, expected_states, new_state, **values)

    store.compare_and_swap_state = submit_then_cas
    result = service.complete("user-1", "s-1")

    stored = store.get("s-1")
    assert sorted(stored.answers) == ["0", "1", "2", "3"]
    assert result.score.correct == 4
    assert stored.result["score"]["correct"] == 4


def test_scoring_failure_rolls_back_the_transition(monkeypatch):
    store = FakeSessionStore()
    reconciler = FakeReconciler()
    service = ActivitySessionService(store=store, reconciler=reconciler)
    store.add(_quiz_session())

    def broken(session, answers):
        raise RuntimeError("grader crashed")

    monkeypatch.setattr(service, "_score", broken)
    with pytest.raises(RuntimeError):
        service.complete("user-1", "s-1")

    current = store.get("s-1")
    assert current.state == "in_progress"
    assert current.completed_at is None
    assert current.result is None
    assert reconciler.reconciled == []

    monkeypatch.undo()
    assert service.complete("user-1", "s-1").score.percent == 75


def test_pending_result_is_awaited_then_reported_as_conflict(monkeypatch):
    monkeypatch.setattr(activity_sessions, "RESULT_WAIT_SECONDS", 0.05)
    store = FakeSessionStore()
    service = ActivitySessionService(store=store)
    pending = _quiz_session()
    pending.state = "completed"
    pending.completed_at = utcnow()
    store.add(pending)

    with pytest.raises(ConcurrentStateConflict):
        service.complete("user-1", "s-1")


def test_ai_answer_revision_rejects_negative_index():
    store = FakeSessionStore()
    service = ActivitySessionService(store=store)
    store.add(ActivitySession(
        id="ai-1", user_id="user-1", kind="ai_interview", state="in_progress",
        config={}, items=[], answers={"0": {"question": "Q", "response": "A"}},
    ))

    with pytest.raises(InvalidParameters):
        service.submit_answer("user-1", "ai-1", -1, "revised")
    assert store.get("ai-1").answers["0"]["response"] == "A"


def test_sweep_abandons_only_stale_active_sessions():
    store = FakeSessionStore()
    service = ActivitySessionService(store=store)
    stale = _quiz_session("old")
    stale.created_at = utcnow() - timedelta(days=3)
    done = _quiz_session("done")
    done.state = "completed"
    done.created_at = utcnow() - timedelta(days=3)
    store.add(stale)
    store.add(done)
    store.add(_quiz_session("fresh"))

    assert service.sweep_stale(older_than_minutes=60) == ["old"]
    assert store.get("old").state == "abandoned"
    assert store.get("done").state == "completed"
    assert store.get("fresh").state == "in_progress"


# ---------------------------------------------------------------------------
# structured_interview: 덮어쓰기 정책, 코딩 채점
# ---------------------------------------------------------------------------

@pytest.fixture
def interview_items(seed_items):
    return seed_items([
        PracticeItem(
            item_type="coding", category="dsa", difficulty="easy",
            prompt="Echo the input", test_cases=[
                {"input": "3", "expected_output": "3", "hidden": False},
                {"input": "7", "expected_output": "7", "hidden": True},
            ],
        ),
        PracticeItem(
            item_type="behavioral", category="behavioral", difficulty="easy",
            prompt="Tell me about a conflict", rubric="STAR structure",
        ),
    ])


def _index_of(session, item_type):
    return next(i for i, it in enumerate(session.items) if it["item_type"] == item_type)


def test_structured_answers_can_be_revised(db, user, interview_items):
    service = make_service(db)
    session = service.start(user.id, StructuredInterviewConfig(company="Acme", role="SWE", question_count=2))
    idx = _index_of(session, "behavioral")

    short = service.submit_answer(user.id, session.id, idx, "I fixed it.")
    long = service.submit_answer(user.id, session.id, idx, "When two teammates disagreed on the design " * 10)

    assert short.score == 40
    assert long.score == 75
    assert long.already_answered is False
    assert service.get_owned(user.id, session.id).answers[str(idx)]["score"] == 75


def test_structured_coding_runs_every_test_case(db, user, interview_items):
    executor = FakeExecutor(program=lambda source, stdin: stdin + "\n")
    service = make_service(db, executor=executor)
    session = service.start(user.id, StructuredInterviewConfig(company="Acme", role="SWE", question_count=2))
    idx = _index_of(session, "coding")

    result = service.submit_answer(user.id, session.id, idx, "print(input())", language="python")

    assert result.is_correct is True
    assert result.score == 100
    assert len(executor.calls) == 2
    hidden = [r for r in result.evaluation["results"] if r["hidden"]]
    assert hidden[0]["expected"] is None


def test_structured_coding_degrades_when_executor_is_down(db, user, interview_items):
    service = make_service(db, executor=FakeExecutor(fail=True))
    session = service.start(user.id, StructuredInterviewConfig(company="Acme", role="SWE", question_count=2))
    idx = _index_of(session, "coding")

    result = service.submit_answer(user.id, session.id, idx, "print(input())", language="python")

    assert result.score == 0
    assert result.evaluation["status"] == "unevaluated"


def test_structured_score_weights_buckets(db, user, interview_items):
    service = make_service(db, executor=FakeExecutor(program=lambda source, stdin: stdin))
    session = service.start(user.id, StructuredInterviewConfig(company="Acme", role="SWE", question_count=2))
    service.submit_answer(user.id, session.id, _index_of(session, "coding"), "print(input())")
    service.submit_answer(user.id, session.id, _index_of(session, "behavioral"), "short")

    result = service.complete(user.id, session.id)

    # technical=100, behavioral=40, communication=(100+40)/2=70
    assert result.score.breakdown == {"technical": 100, "behavioral": 40, "communication": 70}
    assert result.score.percent == 73  # 0.4*100 + 0.3*40 + 0.3*70 = 73
    assert result.score.correct == 1


def test_batch_answers_are_only_for_quiz_sessions(db, user, interview_items):
    service = make_service(db)
    session = service.start(user.id, StructuredInterviewConfig(company="Acme", role="SWE", question_count=2))
    with pytest.raises(InvalidParameters):
        service.complete(user.id, session.id, [BatchAnswer(item_index=0, answer=0)])
