import copy
import os
import threading

# app 모듈 import 전에 테스트 환경 고정
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["OPENAI_API_KEY"] = ""
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.practice_item import PracticeItem
from app.models.sessions import ActivitySession
from app.models.user_profile import UserProfile
from app.services.clock import utcnow
from app.services.code_execution import ExecutionResult
from app.services.errors import UpstreamUnavailable
from app.services.text_generation import parse_json_object


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    profile = UserProfile(id="user-1", display_name="Tester", status="active")
    db.add(profile)
    db.commit()
    return profile


# ---------------------------------------------------------------------------
# 외부 협력자 대역
# ---------------------------------------------------------------------------

class FakeGenerator:
    """응답을 순서대로 돌려준다. 항목이 Exception이면 raise, 비면 빈 문자열."""

    def __init__(self, responses=None, available=True):
        self.responses = list(responses or [])
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    def generate(self, system, prompt, **kwargs):
        self.calls.append({"system": system, "prompt": prompt})
        if not self.responses:
            return ""
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def generate_json(self, system, prompt, **kwargs):
        return parse_json_object(self.generate(system, prompt, **kwargs))


class FakeExecutor:
    """stdin -> stdout 함수로 실행 결과를 흉내낸다."""

    def __init__(self, program=None, status="accepted", fail=False):
        self.program = program or (lambda source, stdin: stdin)
        self.status = status
        self.fail = fail
        self.calls = []

    def run(self, source, language, stdin=""):
        self.calls.append((source, language, stdin))
        if self.fail:
            raise UpstreamUnavailable("judge0 down")
        return ExecutionResult(status=self.status, stdout=self.program(source, stdin))


class FakeSessionStore:
    """
    CAS를 threading.Lock으로 직렬화하는 메모리 저장소.
    get()은 매번 복사본을 돌려줘서 요청 간 객체 공유가 없다.
    """

    def __init__(self):
        self._rows = {}
        self._lock = threading.Lock()
        self.cas_success = 0

    @staticmethod
    def _copy(session):
        values = {c.name: copy.deepcopy(getattr(session, c.name)) for c in ActivitySession.__table__.columns}
        return ActivitySession(**values)

    def get(self, session_id):
        with self._lock:
            row = self._rows.get(session_id)
            return self._copy(row) if row is not None else None

    def add(self, session):
        if session.created_at is None:
            session.created_at = utcnow()
        with self._lock:
            self._rows[session.id] = self._copy(session)
        return self.get(session.id)

    def update_in_state(self, session_id, expected_states, **values):
        with self._lock:
            row = self._rows.get(session_id)
            ok = row is not None and row.state in list(expected_states)
            if ok:
                for key, value in values.items():
                    setattr(row, key, copy.deepcopy(value))
        return ok, self.get(session_id)

    def compare_and_swap_state(self, session_id, expected_states, new_state, **values):
        ok, current = self.update_in_state(session_id, expected_states, state=new_state, **values)
        if ok:
            self.cas_success += 1
        return ok, current

    def list_for_owner(self, user_id, kind=None):
        with self._lock:
            rows = [r for r in self._rows.values() if r.user_id == user_id and (kind is None or r.kind == kind)]
        return [self._copy(r) for r in rows]

    def list_stale_ids(self, states, created_before):
        with self._lock:
            return [r.id for r in self._rows.values() if r.state in list(states) and r.created_at < created_before]


class FakeReconciler:
    def __init__(self, fail=False):
        self.fail = fail
        self.reconciled = []
        self.started = []
        self.db = self

    def record_start(self, user_id):
        self.started.append(user_id)

    def reconcile(self, session, now=None):
        self.reconciled.append(session.id)
        if self.fail:
            raise RuntimeError("stats store unavailable")

    def rollback(self):
        pass


@pytest.fixture
def fake_generator():
    return FakeGenerator(available=False)


@pytest.fixture
def fake_executor():
    return FakeExecutor()


# ---------------------------------------------------------------------------
# 문제 은행 시드
# ---------------------------------------------------------------------------

def make_mcq(prompt, correct_index, category="dsa", difficulty="easy"):
    return PracticeItem(
        item_type="mcq",
        category=category,
        difficulty=difficulty,
        prompt=prompt,
        options=["a", "b", "c", "d"],
        correct_index=correct_index,
        explanation=f"{prompt} explanation",
    )


@pytest.fixture
def seed_items(db):
    def _seed(items):
        db.add_all(items)
        db.commit()
        return items
    return _seed


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.fixture
def client(session_factory, fake_generator, fake_executor):
    from fastapi.testclient import TestClient

    from app import deps
    from app.main import app
    from app.services.conversation_store import InMemoryConversationStore

    store = InMemoryConversationStore(max_entries=100, ttl_seconds=3600)

    def override_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = override_db
    app.dependency_overrides[deps.get_text_generator] = lambda: fake_generator
    app.dependency_overrides[deps.get_executor] = lambda: fake_executor
    app.dependency_overrides[deps.get_conversation_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id="user-1", role="user"):
    from app.services.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
