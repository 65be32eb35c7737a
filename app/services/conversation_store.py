"""
AI 면접 대화 상태 저장소 (프로세스 로컬, 휘발성).

- 크기 제한 LRU + TTL. 프로세스 재시작/다른 인스턴스에서는 항목이 없을 수 있다.
- 항목이 없을 때의 복구(replay)는 AIInterviewer.ensure_session()이 담당한다.
"""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from app.config import settings
from app.services.clock import utcnow


@dataclass
class ConversationalSession:
    session_id: str
    config: object                      # AIInterviewConfig
    messages: List[Dict[str, str]] = field(default_factory=list)   # system/assistant/user
    current_question_index: int = 0
    scores: Dict[str, int] = field(
        default_factory=lambda: {"communication": 0, "technical": 0, "behavioral": 0, "overall": 0}
    )
    responses: List[Dict] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)

    def add_turn(self, role: str, content: str) -> None:
        self.messages.append({"role": role, "content": content})

    @property
    def last_assistant_turn(self) -> Optional[str]:
        for m in reversed(self.messages):
            if m["role"] == "assistant":
                return m["content"]
        return None


class InMemoryConversationStore:
    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries or settings.conversation_cache_size
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.conversation_cache_ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, ConversationalSession]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ConversationalSession]:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            stored_at, convo = entry
            if self.ttl_seconds and self._clock() - stored_at > self.ttl_seconds:
                del self._entries[session_id]
                return None
            self._entries.move_to_end(session_id)
            return convo

    def put(self, convo: ConversationalSession) -> None:
        with self._lock:
            self._entries[convo.session_id] = (self._clock(), convo)
            self._entries.move_to_end(convo.session_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def evict(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# 앱 전역에서 하나만 쓰되, 서비스에는 주입한다 (deps.get_conversation_store)
conversation_store = InMemoryConversationStore()
