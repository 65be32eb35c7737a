# app/services/code_execution.py
# 코드 실행 협력자 (Judge0 CE). 사용자 코드는 로컬에서 절대 실행하지 않는다.
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config import settings
from app.services.errors import InvalidParameters, UpstreamUnavailable
from app.services.numbers import percent

logger = logging.getLogger(__name__)

LANGUAGE_IDS = {
    "python": 71,
    "py": 71,
    "java": 62,
    "c": 50,
    "cpp": 54,
    "javascript": 63,
    "js": 63,
}

# Judge0 status id: 1=In Queue, 2=Processing, 3=Accepted, 그 외는 종료 상태
_PENDING_STATUS = (1, 2)


@dataclass
class ExecutionResult:
    status: str                  # accepted|wrong_answer|time_limit_exceeded|compilation_error|runtime_error|...
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    time: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status == "accepted"


@dataclass
class TestCaseReport:
    passed: int = 0
    total: int = 0
    results: List[Dict] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        return percent(self.passed, self.total)


def _status_slug(description: str) -> str:
    return (description or "unknown").strip().lower().replace(" ", "_").replace("(", "").replace(")", "")


class Judge0Executor:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_polls: Optional[int] = None,
        poll_interval: float = 0.8,
    ):
        self.base_url = (base_url or settings.judge0_base_url).rstrip("/")
        self.timeout = timeout or settings.execution_timeout_seconds
        self.max_polls = max_polls or settings.execution_max_polls
        self.poll_interval = poll_interval

        # 429/5xx 재시도 세션
        self._session = requests.Session()
        self._session.mount(
            "https://",
            HTTPAdapter(
                max_retries=Retry(
                    total=2,
                    backoff_factor=0.5,
                    status_forcelist=(429, 500, 502, 503, 504),
                    allowed_methods=frozenset(["GET", "POST"]),
                    raise_on_status=False,
                )
            ),
        )

    def run(self, source: str, language: str, stdin: str = "") -> ExecutionResult:
        language_id = LANGUAGE_IDS.get((language or "").strip().lower())
        if not language_id:
            raise InvalidParameters(f"Unsupported language: {language}")

        try:
            resp = self._session.post(
                f"{self.base_url}/submissions",
                params={"base64_encoded": "false", "wait": "false"},
                json={"language_id": language_id, "source_code": source, "stdin": stdin or ""},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            token = (resp.json() or {}).get("token")
            if not token:
                raise UpstreamUnavailable("Judge0 submission returned no token")

            last = None
            for _ in range(self.max_polls):
                poll = self._session.get(
                    f"{self.base_url}/submissions/{token}",
                    params={"base64_encoded": "false"},
                    timeout=self.timeout,
                )
                poll.raise_for_status()
                last = poll.json() or {}
                status_id = (last.get("status") or {}).get("id")
                if status_id and status_id not in _PENDING_STATUS:
                    break
                time.sleep(self.poll_interval)
        except requests.RequestException as e:
            logger.warning("[EXEC] judge0 request failed: %r", e)
            raise UpstreamUnavailable(f"code execution failed: {e}") from e

        status = (last or {}).get("status") or {}
        if not status.get("id") or status.get("id") in _PENDING_STATUS:
            raise UpstreamUnavailable("Judge0 timed out while processing submission")

        return ExecutionResult(
            status=_status_slug(status.get("description")),
            stdout=last.get("stdout") or "",
            stderr=last.get("stderr") or "",
            compile_output=last.get("compile_output") or "",
            time=float(last["time"]) if last.get("time") else None,
        )


def run_test_cases(executor, source: str, language: str, test_cases: List[Dict]) -> TestCaseReport:
    """
    각 테스트케이스 input을 stdin으로 실행, stdout.strip() == expected_output 이면 통과.
    컴파일 에러/시간 초과 등 비정상 상태는 예외가 아니라 실패 케이스로 집계한다.
    """
    report = TestCaseReport(total=len(test_cases))
    for idx, case in enumerate(test_cases):
        expected = str(case.get("expected_output", "")).strip()
        result = executor.run(source, language, case.get("input", ""))
        actual = (result.stdout or "").strip()
        passed = result.ok and actual == expected
        if passed:
            report.passed += 1
        report.results.append({
            "index": idx,
            "hidden": bool(case.get("hidden", False)),
            "passed": passed,
            "status": result.status,
            # 숨김 케이스는 기대값/출력 노출 금지
            "expected": None if case.get("hidden") else expected,
            "actual": None if case.get("hidden") else actual,
            "error": (result.compile_output or result.stderr or "")[:500],
        })
    return report
