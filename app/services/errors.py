# app/services/errors.py
# 세션/진행도 도메인 예외. 라우터 대신 main.py의 exception handler가 HTTP 응답으로 변환한다.


class PracticeError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code

    def to_detail(self) -> dict:
        return {"message": self.code, "detail": self.detail}


class InvalidParameters(PracticeError):
    status_code = 400
    code = "invalid_parameters"


class ItemPoolExhausted(PracticeError):
    status_code = 409
    code = "item_pool_exhausted"


class SessionNotFound(PracticeError):
    status_code = 404
    code = "session_not_found"


class AccessDenied(PracticeError):
    status_code = 403
    code = "forbidden"


class SessionNotActive(PracticeError):
    status_code = 409
    code = "session_not_active"


class ConcurrentStateConflict(PracticeError):
    status_code = 409
    code = "concurrent_state_conflict"
    retryable = True


class UpstreamUnavailable(PracticeError):
    status_code = 503
    code = "upstream_unavailable"
    retryable = True


class AINotConfigured(UpstreamUnavailable):
    code = "ai_not_configured"
    retryable = False
