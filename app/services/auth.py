# app/services/auth.py
# Bearer JWT 검증. sub = 사용자 id, role == "admin"이면 관리자 라우트 허용
import logging
from typing import Dict, Optional

from jose import JWTError, jwt

from app.config import settings

logger = logging.getLogger(__name__)


def verify_bearer(authorization: Optional[str]) -> Dict[str, Optional[str]]:
    if not authorization:
        raise ValueError("missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ValueError("invalid Authorization header")

    token = parts[1].strip()
    if not token:
        raise ValueError("invalid Authorization header")

    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except JWTError as e:
        logger.info("[AUTH] JWT decode failed: %s", e)
        raise ValueError("invalid token") from e

    user_id = claims.get("sub")
    if not user_id:
        raise ValueError("invalid token: missing sub")

    return {
        "user_id": str(user_id),
        "name": claims.get("name"),
        "role": claims.get("role") or "user",
    }


def create_access_token(user_id: str, role: str = "user", name: Optional[str] = None) -> str:
    """개발/테스트용 토큰 발급."""
    payload = {"sub": user_id, "role": role}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
