"""
텍스트 생성 협력자 (OpenAI Chat Completions)
- 호출은 항상 timeout을 걸고, 실패는 UpstreamUnavailable로 올린다.
- 응답은 자유 텍스트로 취급하고 parse_json_object()로 방어적으로 파싱한다.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from openai import OpenAI, APIError, APITimeoutError, APIConnectionError

from app.config import settings
from app.services.errors import AINotConfigured, UpstreamUnavailable

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    모델 출력에서 첫 JSON 객체를 꺼낸다. 실패하면 None (예외 없음).
    1) 코드펜스 제거 후 전체 파싱
    2) 첫 '{' ~ 마지막 '}' 구간 파싱
    """
    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except (TypeError, ValueError):
        pass

    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        try:
            data = json.loads(cleaned[first:last + 1])
            return data if isinstance(data, dict) else None
        except (TypeError, ValueError):
            return None
    return None


class TextGenerator:
    """OpenAI 래퍼. api_key가 없으면 is_available() == False."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.ai_timeout_seconds
        key = api_key if api_key is not None else settings.openai_api_key
        if client is not None:
            self.client = client
        elif key:
            self.client = OpenAI(api_key=key, timeout=self.timeout, max_retries=1)
        else:
            logger.warning("[AI] OPENAI_API_KEY not configured; AI paths will use fallbacks")
            self.client = None

    def is_available(self) -> bool:
        return self.client is not None

    def generate(
        self,
        system: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        json_mode: bool = True,
    ) -> str:
        if self.client is None:
            raise AINotConfigured("AI is not configured (missing OPENAI_API_KEY)")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = self.client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            logger.warning("[AI] timeout model=%s", self.model)
            raise UpstreamUnavailable("AI request timed out") from e
        except (APIConnectionError, APIError) as e:
            logger.warning("[AI] upstream error model=%s err=%r", self.model, e)
            raise UpstreamUnavailable(f"AI request failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        return content or ""

    def generate_json(self, system: str, prompt: str, **kwargs) -> Optional[Dict[str, Any]]:
        """generate() + parse_json_object(). 파싱 실패는 None, 호출 실패는 예외."""
        return parse_json_object(self.generate(system, prompt, **kwargs))
