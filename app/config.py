# app/config.py


from dotenv import load_dotenv
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # .env 먼저 읽기

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # 환경 구분
    app_env: str = "local"
    log_level: str = "INFO"

    # DB
    database_url: str = f"sqlite:///{BASE_DIR / 'practice.db'}"   # DATABASE_URL
    auto_create_tables: bool = True

    # JWT (Bearer 토큰 검증)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # OpenAI
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 30.0

    # AI 면접 대화 세션
    ai_question_budget: int = 8
    conversation_cache_size: int = 1024
    conversation_cache_ttl_seconds: int = 6 * 60 * 60

    # 코드 실행 (Judge0 CE)
    judge0_base_url: str = "https://ce.judge0.com"
    execution_timeout_seconds: float = 20.0
    execution_max_polls: int = 30

    # 퀵 연습
    quick_practice_counts: List[int] = [10, 20, 30, 50]
    quick_practice_categories: List[str] = [
        "dsa", "oop", "dbms", "os", "networks", "system-design", "behavioral",
        "html", "css", "javascript", "react", "nodejs", "general", "linux", "git",
    ]
    quick_practice_default_categories: List[str] = ["dsa", "oop", "dbms", "os", "networks"]

    # 방치된 세션 정리 기준 (분)
    stale_session_minutes: int = 24 * 60

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),  # 루트 .env 절대경로
        env_file_encoding="utf-8",
        extra="ignore",                   # 필요 없는 env 무시
    )

settings = Settings()
