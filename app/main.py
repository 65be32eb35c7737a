# app/main.py

# ------------------------
# 환경 변수 로드
# ------------------------
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

# ------------------------
# FastAPI, CORS 미들웨어 import
# ------------------------
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.base import Base, engine
from app.services.errors import PracticeError

# ------------------------
# 라우터 import
# ------------------------
from app.routers import ai_interview as ai_interview_router
from app.routers import items as items_router
from app.routers import progress as progress_router
from app.routers import sessions as sessions_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)
        logger.info("[STARTUP] tables ensured env=%s", settings.app_env)
    yield

# ------------------------
# 1) FastAPI 앱 생성
# ------------------------
app = FastAPI(title="Interview Practice API", lifespan=lifespan)

# ------------------------
# 2) CORS 미들웨어 추가
#    - 개발용 전체 허용
#    - 실제 운영 시 도메인 제한 필요
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],      # 개발용 전체 허용
    allow_credentials=False,  # 쿠키 안 쓰면 False
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# 3) 도메인 예외 -> HTTP 응답
# ------------------------
@app.exception_handler(PracticeError)
async def practice_error_handler(request: Request, exc: PracticeError):
    if exc.status_code >= 500:
        logger.warning("[HTTP] %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers)

# ------------------------
# 4) 라우터 등록
# ------------------------
app.include_router(sessions_router.router)
app.include_router(ai_interview_router.router)
app.include_router(progress_router.router)
app.include_router(items_router.router)
app.include_router(items_router.admin_router)

# ------------------------
# 5) Root 엔드포인트
#    - health check 용
# ------------------------
@app.get("/")
def root():
    return {"ok": True}
