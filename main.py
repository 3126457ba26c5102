"""
Agency Chat entry point: REST + WebSocket API for portal chat rooms.
"""
import logging
import os
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.database import Base, engine
from app.core.middleware import SessionMiddleware
from app.router.endpoints import api_router
from app.session import init_redis, ping_redis

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _database_ok() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    try:
        init_redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            session_ttl=settings.SESSION_TTL,
        )
    except redis.RedisError as e:
        # Every authenticated request answers 401 until Redis is back
        logger.error(f"Redis initialization failed: {e}")

    if _database_ok() and settings.DEBUG:
        # Migrations own the schema outside DEBUG
        import app.model  # noqa: F401
        Base.metadata.create_all(bind=engine)
        logger.info("Chat tables created (DEBUG mode)")

    yield

    logger.info("Shutting down...")
    engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(SessionMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

# Local attachment storage, used when S3_BUCKET_NAME is unset
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount(settings.UPLOAD_BASE_URL, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/ready")
async def ready(response: Response):
    """Readiness: the database and the session store both answer."""
    checks = {"database": _database_ok(), "sessions": ping_redis()}
    if not all(checks.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "ok" if all(checks.values()) else "degraded", **checks}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
