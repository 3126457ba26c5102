"""
Application settings.
Database secrets are loaded from AWS Secrets Manager when DB_SECRET_NAME is set.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ENDPOINT_URL: Optional[str] = None  # e.g. http://localhost:4566

    # Database. DATABASE_URL wins over the individual parts.
    DATABASE_URL: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASS: Optional[str] = None
    DB_SECRET_NAME: Optional[str] = None  # e.g. agency-chat/db

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    SESSION_TTL: int = 86400  # 24 hours in seconds

    # S3 (when set, chat attachments are stored in S3)
    S3_BUCKET_NAME: Optional[str] = None
    S3_REGION: Optional[str] = None  # defaults to AWS_REGION

    # Optional
    DEBUG: bool = False
    PROJECT_NAME: str = "Agency Chat"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Local uploads fallback when S3_BUCKET_NAME is not set
    UPLOAD_DIR: str = "uploads"
    UPLOAD_BASE_URL: str = "/uploads"

    # Chat
    CHAT_PAGE_SIZE: int = 50
    CHAT_ROOM_PAGE_SIZE: int = 20
    CHAT_MAX_MESSAGE_LENGTH: int = 4000
    CHAT_PREVIEW_LENGTH: int = 200
    CHAT_MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    CHAT_ALLOWED_MIME_TYPES: List[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/x-rar-compressed",
        "video/mp4",
        "video/quicktime",
        "audio/mpeg",
        "audio/wav",
    ]
    CHAT_OPTIMISTIC_ID_CAPACITY: int = 1000
    CHAT_FEED_RECONNECT_ATTEMPTS: int = 5
    CHAT_FEED_RECONNECT_BASE_DELAY: float = 0.5
    CHAT_FEED_RECONNECT_MAX_DELAY: float = 5.0
    CHAT_DASHBOARD_ROOMS: int = 3

    @property
    def use_s3(self) -> bool:
        return bool(self.S3_BUCKET_NAME)

    @property
    def s3_region(self) -> str:
        return self.S3_REGION or self.AWS_REGION

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.DB_HOST:
            return "sqlite:///./agency_chat.db"
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()

# Load DB credentials from AWS Secrets Manager only when they aren't already
# provided via environment variables (e.g. in Docker / local dev).
if settings.DB_SECRET_NAME and not (settings.DATABASE_URL or settings.DB_HOST):
    from app.aws.secrets import load_db_credentials

    _db_creds = load_db_credentials(settings.DB_SECRET_NAME, region_name=settings.AWS_REGION)
    settings.DB_HOST = _db_creds["host"]
    settings.DB_PORT = _db_creds["port"]
    settings.DB_NAME = _db_creds["database"]
    settings.DB_USER = _db_creds["username"]
    settings.DB_PASS = _db_creds["password"]
