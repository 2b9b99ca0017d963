from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Product Studio Batch API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Security
    SECRET_KEY: str = "your-secret-key-change-this-in-production-min-32-chars"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Storage
    DATABASE_PATH: str = "./data/studio.db"

    # Batch limits and pricing
    PER_ITEM_COST: int = 1
    MAX_BATCH_SIZE: int = 20
    ITEM_PACING_SECONDS: float = 2.0
    GENERATION_TIMEOUT_SECONDS: float = 120.0

    # External collaborators
    GENERATION_API_URL: str = "http://localhost:9000/v1/generate"
    GENERATION_API_KEY: str = ""
    CAPTION_API_URL: Optional[str] = None

    # Dispatch
    DISPATCHER_BACKEND: Literal["inprocess", "durable"] = "inprocess"
    DISPATCH_MAX_ATTEMPTS: int = 3
    DISPATCH_BACKOFF_BASE_SECONDS: float = 5.0
    DISPATCH_BACKOFF_MAX_SECONDS: float = 300.0
    WORKER_POLL_INTERVAL_SECONDS: float = 1.0
    WORKER_STALE_AFTER_SECONDS: float = 1800.0
    WORKER_HEARTBEAT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @property
    def database_path(self) -> Path:
        """Get Path object for the database file, creating its directory"""
        path = Path(self.DATABASE_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


# Global settings instance
settings = Settings()
