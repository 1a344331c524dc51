from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DEV: bool = False
    SECRET_KEY: str = "change_me_in_env"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24h

    DATABASE_URL: str = "sqlite:///./chat.db"
    DB_TIMEOUT_SECONDS: float = 10.0
    LOCK_TIMEOUT_SECONDS: float = 5.0

    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024  # 50MB

    SSE_QUEUE_SIZE: int = 100
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

settings = Settings()
