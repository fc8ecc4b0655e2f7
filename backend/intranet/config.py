from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60

    UPLOAD_DIR: str = "uploads"
    MAX_ATTACHMENT_BYTES: int = 10 * 1024 * 1024
    ALLOWED_ATTACHMENT_TYPES: list[str] = ["jpeg", "jpg", "png", "gif", "webp"]

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    class Config:
        env_file = ".env"

settings = Settings()
