from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Single fixed locale used for "today" / "now" in week generation and time-gated sync.
    schedule_timezone: str = Field("Asia/Shanghai", alias="SCHEDULE_TIMEZONE")
    # Whether `note` participates in drift comparison unless a caller overrides it.
    drift_compare_note: bool = Field(False, alias="DRIFT_COMPARE_NOTE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
