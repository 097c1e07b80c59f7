from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Keepsake API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:5173",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_dsn: str | None = Field(
        default=None,
        env="DATABASE_DSN",
        description="Full SQLAlchemy URL; takes precedence over the individual DB_* settings",
    )
    database_user: str = Field(default="keepsake", env="DB_USER")
    database_password: str = Field(default="keepsake", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="keepsake", env="DB_NAME")
    database_operation_timeout_seconds: float = Field(
        default=10.0,
        env="DATABASE_OPERATION_TIMEOUT_SECONDS",
        description="Upper bound for a single persistence call issued by the realtime layer.",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_previous_secret_key: str | None = Field(
        default=None,
        env="JWT_PREVIOUS_SECRET_KEY",
        description="Previous signing secret still accepted while rotating keys.",
    )
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_message_max_length: int = Field(default=4000, env="CHAT_MESSAGE_MAX_LENGTH")
    ephemeral_message_ttl_seconds: int = Field(
        default=120,
        env="EPHEMERAL_MESSAGE_TTL_SECONDS",
        description="Visible lifetime of ephemeral chat messages.",
    )
    expiry_sweep_enabled: bool = Field(
        default=True,
        env="EXPIRY_SWEEP_ENABLED",
        description="Run the background job purging expired ephemeral messages.",
    )
    expiry_sweep_interval_seconds: float = Field(
        default=60.0,
        env="EXPIRY_SWEEP_INTERVAL_SECONDS",
        description="Delay between two expiry sweeps.",
    )

    websocket_require_token: bool = Field(
        default=True,
        env="WEBSOCKET_REQUIRE_TOKEN",
        description="Require a signed access token matching the userId of the auth frame.",
    )
    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    invitation_code_groups: int = Field(default=3, env="INVITATION_CODE_GROUPS")
    invitation_code_group_length: int = Field(default=4, env="INVITATION_CODE_GROUP_LENGTH")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_dsn:
            return self.database_dsn
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("ephemeral_message_ttl_seconds", "chat_history_max_limit")
    @classmethod
    def ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
