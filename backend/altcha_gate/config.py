from pydantic import ConfigDict, SecretStr, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Signing key; no default, startup refuses to run without one
    secret_key: SecretStr | None = None

    # Proof of Work
    max_number: int = 50_000

    # Session credential
    session_ttl_seconds: int = 86_400  # 24 hours
    cookie_name: str = "altcha_verified"
    cookie_secure: bool = True

    # Challenge page
    site_name: str = "Protected Resource"

    # CORS
    cors_origins: list[str] | str = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # Server
    host: str = "127.0.0.1"
    port: int = 8080

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("max_number", "session_ttl_seconds")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("log_format")
    @classmethod
    def known_log_format(cls, v: str) -> str:
        if v not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return v


settings = Settings()
