from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Health engine
    check_timeout_seconds: float = 5.0  # shared per-check deadline, all components

    # Component manifest (YAML)
    components_file: str = "components.yaml"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    @field_validator("check_timeout_seconds")
    @classmethod
    def _non_negative_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("check_timeout_seconds must be >= 0")
        return v


settings = Settings()
