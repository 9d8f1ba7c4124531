import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SmtpConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=587, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[str] = None
    start_tls: bool = False
    email_from: Optional[str] = None
    email_to: List[str] = Field(default_factory=list)
    timeout_seconds: int = Field(default=10, ge=1)

    @field_validator("email_to", mode="before")
    @classmethod
    def split_recipients(cls, v):
        if isinstance(v, str):
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        return v


class CheckerConfig(BaseModel):
    """Process-wide settings, read once at startup and passed explicitly."""

    model_config = ConfigDict(frozen=True)

    # Probe retry window
    retry_count: int = Field(default=3, ge=1)
    retry_backoff_ms: int = Field(default=2000, ge=0)
    timeout_ms: int = Field(default=5000, ge=1)
    http_request_timeout_ms: int = Field(default=3000, ge=1)
    verify_tls: bool = False
    ping_min_replies: int = Field(default=3, ge=1)

    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy URL for the service registry"
    )
    log_level: str = "INFO"

    smtp: SmtpConfig = Field(default_factory=SmtpConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = str(v).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


# env var -> (section, field, type); section None means top level
_ENV_FIELDS = {
    "RETRY_COUNT": (None, "retry_count", int),
    "RETRY_BACKOFF_MS": (None, "retry_backoff_ms", int),
    "TIMEOUT_MS": (None, "timeout_ms", int),
    "HTTP_REQUEST_TIMEOUT_MS": (None, "http_request_timeout_ms", int),
    "VERIFY_TLS": (None, "verify_tls", bool),
    "PING_MIN_REPLIES": (None, "ping_min_replies", int),
    "DATABASE_URL": (None, "database_url", str),
    "LOG_LEVEL": (None, "log_level", str),
    "SMTP_HOST": ("smtp", "host", str),
    "SMTP_PORT": ("smtp", "port", int),
    "SMTP_USER": ("smtp", "user", str),
    "SMTP_PASS": ("smtp", "password", str),
    "SMTP_START_TLS": ("smtp", "start_tls", bool),
    "SMTP_TIMEOUT_SECONDS": ("smtp", "timeout_seconds", int),
    "EMAIL_FROM": ("smtp", "email_from", str),
    "EMAIL_TO": ("smtp", "email_to", str),
}


def load_config(config_path: str = "service_checker.yml") -> CheckerConfig:
    """Load configuration from YAML file with environment variable overrides."""
    config_data: Dict[str, Any] = {}

    try:
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        pass
    except Exception as e:
        print(f"Warning: Failed to load config from {config_path}: {e}")

    if not isinstance(config_data.get("smtp"), dict):
        config_data["smtp"] = {}

    _load_from_environment(config_data)

    return CheckerConfig(**config_data)


def _load_from_environment(config_data: Dict[str, Any]):
    """Apply environment variables on top of file configuration."""
    for env_key, (section, config_field, field_type) in _ENV_FIELDS.items():
        env_value = os.getenv(env_key)
        if env_value is None or env_value == "":
            continue

        target = config_data[section] if section else config_data

        try:
            if field_type is bool:
                target[config_field] = env_value.lower() in ("true", "1", "yes", "on")
            elif field_type is int:
                target[config_field] = int(env_value)
            else:
                target[config_field] = env_value
        except (ValueError, TypeError) as e:
            print(
                f"Warning: Invalid {field_type.__name__} value for {env_key}: {env_value} ({e})"
            )
