"""
Service configuration loaded from environment variables.

A ``.env`` file (or the file named by ``DOTENV_CONFIG_PATH``) is loaded
first; variables already set in the environment win.
"""

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

SELECTION_POLICIES = ("least_loaded", "round_robin", "first")


class Settings(BaseModel):
    """Runtime settings for the claim routing service."""

    # Storage
    storage_backend: Literal["postgres", "memory"] = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "claim_routing"
    db_user: str = "claim_routing"
    db_password: str | None = None
    db_pool_min_size: int = Field(default=2, ge=1)
    db_pool_max_size: int = Field(default=10, ge=1)

    # Queue
    kafka_bootstrap_servers: str = "localhost:9092"
    assignment_topic: str = "claim-assignments"
    kafka_group_id: str = "claim-routing"
    dead_letter_topic: str | None = None
    notification_topic: str | None = None
    max_delivery_attempts: int = Field(default=5, ge=1)
    redelivery_backoff_seconds: float = Field(default=1.0, ge=0)

    # Supervisor
    auto_start_queue: bool = True
    bootstrap_max_retries: int = Field(default=3, ge=1)
    bootstrap_retry_delay: float = Field(default=10.0, ge=0)

    # Routing
    rule_cache_ttl_seconds: float = Field(default=30.0, ge=0)
    selection_policy: str = "least_loaded"

    # Surfaces
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_tokens: dict[str, str] = Field(default_factory=dict)
    metrics_port: int = 9100
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @field_validator("selection_policy")
    @classmethod
    def validate_selection_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SELECTION_POLICIES:
            raise ValueError(f"selection_policy must be one of {', '.join(SELECTION_POLICIES)}")
        return v

    @field_validator("dead_letter_topic", "notification_topic", "db_password")
    @classmethod
    def empty_as_none(cls, v: str | None) -> str | None:
        return v or None

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "Settings":
        """
        Build settings from the process environment.

        Args:
            dotenv_path: Optional .env file; defaults to DOTENV_CONFIG_PATH or ./.env

        Returns:
            Validated Settings
        """
        load_dotenv(dotenv_path or os.getenv("DOTENV_CONFIG_PATH") or ".env", override=False)

        values: dict[str, object] = {}
        for name in cls.model_fields:
            if name == "api_tokens":
                continue
            raw = os.getenv(name.upper())
            if raw is not None and raw != "":
                values[name] = raw

        tokens = os.getenv("API_TOKENS")
        if tokens:
            values["api_tokens"] = _parse_tokens(tokens)
        return cls.model_validate(values)


def _parse_tokens(raw: str) -> dict[str, str]:
    """Parse ``token:subject,token:subject`` pairs."""
    tokens: dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, _, subject = pair.partition(":")
        if not subject:
            raise ValueError(f"API_TOKENS entry must be token:subject, got {pair!r}")
        tokens[token.strip()] = subject.strip()
    return tokens
