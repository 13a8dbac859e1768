"""Medbank configuration system using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MedbankConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "MEDBANK"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./medbank.db"

    # Auth
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60 * 24
    impersonation_expiry_minutes: int = 120
    min_password_length: int = 8
    verification_code_ttl_minutes: int = 15
    default_role: str = "student"

    # Seed admin (created at startup when no admin exists)
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Email
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_addr: str = "no-reply@medbank.local"

    # Comments
    comments_promote_orphans: bool = False
    comments_anonymous_label: str = "Anonymous"

    # Analytics
    analytics_cohort_metrics: bool = True
    analytics_recent_users_limit: int = 5

    @field_validator("default_role")
    @classmethod
    def validate_default_role(cls, v: str) -> str:
        allowed = {"student", "maintainer", "admin"}
        if v not in allowed:
            raise ValueError(f"default_role must be one of {allowed}")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        allowed = {"HS256", "HS384", "HS512"}
        if v not in allowed:
            raise ValueError(f"jwt_algorithm must be one of {allowed}")
        return v

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def smtp_config(self) -> dict:
        return {
            "host": self.smtp_host or "",
            "port": self.smtp_port,
            "username": self.smtp_username,
            "password": self.smtp_password,
            "from_addr": self.smtp_from_addr,
        }


def get_config() -> MedbankConfig:
    """Factory function to create config instance."""
    return MedbankConfig()
