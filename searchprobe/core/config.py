"""
Application configuration models and helpers.

Environment-level settings (authority, redirect port range, storage paths,
encryption secret) live here. The probe setup itself (query, principals,
interval) is a JSON document, see ``searchprobe.schemas.config``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)

DEFAULT_HOME = Path("~/.searchprobe")


class AuthSettings(BaseSettings):
    """Entra ID endpoints and interactive login behaviour."""

    model_config = _ENV_CONFIG

    authority_host: str = Field(
        "https://login.microsoftonline.com",
        validation_alias="SEARCHPROBE_AUTHORITY_HOST",
    )
    redirect_port_start: int = Field(
        18700, ge=1, le=65535, validation_alias="SEARCHPROBE_REDIRECT_PORT_START"
    )
    redirect_port_end: int = Field(
        18799, ge=1, le=65535, validation_alias="SEARCHPROBE_REDIRECT_PORT_END"
    )
    login_timeout_seconds: float = Field(
        120.0, gt=0, validation_alias="SEARCHPROBE_LOGIN_TIMEOUT"
    )
    refresh_window_seconds: int = Field(
        300,
        ge=0,
        validation_alias="SEARCHPROBE_REFRESH_WINDOW",
        description="Access tokens closer than this to expiry are refreshed.",
    )
    http_timeout_seconds: float = Field(
        10.0, gt=0, validation_alias="SEARCHPROBE_AUTH_HTTP_TIMEOUT"
    )

    @field_validator("authority_host")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_port_range(self) -> "AuthSettings":
        if self.redirect_port_end < self.redirect_port_start:
            raise ValueError("Redirect port range end must not precede its start.")
        return self


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _ENV_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for stored tokens. When "
            "omitted a per-user key file in the credential directory is used."
        ),
    )


class StorageSettings(BaseSettings):
    """Where credentials, probe records and the probe config live."""

    model_config = _ENV_CONFIG

    credential_dir: Path = Field(
        DEFAULT_HOME / "credentials", validation_alias="SEARCHPROBE_CREDENTIAL_DIR"
    )
    records_db_path: Path = Field(
        DEFAULT_HOME / "probe_records.db", validation_alias="SEARCHPROBE_RECORDS_DB"
    )
    config_path: Path = Field(
        DEFAULT_HOME / "probe_config.json", validation_alias="SEARCHPROBE_CONFIG_PATH"
    )
    search_timeout_seconds: float = Field(
        100.0, gt=0, validation_alias="SEARCHPROBE_SEARCH_TIMEOUT"
    )

    @field_validator("credential_dir", "records_db_path", "config_path")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return Path(value).expanduser()


class AppSettings(BaseSettings):
    """Root settings object."""

    model_config = _ENV_CONFIG

    environment: str = Field("development", validation_alias="SEARCHPROBE_ENV")
    log_level: str = Field("INFO", validation_alias="SEARCHPROBE_LOG_LEVEL")
    auth: AuthSettings = Field(default_factory=AuthSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()


__all__ = [
    "AppSettings",
    "AuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
