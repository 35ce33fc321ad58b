"""Pydantic models describing the MailSync runtime configuration document."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class ConnectionSettings(BaseModel):
    """Transport parameters applied to every IMAP session."""

    model_config = ConfigDict(extra="forbid")

    ssl: bool = True
    connect_timeout_s: float = Field(default=5.0, gt=0)


class FetchSettings(BaseModel):
    """Defaults for fetch operations started without explicit values."""

    model_config = ConfigDict(extra="forbid")

    default_folder: str = "inbox"
    chunk_size: int = -1

    @field_validator("default_folder")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValidationError("default_folder must not be blank")
        return value


class WatchSettings(BaseModel):
    """Keep-alive parameters for change watches.

    ``idle_timeout_s`` bounds one wait-for-push cycle, and therefore how long
    a released watch may keep its worker alive.
    """

    model_config = ConfigDict(extra="forbid")

    default_folder: str = "inbox"
    idle_timeout_s: float = Field(default=60.0, gt=0)


class LoggingSettings(BaseModel):
    """Structured logger settings."""

    model_config = ConfigDict(extra="forbid")

    component: str = "mailsync"
    level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``mailsync.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != 1:
            raise ValidationError("config version must be 1")
        return value
