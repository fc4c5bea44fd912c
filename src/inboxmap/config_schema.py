"""Pydantic configuration schema for inboxmap.

Mirrors the structure of config.yaml. The file is validated against these
models once at startup; every section has defaults so an empty file is a
valid configuration.

Usage:
    from inboxmap.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class DatabaseConfig(BaseModel):
    """Mapping store location."""

    path: str = Field(
        default="data/inboxmap.db",
        description="Path to the SQLite database holding mailbox mappings",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure the database path is non-empty and has no traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class ProvidersConfig(BaseModel):
    """Provider API endpoints and transport policy."""

    gmail_base_url: str = Field(
        default="https://gmail.googleapis.com",
        description="Gmail REST API root",
    )
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph API root",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request timeout for provider calls",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        le=5,
        description="Transport retries for 429/5xx/network failures (0 disables)",
    )

    @field_validator("gmail_base_url", "graph_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("Base URL must start with https:// or http://")
        return v.rstrip("/")


class SuggestionConfig(BaseModel):
    """Suggestion engine tuning."""

    partial_threshold: float = Field(
        default=0.6,
        ge=0.0,
        lt=1.0,
        description="Minimum similarity (exclusive) for a partial match to be accepted",
    )


class ProvisioningConfig(BaseModel):
    """Provisioning limits."""

    max_items: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Maximum items accepted per provisioning call",
    )
    max_concurrency: int = Field(
        default=1,
        ge=1,
        le=8,
        description="Worker threads for independent subtrees (1 = sequential)",
    )


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=True,
        alias="json",
        description="Emit JSON lines (True) or human-readable console output (False)",
    )

    model_config = {"populate_by_name": True}


class AppConfig(BaseModel):
    """Root configuration schema for inboxmap.

    If validation fails on startup, the application exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    suggestion: SuggestionConfig = Field(default_factory=SuggestionConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
