"""Configuration management for the migration tool."""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dirmigrator.core.rewrite import RewriteRule


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TenantConfig(BaseModel):
    """Connection settings for one directory-service tenant."""

    tenant_id: str = Field(description="Tenant identifier")
    base_url: str = Field(description="Directory API base URL")
    api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Pre-issued bearer token for the tenant",
    )
    rate_limit: int = Field(
        default=600,
        ge=1,
        description="API rate limit (requests per minute)",
    )
    timeout: int = Field(default=30, ge=5, description="Request timeout in seconds")

    def get_headers(self) -> Dict[str, str]:
        """Get headers for directory API requests.

        Returns:
            Dictionary of headers
        """
        headers = {"Content-Type": "application/json"}
        token = self.api_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers


class StateConfig(BaseModel):
    """Configuration for the run ledger."""

    path: Path = Field(
        default=Path("migration_state.json"),
        description="Ledger path (.json for a document, .db/.sqlite for SQLite)",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: Path) -> Path:
        """Ensure path is absolute."""
        if not v.is_absolute():
            return Path.cwd() / v
        return v


class MigrationConfig(BaseModel):
    """Configuration for migration behavior."""

    run_id: Optional[str] = Field(default=None, description="Run identifier (generated if unset)")
    dry_run: bool = Field(default=False, description="Record outcomes without creating objects")
    parallelism: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Concurrent per-object creates within a single phase",
    )
    max_retry: int = Field(default=3, ge=1, description="Maximum create attempts per invocation")
    retry_base: float = Field(
        default=2.0,
        gt=1.0,
        description="Backoff base; delay before attempt n+1 is base ** n seconds",
    )
    create_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-attempt create timeout in seconds",
    )
    rewrite_rules: List[RewriteRule] = Field(
        default_factory=list,
        description="Ordered principal suffix rewrite rules (first match wins)",
    )
    phases: Optional[List[str]] = Field(
        default=None,
        description="Restrict the default pipeline to these phases",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    console: bool = Field(default=True, description="Enable console logging")
    file: Optional[Path] = Field(default=None, description="Log file path")
    format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log format (json or text)",
    )
    rotation_size: int = Field(
        default=10 * 1024 * 1024,  # 10MB
        ge=1024 * 1024,
        description="Log rotation size in bytes",
    )
    retention_days: int = Field(default=30, ge=1, description="Log retention in days")


class Config(BaseSettings):
    """Main configuration for the migration tool."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: TenantConfig
    destination: TenantConfig
    state: StateConfig = Field(default_factory=StateConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML or JSON file.

        Args:
            path: Path to configuration file

        Returns:
            Config instance

        Raises:
            ValueError: If file format is not supported
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            if path.suffix in [".yml", ".yaml"]:
                data = yaml.safe_load(f) or {}
            elif path.suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        env_path = Path(".env")
        if env_path.exists():
            load_dotenv(env_path)

        # Tokens are usually kept out of the file
        for side in ("source", "destination"):
            section = data.get(side)
            if isinstance(section, dict) and not section.get("api_token"):
                token = os.getenv(f"{side.upper()}_API_TOKEN")
                if token:
                    section["api_token"] = token

        return cls(**data)

    def to_file(self, path: Path) -> None:
        """Save configuration to YAML or JSON file.

        Args:
            path: Path to save configuration file
        """
        data = self.model_dump(mode="json", exclude_defaults=False)

        # Tokens come from the environment, never from the file
        for side in ("source", "destination"):
            if side in data:
                data[side]["api_token"] = ""

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            if path.suffix in [".yml", ".yaml"]:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            elif path.suffix == ".json":
                json.dump(data, f, indent=2)
            else:
                raise ValueError(f"Unsupported configuration file format: {path.suffix}")

    def redacted(self) -> Dict[str, Any]:
        """Configuration as plain data with secrets removed."""
        return self.model_dump(
            mode="json",
            exclude={"source": {"api_token"}, "destination": {"api_token"}},
        )


def load_config(
    config_file: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> Config:
    """Load configuration from file and environment.

    Args:
        config_file: Optional path to configuration file
        env_file: Optional path to .env file

    Returns:
        Config instance
    """
    if env_file and env_file.exists():
        load_dotenv(env_file)

    if config_file and config_file.exists():
        return Config.from_file(config_file)

    # Environment variables only, e.g. SOURCE__TENANT_ID
    return Config()
