"""YAML-backed configuration for the app builder runtime."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "AgentSettings",
    "AppConfig",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "LimitsSettings",
    "LoggingSettings",
    "ModelSettings",
    "PathSettings",
    "SecuritySettings",
    "ToolSettings",
    "VerifierSettings",
    "WebSearchSettings",
    "default_config_template",
    "load_config",
    "write_config",
]

DEFAULT_CONFIG_NAME = "config.yaml"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
MAX_AGENT_TURNS = 20
REASONING_STREAM_CHUNK_SIZE = 2
REASONING_STREAM_DELAY_MS = 16


class ConfigError(RuntimeError):
    """Raised when the configuration file is missing or malformed."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ModelSettings(_Section):
    """Language-model connection parameters."""

    provider: str = "anthropic"
    name: str = DEFAULT_MODEL
    max_tokens: int = Field(default=8192, gt=0)
    temperature: Optional[float] = 0.2
    top_p: Optional[float] = None
    streaming: bool = True
    base_url: str = "https://api.anthropic.com/v1/messages"
    api_key: Optional[str] = None
    timeout: float = Field(default=120.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0)

    def resolved_api_key(self) -> Optional[str]:
        return self.api_key or os.getenv("ANTHROPIC_API_KEY")


class AgentSettings(_Section):
    max_turns: int = Field(default=MAX_AGENT_TURNS, ge=1)
    dry_run: bool = False
    reasoning_chunk_size: int = Field(default=REASONING_STREAM_CHUNK_SIZE, ge=1)
    reasoning_delay_ms: int = Field(default=REASONING_STREAM_DELAY_MS, ge=0)


class SecuritySettings(_Section):
    """Glob policy applied by the tool gateway."""

    allowed_workspaces: List[str] = Field(default_factory=lambda: ["**"])
    denied_paths: List[str] = Field(
        default_factory=lambda: [
            ".git/**",
            "node_modules/**",
            "**/.env",
            "**/.env.*",
            "**/*.pem",
            "**/*.key",
            "**/.ssh/**",
        ]
    )
    max_file_size: int = Field(default=1_000_000, gt=0)
    secret_patterns: List[str] = Field(
        default_factory=lambda: [
            r"sk-[A-Za-z0-9_\-]{20,}",
            r"AKIA[0-9A-Z]{16}",
            r"ghp_[A-Za-z0-9]{36}",
        ]
    )
    redact_secrets: bool = True


class LimitsSettings(_Section):
    max_tool_payload_size: int = Field(default=1_000_000, gt=0)
    max_search_results: int = Field(default=100, ge=1)


class LoggingSettings(_Section):
    level: str = "info"
    log_file: Optional[str] = None
    capture_transcripts: bool = True
    transcript_dir: str = "data/transcripts"


class WebSearchSettings(_Section):
    enabled: bool = False
    max_uses: Optional[int] = Field(default=None, ge=1)
    allowed_domains: List[str] = Field(default_factory=list)
    blocked_domains: List[str] = Field(default_factory=list)


class ToolSettings(_Section):
    web_search: WebSearchSettings = Field(default_factory=WebSearchSettings)


class VerifierSettings(_Section):
    enabled: bool = True
    timeout_seconds: float = Field(default=60.0, gt=0)
    output_limit: int = Field(default=5000, gt=0)


class PathSettings(_Section):
    workspace: str = "."
    data: str = "data"
    db_path: Optional[str] = None


class AppConfig(_Section):
    """Top-level configuration document."""

    model: ModelSettings = Field(default_factory=ModelSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    verifier: VerifierSettings = Field(default_factory=VerifierSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    base_dir: Path = Field(default=Path("."), exclude=True)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "AppConfig":
        """Validate a raw mapping, reporting every problem in one error."""
        try:
            config = cls.model_validate(dict(data))
        except ValidationError as error:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from error
        if base_dir is not None:
            config.base_dir = base_dir
        return config

    def _resolve(self, value: str) -> Path:
        candidate = Path(value)
        if not candidate.is_absolute():
            candidate = (self.base_dir / candidate).resolve()
        return candidate

    @property
    def workspace_root(self) -> Path:
        return self._resolve(self.paths.workspace)

    @property
    def data_root(self) -> Path:
        return self._resolve(self.paths.data)

    @property
    def db_path(self) -> Path:
        if self.paths.db_path:
            return self._resolve(self.paths.db_path)
        return self.data_root / "ab.sqlite"

    @property
    def transcript_dir(self) -> Path:
        return self._resolve(self.logging.transcript_dir)


_DEFAULT_TEMPLATE: Dict[str, Any] = {
    "model": {
        "provider": "anthropic",
        "name": DEFAULT_MODEL,
        "max_tokens": 8192,
        "temperature": 0.2,
        "streaming": True,
    },
    "agent": {
        "max_turns": MAX_AGENT_TURNS,
        "dry_run": False,
    },
    "security": {
        "allowed_workspaces": ["**"],
        "denied_paths": SecuritySettings().denied_paths,
        "max_file_size": 1_000_000,
        "redact_secrets": True,
    },
    "logging": {
        "level": "info",
        "capture_transcripts": True,
        "transcript_dir": "data/transcripts",
    },
    "tools": {
        "web_search": {"enabled": False},
    },
    "verifier": {
        "enabled": True,
        "timeout_seconds": 60,
        "output_limit": 5000,
    },
    "paths": {
        "workspace": "app",
        "data": "data",
        "db_path": "data/ab.sqlite",
    },
}


def default_config_template() -> Dict[str, Any]:
    """Return a fresh copy of the default configuration document."""
    return copy.deepcopy(_DEFAULT_TEMPLATE)


def load_config(config_path: Path | str) -> AppConfig:
    """Load YAML configuration from disk and validate it."""
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return AppConfig.from_mapping(data, base_dir=path.resolve().parent)


def write_config(config_path: Path | str, config_data: Mapping[str, Any]) -> None:
    """Persist a configuration mapping as YAML."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)
