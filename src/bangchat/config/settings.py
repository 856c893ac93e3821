"""
bangchat/config/settings.py - Bangchat Runtime Settings

Merges config.yaml (structure) with the environment and .env (secrets).
Pydantic-powered: all fields are validated and typed.

  - Plugin parameters may be written as an opaque "k=v,k2=v2" string or as
    a YAML mapping; mappings are flattened into the string form
  - SessionConfig rejects a whitespace or multi-character directive marker
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a human-readable list of every problem found
  - load_settings() respects the BANGCHAT_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Backends that talk to the official OpenAI endpoint unless base_url is given
_KEYED_BACKENDS = {"openai"}


def _flatten_params(v: Any) -> Any:
    """Turn a YAML mapping of plugin parameters into the "k=v,k2=v2" form."""
    if v is None:
        return ""
    if isinstance(v, dict):
        return ",".join(f"{k}={val}" for k, val in v.items())
    return v


def _params_have_key(params: str, key: str) -> bool:
    return any(
        piece.split("=", 1)[0].strip() == key
        for piece in params.split(",")
        if "=" in piece
    )


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class LanguageModelConfig(BaseModel):
    backend: str = "openai"
    params: str = ""

    @field_validator("params", mode="before")
    @classmethod
    def _flatten(cls, v: Any) -> Any:
        return _flatten_params(v)

    @field_validator("backend")
    @classmethod
    def _non_empty_backend(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("lm.backend must not be empty")
        return v.strip()


class ToolEntryConfig(BaseModel):
    module: str
    params: str = ""

    @field_validator("params", mode="before")
    @classmethod
    def _flatten(cls, v: Any) -> Any:
        return _flatten_params(v)


class SessionConfig(BaseModel):
    system_prompt: Optional[str] = None
    system_prompt_file: Optional[str] = None
    exit_token: str = "!exit"
    think_token: str = "!think"
    directive_marker: str = "!"
    max_tool_rounds: Optional[int] = None
    show_thinking: bool = False
    transcript_path: Optional[str] = None
    state_path: Optional[str] = None

    @field_validator("directive_marker")
    @classmethod
    def _single_char_marker(cls, v: str) -> str:
        if len(v) != 1 or v.isspace():
            raise ValueError(
                f"session.directive_marker must be a single non-space character, got {v!r}"
            )
        return v

    @field_validator("max_tool_rounds")
    @classmethod
    def _positive_rounds(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("session.max_tool_rounds must be >= 1 (or null for no limit)")
        return v

    @field_validator("exit_token", "think_token")
    @classmethod
    def _strip_token(cls, v: str) -> str:
        return v.strip()


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 3
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Bangchat runtime settings.

    Priority (highest to lowest):
      1. config.yaml sections (passed as init kwargs)
      2. Environment variables (BANGCHAT_ prefix, "__" for nesting)
      3. .env file
      4. Field defaults

    Command-line flags are applied on top by bangchat.main.
    """

    model_config = SettingsConfigDict(
        env_prefix="BANGCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    lm: LanguageModelConfig = Field(default_factory=LanguageModelConfig)
    tools: List[ToolEntryConfig] = Field(default_factory=list)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("lm", mode="before")
    @classmethod
    def _coerce_lm(cls, v: Any) -> Any:
        return LanguageModelConfig(**v) if isinstance(v, dict) else v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        if v is None:
            return []
        # "tools: [ish, calc]" is shorthand for entries without params
        if isinstance(v, list):
            return [{"module": item} if isinstance(item, str) else item for item in v]
        return v

    @field_validator("session", mode="before")
    @classmethod
    def _coerce_session(cls, v: Any) -> Any:
        return SessionConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def resolve_system_prompt(self) -> str:
        """
        Return the configured system prompt text.

        A literal system_prompt wins over system_prompt_file. Returns "" when
        neither is set.
        """
        if self.session.system_prompt is not None:
            return self.session.system_prompt
        if self.session.system_prompt_file:
            return Path(self.session.system_prompt_file).expanduser().read_text(encoding="utf-8")
        return ""

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Called once in bangchat.main before any plugin is loaded. Pydantic
        field validators catch type and value errors at parse time; this
        method catches cross-field and filesystem problems.
        """
        errors: list[str] = []

        # ── Official OpenAI endpoint needs a key ─────────────────────────────
        backend = self.lm.backend
        if backend in _KEYED_BACKENDS:
            has_base_url = _params_have_key(self.lm.params, "base_url")
            has_key = _params_have_key(self.lm.params, "api_key") or bool(self.openai_api_key)
            if not has_base_url and not has_key:
                errors.append(
                    f"LM backend '{backend}' requires OPENAI_API_KEY to be set "
                    f"in your .env file, or an explicit base_url in lm.params."
                )

        # ── System prompt sources ────────────────────────────────────────────
        s = self.session
        if s.system_prompt is not None and s.system_prompt_file:
            errors.append(
                "session.system_prompt and session.system_prompt_file are both "
                "set. Use only one of them."
            )
        if s.system_prompt_file and not Path(s.system_prompt_file).expanduser().is_file():
            errors.append(
                f"session.system_prompt_file '{s.system_prompt_file}' does not exist."
            )

        # ── Session tokens ───────────────────────────────────────────────────
        if not s.exit_token:
            errors.append("session.exit_token must not be empty.")
        if s.think_token and s.think_token == s.exit_token:
            errors.append("session.think_token and session.exit_token must differ.")

        # ── Tool entries ─────────────────────────────────────────────────────
        for i, entry in enumerate(self.tools):
            if not entry.module.strip():
                errors.append(f"tools[{i}].module must not be empty.")

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nbangchat startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml, your .env file "
                f"or the command line and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"lm", "tools", "session", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. BANGCHAT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("BANGCHAT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    A missing config file is not an error: every field has a default.
    """
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    return Settings(**init_kwargs)
