"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Secrets (API keys) live in .env.
Environment variables override both using ``__`` as the nested delimiter
(e.g. ``SECRETS__ANTHROPIC_API_KEY``). Secrets use SecretStr for masking
in logs.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from sandgate.config import get_settings

    s = get_settings()
    print(s.review.model)
    print(s.allowlist_path)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Any

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ReviewConfig(_StrictModel):
    """Skill file LLM review (trust cache gate)."""

    model: str = "claude-sonnet-4-20250514"
    api_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    max_tokens: int = 512
    timeout_seconds: float = 30.0
    cache_io_timeout_seconds: float = 5.0
    cache_dir: str | None = None  # None → <project_root>/data/skill-review-cache

    @field_validator("max_tokens")
    @classmethod
    def clamp_max_tokens(cls, v: int) -> int:
        return max(1, v)

    @field_validator("timeout_seconds", "cache_io_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class EgressConfig(_StrictModel):
    """Network egress allowlist (egress policy resolver)."""

    allowlist_path: str | None = None  # None → ~/.config/sandgate/network-allowlist.json
    dns_timeout_seconds: float = 5.0
    container_cli: str = "docker"
    container_image: str = "sandgate-agent:latest"
    support_check_timeout_seconds: float = 15.0

    @field_validator("dns_timeout_seconds", "support_check_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class SecretsConfig(_StrictModel):
    anthropic_api_key: SecretStr | None = None


# ---------------------------------------------------------------------------
# Explicit-fields validation
# ---------------------------------------------------------------------------


def _is_exempt_field(model_cls: type[BaseModel], field_name: str) -> bool:
    """Check if a field is exempt from the explicit-ness requirement.

    Optional fields (X | None) are exempt: TOML has no null type, so None
    can only be expressed by omission.
    """
    import types
    import typing

    annotation = model_cls.model_fields[field_name].annotation

    if isinstance(annotation, types.UnionType) and type(None) in annotation.__args__:
        return True
    origin = getattr(annotation, "__origin__", None)
    if origin is typing.Union and type(None) in annotation.__args__:
        return True
    return annotation is type(None)


def _collect_implicit_fields(settings_cls: type[BaseModel], data: dict[str, Any]) -> list[str]:
    """Find config.toml sections whose non-optional fields were omitted.

    Sections omitted entirely from config.toml use known defaults and are
    not checked. Environment overrides are not subject to this check.
    """
    errors: list[str] = []
    for field_name, field_info in settings_cls.model_fields.items():
        section = data.get(field_name)
        child_cls = field_info.annotation
        if not isinstance(section, dict):
            continue
        if not (isinstance(child_cls, type) and issubclass(child_cls, _StrictModel)):
            continue
        missing = {
            f
            for f in set(child_cls.model_fields) - set(section)
            if not _is_exempt_field(child_cls, f)
        }
        if missing:
            errors.append(f"{field_name}: missing {sorted(missing)}")
    return errors


class _ExplicitTomlSource(TomlConfigSettingsSource):
    """config.toml source that rejects partially spelled-out sections."""

    def __call__(self) -> dict[str, Any]:
        data = super().__call__()
        errors = _collect_implicit_fields(self.settings_cls, data)
        if errors:
            msg = "Config fields must be explicitly set:\n"
            msg += "\n".join(f"  - {e}" for e in errors)
            raise ValueError(msg)
        return data


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    review: ReviewConfig = ReviewConfig()
    egress: EgressConfig = EgressConfig()
    logging: LoggingConfig = LoggingConfig()
    secrets: SecretsConfig = SecretsConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _ExplicitTomlSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def home_dir(self) -> Path:
        return Path.home()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def config_dir(self) -> Path:
        return self.home_dir / ".config" / "sandgate"

    @cached_property
    def review_cache_dir(self) -> Path:
        if self.review.cache_dir:
            return _resolve_path(self.review.cache_dir, self.project_root)
        return self.data_dir / "skill-review-cache"

    @cached_property
    def allowlist_path(self) -> Path:
        if self.egress.allowlist_path:
            return _resolve_path(self.egress.allowlist_path, self.project_root)
        return self.config_dir / "network-allowlist.json"


def _resolve_path(value: str, base: Path) -> Path:
    p = Path(value).expanduser()
    if not p.is_absolute():
        p = base / p
    return p.resolve()


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
