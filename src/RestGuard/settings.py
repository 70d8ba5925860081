"""Configuration models, environment overrides, and YAML loading for the guard.

The guard itself only needs a handful of pass-through HTTP client settings and
the list of services to register.  Those are described by pydantic models so
configuration files are validated up front; :func:`load_config` reads a YAML
(or JSON) document, applies ``RESTGUARD_*`` environment overrides and returns
a :class:`GuardConfiguration` ready for :meth:`RestGuard.from_config`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .specs.node import RestNode
from .version import RGUARD_VERSION

__all__ = [
    "DEFAULT_USER_AGENT",
    "LOG_DIR",
    "ServiceConfiguration",
    "GuardConfiguration",
    "EnvironmentOverrides",
    "get_env_overrides",
    "normalize_config_path",
    "load_raw_yaml",
    "build_configuration",
    "load_config",
]

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"RestGuard v{RGUARD_VERSION}"

LOG_DIR = Path(platformdirs.user_log_dir("restguard"))


class ServiceConfiguration(BaseModel):
    """Declarative description of one logical service and its nodes."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    nodes: List[RestNode] = Field(default_factory=list)
    retries: int = Field(default=0, ge=0, le=100)
    retry_interval_ms: int = Field(default=0, ge=0, le=600_000)
    options: Dict[str, str] = Field(default_factory=dict)


class GuardConfiguration(BaseModel):
    """HTTP client settings and services handled by a :class:`RestGuard`.

    Field names follow the configuration file keys.  Zero values for the
    connection limits mean "no explicit limit" and fall back to the defaults
    in :mod:`RestGuard.network.policy`.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    reqs_timeout: int = Field(default=120, ge=0, le=3600, description="Per-request timeout (s)")
    max_idle_conns: int = Field(default=10, ge=0, le=4096)
    idle_conn_timeout: int = Field(default=90, ge=0, le=3600, description="Keepalive expiry (s)")
    max_conns4host: int = Field(default=10, ge=0, le=4096)
    max_idleconns4host: int = Field(default=5, ge=0, le=4096)
    disable_compression: bool = Field(default=False)
    insecure_skip_verify: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    services: List[ServiceConfiguration] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        candidate = value.strip().upper()
        if candidate not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unsupported log level '{value}'")
        return candidate

    @field_validator("services")
    @classmethod
    def _unique_service_names(cls, value: List[ServiceConfiguration]) -> List[ServiceConfiguration]:
        seen = set()
        for service in value:
            if service.name in seen:
                raise ValueError(f"duplicate service '{service.name}'")
            seen.add(service.name)
        return value


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    user_agent: Optional[str] = None
    reqs_timeout: Optional[int] = None
    insecure_skip_verify: Optional[bool] = None
    log_level: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="RESTGUARD_", case_sensitive=False, extra="ignore")


def get_env_overrides() -> Dict[str, Any]:
    """Return the overrides currently set in the environment."""

    return EnvironmentOverrides().model_dump(exclude_none=True)


def normalize_config_path(config_path: Path) -> Path:
    """Return a user-supplied configuration path with ``~`` and symlinks resolved."""

    expanded = Path(config_path).expanduser()
    try:
        return expanded.resolve(strict=False)
    except (OSError, RuntimeError):  # pragma: no cover - only triggered on rare filesystems
        return expanded


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Read a YAML configuration file and return its top-level mapping."""

    normalized_path = normalize_config_path(config_path)
    if not normalized_path.exists():
        raise ConfigurationError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Configuration file '{normalized_path}' contains invalid YAML"
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError("Configuration file must contain a mapping at the root")
    return data


def build_configuration(
    raw: Mapping[str, object], *, apply_env: bool = True
) -> GuardConfiguration:
    """Validate ``raw`` into a :class:`GuardConfiguration`, merging env overrides."""

    payload = dict(raw)
    if apply_env:
        overrides = get_env_overrides()
        if overrides:
            logger.debug("applying environment overrides", extra={"keys": sorted(overrides)})
        payload.update(overrides)

    try:
        return GuardConfiguration.model_validate(payload)
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            messages.append(f"{location or '<root>'}: {error.get('msg')}")
        raise ConfigurationError(
            "Configuration validation failed:\n- " + "\n- ".join(messages)
        ) from exc


def load_config(config_path: Path, *, apply_env: bool = True) -> GuardConfiguration:
    """Load and validate a guard configuration file."""

    raw = load_raw_yaml(config_path)
    config = build_configuration(raw, apply_env=apply_env)
    logger.info(
        "configuration loaded",
        extra={"path": str(normalize_config_path(config_path)), "services": len(config.services)},
    )
    return config
