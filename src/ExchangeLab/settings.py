# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.settings",
#   "purpose": "Define configuration models, environment overrides, and YAML loading helpers",
#   "sections": [
#     {"id": "models", "name": "Configuration Models", "anchor": "MOD", "kind": "api"},
#     {"id": "env", "name": "Environment Overrides", "anchor": "ENV", "kind": "helpers"},
#     {"id": "loading", "name": "YAML Loading & Validation", "anchor": "LOAD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models, parsing, and validation helpers.

Every knob the distribution workflow and the lab provisioner read lives in an
explicit :class:`ResolvedConfig` instance that is passed into the code paths
that need it. Values come from three layers, later layers winning:

1. model defaults declared below,
2. an optional YAML file (``--config`` / ``EXLAB_CONFIG``),
3. ``EXLAB_*`` environment variables (:class:`EnvironmentOverrides`).
"""

from __future__ import annotations

import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from jsonschema import Draft202012Validator
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

__all__ = [
    "DEFAULT_DESTINATION_DIRECTORY",
    "DEFAULT_REMOTE_ROOT_TEMPLATE",
    "LoggingConfiguration",
    "DownloadConfiguration",
    "DistributionConfiguration",
    "CatalogEntryConfig",
    "InventoryConfiguration",
    "DefaultsConfig",
    "ResolvedConfig",
    "EnvironmentOverrides",
    "CONFIG_JSON_SCHEMA",
    "build_resolved_config",
    "get_default_config",
    "get_env_overrides",
    "invalidate_default_config_cache",
    "load_config",
    "load_raw_yaml",
    "normalize_config_path",
    "validate_config",
]

LOGGER = logging.getLogger("ExchangeLab.settings")

DEFAULT_DESTINATION_DIRECTORY = "C$\\Source"
DEFAULT_REMOTE_ROOT_TEMPLATE = "\\\\{host}"

# --- Configuration Models ------------------------------------------------------


class LoggingConfiguration(BaseModel):
    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=20, gt=0, description="Maximum size of rotated log files")
    retention_days: int = Field(default=30, ge=1, description="Retention period for log files")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}")
        return upper

    model_config = {"validate_assignment": True}


class DownloadConfiguration(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=20)
    timeout_sec: float = Field(default=60.0, gt=0, le=3600)
    connect_timeout_sec: float = Field(default=10.0, gt=0, le=300)
    backoff_factor: float = Field(default=0.5, ge=0.0, le=30.0)
    chunk_size_bytes: int = Field(default=1 << 20, gt=0)
    polite_headers: Dict[str, str] = Field(
        default_factory=lambda: {"User-Agent": "ExchangeLab-CUDistributor/1.0"}
    )

    model_config = {"validate_assignment": True}


class DistributionConfiguration(BaseModel):
    """Settings that shape one distribution invocation."""

    temp_directory: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Local cache area the installer is downloaded into",
    )
    destination_directory: str = Field(
        default=DEFAULT_DESTINATION_DIRECTORY,
        description="Directory relative to each target's root share",
    )
    remote_root_template: str = Field(
        default=DEFAULT_REMOTE_ROOT_TEMPLATE,
        description="Root of a target, '{host}' is replaced with the target identifier",
    )
    remove_temp: bool = Field(
        default=False,
        description="Delete the cached installer after every target succeeded",
    )

    @field_validator("remote_root_template")
    @classmethod
    def validate_template(cls, value: str) -> str:
        if "{host}" not in value:
            raise ValueError("remote_root_template must contain '{host}'")
        return value

    @field_validator("destination_directory")
    @classmethod
    def validate_destination(cls, value: str) -> str:
        stripped = value.strip().strip("\\/")
        if not stripped:
            raise ValueError("destination_directory must not be empty")
        return stripped

    model_config = {"validate_assignment": True}


class CatalogEntryConfig(BaseModel):
    key: str
    locator: str

    model_config = {"extra": "forbid"}


class InventoryConfiguration(BaseModel):
    """Static inventory used when Exchange Management Shell is not reachable."""

    versions: List[str] = Field(default_factory=list, description="Installed versions, e.g. '15.1'")
    servers: List[str] = Field(default_factory=list, description="Installed Exchange servers")

    model_config = {"extra": "forbid"}


class DefaultsConfig(BaseModel):
    """Composite configuration applied to every invocation."""

    http: DownloadConfiguration = Field(default_factory=DownloadConfiguration)
    distribution: DistributionConfiguration = Field(default_factory=DistributionConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
    }


class ResolvedConfig(BaseModel):
    """Materialised configuration: defaults plus optional catalog, inventory, and lab sections."""

    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    catalog: Optional[List[CatalogEntryConfig]] = None
    inventory: Optional[InventoryConfiguration] = None
    lab: Optional[Dict[str, Any]] = None

    @classmethod
    def from_defaults(cls) -> "ResolvedConfig":
        """Construct a resolved configuration populated with default values only."""

        defaults = DefaultsConfig()
        _apply_env_overrides(defaults)
        return cls(defaults=defaults)

    model_config = {"validate_assignment": True}


# --- Environment Overrides -----------------------------------------------------


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    temp_directory: Optional[Path] = Field(default=None, alias="EXLAB_TEMP_DIRECTORY")
    destination_directory: Optional[str] = Field(
        default=None, alias="EXLAB_DESTINATION_DIRECTORY"
    )
    remove_temp: Optional[bool] = Field(default=None, alias="EXLAB_REMOVE_TEMP")
    log_level: Optional[str] = Field(default=None, alias="EXLAB_LOG_LEVEL")
    timeout_sec: Optional[float] = Field(default=None, alias="EXLAB_TIMEOUT_SEC")
    max_retries: Optional[int] = Field(default=None, alias="EXLAB_MAX_RETRIES")

    model_config = SettingsConfigDict(env_prefix="EXLAB_", case_sensitive=False, extra="ignore")


def _load_env_overrides() -> EnvironmentOverrides:
    try:
        return EnvironmentOverrides()
    except PydanticValidationError as exc:
        raise ConfigError(_format_validation_error(exc, prefix="environment")) from exc


def get_env_overrides() -> Dict[str, str]:
    """Return environment-derived overrides as stringified key/value pairs."""

    env = _load_env_overrides()
    return {
        key: str(value) for key, value in env.model_dump(by_alias=False, exclude_none=True).items()
    }


def _apply_env_overrides(defaults: DefaultsConfig) -> None:
    """Mutate ``defaults`` in-place using values from :class:`EnvironmentOverrides`."""

    env = _load_env_overrides()
    try:
        if env.temp_directory is not None:
            defaults.distribution.temp_directory = env.temp_directory
        if env.destination_directory is not None:
            defaults.distribution.destination_directory = env.destination_directory
        if env.remove_temp is not None:
            defaults.distribution.remove_temp = env.remove_temp
        if env.log_level is not None:
            defaults.logging.level = env.log_level
        if env.timeout_sec is not None:
            defaults.http.timeout_sec = env.timeout_sec
        if env.max_retries is not None:
            defaults.http.max_retries = env.max_retries
    except PydanticValidationError as exc:
        raise ConfigError(_format_validation_error(exc, prefix="environment")) from exc

    overridden = env.model_dump(exclude_none=True)
    if overridden:
        LOGGER.debug(
            "configuration overridden from environment",
            extra={"stage": "config", "extra_fields": {"overrides": sorted(overridden)}},
        )


# --- YAML Loading & Validation ---------------------------------------------------

CONFIG_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "defaults": {
            "type": "object",
            "properties": {
                "http": {"type": "object"},
                "distribution": {"type": "object"},
                "logging": {"type": "object"},
            },
        },
        "catalog": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key", "locator"],
                "properties": {
                    "key": {"type": "string", "minLength": 3},
                    "locator": {"type": "string", "minLength": 1},
                },
            },
        },
        "inventory": {
            "type": "object",
            "properties": {
                "versions": {"type": "array", "items": {"type": "string"}},
                "servers": {"type": "array", "items": {"type": "string"}},
            },
        },
        "lab": {"type": "object"},
    },
}

_CONFIG_VALIDATOR = Draft202012Validator(CONFIG_JSON_SCHEMA)


def _format_validation_error(exc: PydanticValidationError, *, prefix: str = "") -> str:
    messages = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error["loc"])
        if prefix:
            location = f"{prefix} -> {location}" if location else prefix
        messages.append(f"{location}: {error['msg']}")
    return "Configuration validation failed:\n  " + "\n  ".join(messages)


def _validate_schema(raw: Mapping[str, object]) -> None:
    errors = sorted(_CONFIG_VALIDATOR.iter_errors(dict(raw)), key=lambda err: list(err.path))
    if errors:
        lines = []
        for error in errors:
            location = "/".join(str(part) for part in error.path) or "<root>"
            lines.append(f"{location}: {error.message}")
        raise ConfigError("Configuration validation failed:\n- " + "\n- ".join(lines))


def build_resolved_config(raw_config: Mapping[str, object]) -> ResolvedConfig:
    """Materialise a :class:`ResolvedConfig` from a raw mapping loaded from disk."""

    _validate_schema(raw_config)
    try:
        defaults = DefaultsConfig.model_validate(raw_config.get("defaults") or {})
        catalog_section = raw_config.get("catalog")
        catalog = (
            [CatalogEntryConfig.model_validate(entry) for entry in catalog_section]  # type: ignore[union-attr]
            if catalog_section is not None
            else None
        )
        inventory_section = raw_config.get("inventory")
        inventory = (
            InventoryConfiguration.model_validate(inventory_section)
            if inventory_section is not None
            else None
        )
    except PydanticValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc

    _apply_env_overrides(defaults)

    lab = raw_config.get("lab")
    return ResolvedConfig(
        defaults=defaults,
        catalog=catalog,
        inventory=inventory,
        lab=dict(lab) if isinstance(lab, Mapping) else None,
    )


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
        raise ConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file '{normalized_path}' contains invalid YAML") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration file must contain a mapping at the root")
    return data


def load_config(config_path: Path) -> ResolvedConfig:
    """Load, validate, and resolve configuration suitable for execution."""

    raw = load_raw_yaml(config_path)
    return build_resolved_config(raw)


def validate_config(config_path: Path) -> ResolvedConfig:
    """Load a configuration solely for validation feedback."""

    config = load_config(config_path)
    LOGGER.info(
        "configuration valid",
        extra={"stage": "config", "extra_fields": {"path": str(config_path)}},
    )
    return config


_DEFAULT_CONFIG_LOCK = threading.RLock()
_DEFAULT_CONFIG_CACHE: Optional[ResolvedConfig] = None


def get_default_config(*, copy: bool = False) -> ResolvedConfig:
    """Return a memoised :class:`ResolvedConfig` constructed from defaults."""

    global _DEFAULT_CONFIG_CACHE  # noqa: PLW0603

    with _DEFAULT_CONFIG_LOCK:
        if _DEFAULT_CONFIG_CACHE is None:
            _DEFAULT_CONFIG_CACHE = ResolvedConfig.from_defaults()
        cached = _DEFAULT_CONFIG_CACHE
    if copy:
        return cached.model_copy(deep=True)
    return cached


def invalidate_default_config_cache() -> None:
    """Invalidate the cached default configuration."""

    global _DEFAULT_CONFIG_CACHE  # noqa: PLW0603

    with _DEFAULT_CONFIG_LOCK:
        _DEFAULT_CONFIG_CACHE = None
