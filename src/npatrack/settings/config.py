"""Configuration loader for npatrack services using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "NPATRACK_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "NPATRACK_SETTINGS_FILE"


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority(include_missing: bool = False) -> tuple[Path, ...]:
    """Return config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    if include_missing:
        return tuple(ordered)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


def _read_env_value(*keys: str) -> str | None:
    """Return the first present environment variable from ``keys``."""

    for key in keys:
        value = os.getenv(key)
        if value is not None:
            return value
    return None


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class APISettings(BaseSettings):
    """API endpoint configuration shared by the import job and HTTP client."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    base_url: str = Field(
        default="http://127.0.0.1:8000",
        validation_alias=AliasChoices("API_URL", "API__BASE_URL"),
    )
    key: str = Field(
        default="dev-admin-token",
        validation_alias=AliasChoices("API_KEY", "API__KEY"),
    )
    timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("API_TIMEOUT_SECONDS", "API__TIMEOUT_SECONDS"),
    )


class StorageSettings(BaseSettings):
    """Structured storage configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_backend: Literal["sqlite"] = Field(
        default="sqlite",
        validation_alias=AliasChoices("STRUCTURED_BACKEND", "STORAGE__STRUCTURED_BACKEND"),
    )
    sqlite_path: Path = Field(
        default=PROJECT_ROOT / "data" / "npatrack.db",
        validation_alias=AliasChoices("SQLITE_PATH", "STORAGE__SQLITE_PATH"),
    )


class IngestionSettings(BaseSettings):
    """Spreadsheet import and bulk upsert configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    sequence_column: str = Field(
        default="Annexure-I",
        validation_alias=AliasChoices("INGESTION_SEQUENCE_COLUMN", "INGESTION__SEQUENCE_COLUMN"),
    )
    header_label: str = Field(
        default="Sr No.",
        validation_alias=AliasChoices("INGESTION_HEADER_LABEL", "INGESTION__HEADER_LABEL"),
    )
    record_id_prefix: str = Field(
        default="CUST-",
        validation_alias=AliasChoices("INGESTION_RECORD_ID_PREFIX", "INGESTION__RECORD_ID_PREFIX"),
    )
    max_batch_size: int = Field(
        default=5000,
        validation_alias=AliasChoices("INGESTION_MAX_BATCH_SIZE", "INGESTION__MAX_BATCH_SIZE"),
    )
    assigned_page_size: int = Field(
        default=500,
        validation_alias=AliasChoices("INGESTION_ASSIGNED_PAGE_SIZE", "INGESTION__ASSIGNED_PAGE_SIZE"),
    )
    workspace_path: Path = Field(
        default=PROJECT_ROOT / "data" / "import_workspace.json",
        validation_alias=AliasChoices("INGESTION_WORKSPACE_PATH", "INGESTION__WORKSPACE_PATH"),
    )


class ListingSettings(BaseSettings):
    """Pagination limits for customer listings."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    default_limit: int = Field(
        default=10,
        validation_alias=AliasChoices("LISTING_DEFAULT_LIMIT", "LISTING__DEFAULT_LIMIT"),
    )
    max_limit: int = Field(
        default=1000,
        validation_alias=AliasChoices("LISTING_MAX_LIMIT", "LISTING__MAX_LIMIT"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="npatrack",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="npatrack-api",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    api: APISettings = Field(default_factory=APISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    listing: ListingSettings = Field(default_factory=ListingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="NPATRACK_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        if not self.storage.sqlite_path.is_absolute():
            storage_update = {"sqlite_path": (self.project_root / self.storage.sqlite_path).resolve()}
            object.__setattr__(self, "storage", self.storage.model_copy(update=storage_update))

        if not self.ingestion.workspace_path.is_absolute():
            ingestion_update = {"workspace_path": (self.project_root / self.ingestion.workspace_path).resolve()}
            object.__setattr__(self, "ingestion", self.ingestion.model_copy(update=ingestion_update))

        return self

    @model_validator(mode="after")
    def _apply_environment_overrides(self) -> "Settings":
        """Force environment-specific defaults after basic resolution."""

        if self.env.lower() == "local":
            object.__setattr__(
                self, "observability", self.observability.model_copy(update={"structured_logging": False})
            )

        ingestion_updates: dict[str, object] = {}

        def _ingestion_int(field: str, *keys: str) -> None:
            value = _read_env_value(*keys)
            if value is None:
                return
            try:
                ingestion_updates[field] = int(value.strip())
            except ValueError:
                pass

        # Legacy IMPORT_* names predate the ingestion section.
        _ingestion_int(
            "max_batch_size",
            "NPATRACK_IMPORT__MAX_BATCH_SIZE",
            "NPATRACK_IMPORT_MAX_BATCH_SIZE",
            "IMPORT_MAX_BATCH_SIZE",
        )
        _ingestion_int(
            "assigned_page_size",
            "NPATRACK_IMPORT__ASSIGNED_PAGE_SIZE",
            "NPATRACK_IMPORT_ASSIGNED_PAGE_SIZE",
            "IMPORT_ASSIGNED_PAGE_SIZE",
        )
        if ingestion_updates:
            object.__setattr__(self, "ingestion", self.ingestion.model_copy(update=ingestion_updates))

        return self

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level

    @property
    def api_base_url(self) -> str:
        """str: Base URL for API calls (used by the import job)."""

        return self.api.base_url

    @property
    def sqlite_path(self) -> Path:
        """Path: Filesystem path for the local SQLite database."""

        return self.storage.sqlite_path

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
