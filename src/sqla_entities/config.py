"""Runtime configuration: connection settings, value formats and load defaults."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import sqlalchemy as sa
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .errors import ConfigurationError


logger = logging.getLogger(__name__)

_settings: Settings | None = None


class Formats(BaseModel):
    """strftime patterns used to render and parse date and time values."""

    model_config = ConfigDict(frozen=True)

    date: str = Field(default="%Y-%m-%d", description="Date format")
    time: str = Field(default="%H:%M:%S", description="Time format")
    datetime: str = Field(default="%Y-%m-%d %H:%M:%S", description="Date and time format")


DEFAULT_FORMATS = Formats()


class Settings(BaseModel):
    """Connection and mapping settings.

    Either ``url`` or all of ``host``, ``db``, ``user`` and ``password`` must be set.

    Example YAML:
        host: localhost
        db: school
        user: app
        pass: secret
        entities_namespace: myapp.entities
        include_one_to_many: false
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str | None = Field(default=None, description="Database host")
    port: int | None = Field(default=None, description="Database port")
    db: str | None = Field(default=None, description="Database name")
    user: str | None = Field(default=None, description="Username")
    password: str | None = Field(
        default=None, validation_alias=AliasChoices("password", "pass"), description="Password"
    )
    driver: str = Field(default="mysql+pymysql", description="SQLAlchemy driver name")
    url: str | None = Field(default=None, description="Full SQLAlchemy URL, overrides the connection fields")
    echo: bool = Field(default=False, description="Log every statement through SQLAlchemy")

    entities_namespace: str = Field(default="", description="Module prefix for entity names given as strings")

    format_date: str = Field(default=DEFAULT_FORMATS.date)
    format_time: str = Field(default=DEFAULT_FORMATS.time)
    format_datetime: str = Field(default=DEFAULT_FORMATS.datetime)

    include_many_to_one: bool = True
    include_one_to_many: bool = True
    include_many_to_many: bool = True

    @model_validator(mode="after")
    def _check_connection(self) -> Settings:
        if self.url is None:
            missing = [name for name in ("host", "db", "user", "password") if getattr(self, name) is None]
            if missing:
                raise ConfigurationError(f"Missing mandatory settings: {', '.join(missing)}")

        return self

    @property
    def formats(self) -> Formats:
        return Formats(date=self.format_date, time=self.format_time, datetime=self.format_datetime)

    def database_url(self) -> str | sa.URL:
        if self.url is not None:
            return self.url

        return sa.URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.db,
        )


def load_config(config_path: Path | str) -> Settings:
    """Load settings from a YAML or JSON file.

    Args:
        config_path: Path to a ``.yaml``, ``.yml`` or ``.json`` file.

    Returns:
        Validated settings. They are not activated; pass them to ``init_settings``.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ConfigurationError: If the format is unsupported or mandatory keys are missing.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with open(config_path) as f:
            data = json.load(f)
    else:
        raise ConfigurationError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    logger.debug("Loaded settings from %s", config_path)
    return Settings(**data)


def init_settings(settings: Settings) -> Settings:
    global _settings

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return the active settings.

    Raises:
        ConfigurationError: If ``init_settings`` was never called.
    """
    if _settings is None:
        raise ConfigurationError("Settings are not initialized, call init_settings() first")

    return _settings


def current_settings() -> Settings | None:
    """Return the active settings, or ``None`` when none were initialized."""
    return _settings


def get_formats() -> Formats:
    """Return the active formats, or the defaults when no settings are active."""
    if _settings is None:
        return DEFAULT_FORMATS

    return _settings.formats


def reset_settings() -> None:
    global _settings

    _settings = None


def get_entities_namespace() -> str:
    if _settings is None:
        return ""

    return _settings.entities_namespace
