from __future__ import annotations

import os
import tomllib
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, Field

# Environment variables for the catalog connection, in URL order.
MUSICBRAINZ_ENV_VARS = {
    "user": "MUSICBRAINZ_DB_USER",
    "password": "MUSICBRAINZ_DB_PASSWORD",
    "host": "MUSICBRAINZ_DB_HOST",
    "port": "MUSICBRAINZ_DB_PORT",
    "name": "MUSICBRAINZ_DB_NAME",
}


class CatalogConfig(BaseModel):
    """MusicBrainz catalog database configuration."""

    # Full URL wins over the individual parts when set
    db_url: str | None = Field(default=None)

    host: str | None = Field(default=None)
    port: int | None = Field(default=None, ge=1, le=65535)
    name: str | None = Field(default=None)
    user: str | None = Field(default=None)
    password: str | None = Field(default=None)

    echo: bool = Field(default=False)
    pool_size: int = Field(default=5, ge=1)

    def url(self) -> str:
        """
        Build the SQLAlchemy URL for the catalog.

        Raises:
            ValueError: If neither db_url nor every connection part is set
        """
        if self.db_url:
            return self.db_url

        missing = [
            env_var for key, env_var in MUSICBRAINZ_ENV_VARS.items() if not getattr(self, key)
        ]
        if missing:
            raise ValueError(
                f"missing required MusicBrainz environment variables: {', '.join(missing)}"
            )
        return (
            f"postgresql://{quote(str(self.user), safe='')}:{quote(str(self.password), safe='')}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class StoreConfig(BaseModel):
    """Scrobble store configuration."""

    path: Path = Field(default=Path("scrobbles.sqlite"))


class ResolutionConfig(BaseModel):
    """Release year resolution configuration."""

    workers: int = Field(default=1, ge=1)  # scrobbles in flight per pass
    progress_every: int = Field(default=100, ge=0)  # 0 disables progress logs


class ServiceConfig(BaseModel):
    """Defaults and validation bounds for resolution requests."""

    default_username: str | None = Field(default=None)
    earliest_year: int = Field(default=2002, ge=1900)  # first year of Last.fm scrobbles


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    format: str = Field(default="%(message)s")
    redact_secrets: bool = Field(default=True)


class Config(BaseModel):
    """
    Main configuration for scrobble-years.

    Loads from TOML file with optional environment variable overrides.
    """

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        SCROBBLE_YEARS_<SECTION>_<KEY> (e.g., SCROBBLE_YEARS_RESOLUTION_WORKERS).
        The catalog connection also honours MUSICBRAINZ_DB_HOST, _PORT, _NAME,
        _USER and _PASSWORD.

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @staticmethod
    def _section(config_dict: dict[str, object], name: str) -> dict[str, object]:
        section = config_dict.setdefault(name, {})
        if not isinstance(section, dict):
            section = {}
            config_dict[name] = section
        return section

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "SCROBBLE_YEARS_"

        # Catalog config
        catalog = cls._section(config_dict, "catalog")

        for key, env_var in MUSICBRAINZ_ENV_VARS.items():
            if value := os.getenv(env_var):
                catalog[key] = value

        if db_url := os.getenv(f"{env_prefix}CATALOG_DB_URL"):
            catalog["db_url"] = db_url
        if echo := os.getenv(f"{env_prefix}CATALOG_ECHO"):
            catalog["echo"] = echo.lower() in ("true", "1", "yes")
        if pool_size := os.getenv(f"{env_prefix}CATALOG_POOL_SIZE"):
            catalog["pool_size"] = pool_size

        # Store config
        store = cls._section(config_dict, "store")

        if store_path := os.getenv(f"{env_prefix}STORE_PATH"):
            store["path"] = store_path

        # Resolution config
        resolution = cls._section(config_dict, "resolution")

        if workers := os.getenv(f"{env_prefix}RESOLUTION_WORKERS"):
            resolution["workers"] = workers
        if progress_every := os.getenv(f"{env_prefix}RESOLUTION_PROGRESS_EVERY"):
            resolution["progress_every"] = progress_every

        # Service config
        service = cls._section(config_dict, "service")

        if default_username := os.getenv(f"{env_prefix}SERVICE_DEFAULT_USERNAME"):
            service["default_username"] = default_username
        if earliest_year := os.getenv(f"{env_prefix}SERVICE_EARLIEST_YEAR"):
            service["earliest_year"] = earliest_year

        # Logging config
        logging_config = cls._section(config_dict, "logging")

        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_format := os.getenv(f"{env_prefix}LOGGING_FORMAT"):
            logging_config["format"] = log_format
        if redact := os.getenv(f"{env_prefix}LOGGING_REDACT_SECRETS"):
            logging_config["redact_secrets"] = redact.lower() in ("true", "1", "yes")

        return config_dict


## Tests


def test_config_defaults():
    config = Config()
    assert config.catalog.db_url is None
    assert config.catalog.pool_size == 5
    assert config.store.path == Path("scrobbles.sqlite")
    assert config.resolution.workers == 1
    assert config.service.earliest_year == 2002
    assert config.logging.level == "WARNING"


def test_config_from_dict():
    config = Config.model_validate(
        {
            "catalog": {"host": "mb.local", "port": 5432, "name": "musicbrainz_db"},
            "resolution": {"workers": 4},
        }
    )
    assert config.catalog.host == "mb.local"
    assert config.resolution.workers == 4


def test_catalog_url_from_parts():
    catalog = CatalogConfig(host="db", port=5432, name="mb", user="u", password="p")
    assert catalog.url() == "postgresql://u:p@db:5432/mb"


def test_catalog_url_prefers_db_url():
    catalog = CatalogConfig(db_url="postgresql://x@y/z", host="ignored")
    assert catalog.url() == "postgresql://x@y/z"


def test_catalog_url_lists_missing_vars():
    catalog = CatalogConfig(host="db", port=5432)
    try:
        catalog.url()
        raise AssertionError("Should have raised ValueError")
    except ValueError as e:
        assert "MUSICBRAINZ_DB_NAME" in str(e)
        assert "MUSICBRAINZ_DB_USER" in str(e)
        assert "MUSICBRAINZ_DB_PASSWORD" in str(e)
        assert "MUSICBRAINZ_DB_HOST" not in str(e)


def test_config_env_overrides(
    monkeypatch,  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
):
    monkeypatch.setenv("MUSICBRAINZ_DB_HOST", "mb.example")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("MUSICBRAINZ_DB_PORT", "15432")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("SCROBBLE_YEARS_RESOLUTION_WORKERS", "8")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("SCROBBLE_YEARS_STORE_PATH", "/data/scrobbles.sqlite")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()
    assert config.catalog.host == "mb.example"
    assert config.catalog.port == 15432
    assert config.resolution.workers == 8
    assert config.store.path == Path("/data/scrobbles.sqlite")


def test_config_load_nonexistent_file():
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.resolution.workers == 1
