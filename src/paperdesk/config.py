"""Configuration for PaperDesk, loaded from paperdesk.toml with environment overrides."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from platformdirs import user_data_dir

from paperdesk.errors import ConfigurationError

CONFIG_FILENAME = "paperdesk.toml"


@dataclass
class ArxivConfig:
    base_url: str = "https://export.arxiv.org/api/query"
    timeout_seconds: float = 30.0
    max_results: int = 50
    retries: int = 3
    requests_per_second: float = 1 / 3


@dataclass
class BiorxivConfig:
    base_url: str = "https://api.biorxiv.org/details/biorxiv"
    timeout_seconds: float = 30.0
    max_results: int = 50
    retries: int = 3
    requests_per_second: float = 1.0
    default_window_days: int = 30
    max_pages: int = 3


@dataclass
class StorageConfig:
    app_data_dir: Path = field(default_factory=lambda: Path(user_data_dir("paperdesk", appauthor=False)))
    data_file: str = "app-data.json"
    papers_dir: str = "papers"
    max_document_bytes: int = 50 * 1024 * 1024
    max_download_bytes: int = 50 * 1024 * 1024
    cache_ttl_seconds: float = 300.0
    max_open_papers: int = 50
    max_history: int = 20
    max_cached_papers: int = 500

    @property
    def data_file_path(self) -> Path:
        return self.app_data_dir / self.data_file

    @property
    def papers_path(self) -> Path:
        return self.app_data_dir / self.papers_dir


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Config:
    arxiv: ArxivConfig = field(default_factory=ArxivConfig)
    biorxiv: BiorxivConfig = field(default_factory=BiorxivConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Env var → (section, field) mapping
_ENV_OVERRIDES = {
    "ARXIV_API_URL": ("arxiv", "base_url"),
    "BIORXIV_API_URL": ("biorxiv", "base_url"),
    "PAPERDESK_DATA_DIR": ("storage", "app_data_dir"),
    "PAPERDESK_LOG_LEVEL": ("logging", "level"),
}


def _apply_section(target: object, values: dict) -> None:
    for k, v in values.items():
        if hasattr(target, k):
            if k == "app_data_dir":
                v = Path(v).expanduser()
            setattr(target, k, v)


def load_config(data_dir: Path | None = None) -> Config:
    """Load config from paperdesk.toml in *data_dir*, overlaying env vars.

    When *data_dir* is given it also becomes the storage directory unless
    the TOML file or ``PAPERDESK_DATA_DIR`` says otherwise.
    """
    config = Config()
    if data_dir is not None:
        config.storage.app_data_dir = Path(data_dir)
    elif os.environ.get("PAPERDESK_DATA_DIR"):
        config.storage.app_data_dir = Path(os.environ["PAPERDESK_DATA_DIR"]).expanduser()

    toml_path = config.storage.app_data_dir / CONFIG_FILENAME
    if toml_path.exists():
        try:
            with open(toml_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid {CONFIG_FILENAME}: {e}", {"path": str(toml_path)}) from e

        for section in ("arxiv", "biorxiv", "storage", "logging"):
            if section in data:
                _apply_section(getattr(config, section), data[section])

    for env_var, (section, field_name) in _ENV_OVERRIDES.items():
        env_val = os.environ.get(env_var, "")
        if env_var == "PAPERDESK_DATA_DIR" and data_dir is not None:
            continue
        if env_val:
            _apply_section(getattr(config, section), {field_name: env_val})

    return config


def validate_config(config: Config) -> None:
    """Raise :class:`ConfigurationError` listing every invalid setting."""
    errors: list[str] = []

    for name in ("arxiv", "biorxiv"):
        section = getattr(config, name)
        if not str(section.base_url).startswith(("http://", "https://")):
            errors.append(f"{name}.base_url must be an http(s) URL")
        if section.timeout_seconds <= 0:
            errors.append(f"{name}.timeout_seconds must be positive")
        if section.max_results <= 0:
            errors.append(f"{name}.max_results must be positive")
        if section.retries < 1:
            errors.append(f"{name}.retries must be at least 1")
        if section.requests_per_second < 0:
            errors.append(f"{name}.requests_per_second must not be negative")

    if config.biorxiv.default_window_days <= 0:
        errors.append("biorxiv.default_window_days must be positive")
    if config.biorxiv.max_pages < 1:
        errors.append("biorxiv.max_pages must be at least 1")

    storage = config.storage
    for field_name in (
        "max_document_bytes",
        "max_download_bytes",
        "cache_ttl_seconds",
        "max_open_papers",
        "max_history",
        "max_cached_papers",
    ):
        if getattr(storage, field_name) <= 0:
            errors.append(f"storage.{field_name} must be positive")

    if config.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"logging.level {config.logging.level!r} is not a valid level")

    if errors:
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(errors), {"errors": errors})


def generate_default_toml() -> str:
    """Return the contents of a default paperdesk.toml template."""
    return '''\
[arxiv]
base_url = "https://export.arxiv.org/api/query"  # Or set ARXIV_API_URL env var
timeout_seconds = 30
max_results = 50
retries = 3
requests_per_second = 0.34       # arXiv asks for one request every 3 seconds

[biorxiv]
base_url = "https://api.biorxiv.org/details/biorxiv"  # Or set BIORXIV_API_URL env var
timeout_seconds = 30
max_results = 50
retries = 3
requests_per_second = 1.0
default_window_days = 30
max_pages = 3

[storage]
data_file = "app-data.json"
papers_dir = "papers"
cache_ttl_seconds = 300
max_open_papers = 50
max_history = 20

[logging]
level = "INFO"                   # Or set PAPERDESK_LOG_LEVEL env var
'''
