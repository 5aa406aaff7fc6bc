"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (ICDLOOKUP__REGISTRY__LANGUAGE=en)
  2. icdlookup.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. API credentials live in a separate file
(see credentials.py) so that icdlookup.yaml can be shared safely.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("icdlookup")
_DEFAULT_CONFIG_DIR = platformdirs.user_config_dir("icdlookup")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "catalog.db")
_DEFAULT_SEED_PATH = str(Path(_DEFAULT_DATA_DIR) / "icd11_mms_es.json")
_DEFAULT_CREDENTIALS_PATH = str(Path(_DEFAULT_CONFIG_DIR) / "icd11-credentials.yaml")


def _find_config_file() -> str | None:
    """Return the path of the first icdlookup.yaml found, or None."""
    candidates = [
        Path("icdlookup.yaml"),
        Path(_DEFAULT_CONFIG_DIR) / "icdlookup.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class RegistrySettings(BaseModel):
    token_url: str = "https://icdaccessmanagement.who.int/connect/token"
    base_url: str = "https://id.who.int"
    release: str = "2024-01"
    api_version: str = "v2"
    scope: str = "icdapi_access"
    language: str = "es"
    timeout_seconds: float = 10.0
    token_safety_margin_seconds: int = 60

    @property
    def search_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/icd/release/11/{self.release}/mms/search"


class CredentialSettings(BaseModel):
    path: str = _DEFAULT_CREDENTIALS_PATH


class SearchSettings(BaseModel):
    min_query_length: int = Field(default=3, ge=1)
    default_limit: int = Field(default=25, ge=1)
    debounce_seconds: float = Field(default=0.4, ge=0)
    # Structural nodes (chapter, block) are not valid diagnoses.
    assignable_kinds: list[str] = ["category"]


class CatalogSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    seed_path: str | None = _DEFAULT_SEED_PATH
    batch_size: int = Field(default=1000, ge=1)
    read_chunk_chars: int = Field(default=64 * 1024, ge=1024)


class GeneratorSettings(BaseModel):
    # The public registry asks for a conservative rate; 0 for a local container
    requests_per_second: float = Field(default=3.0, ge=0)


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ICDLOOKUP__CATALOG__BATCH_SIZE=500
        env_prefix="ICDLOOKUP__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    registry: RegistrySettings = RegistrySettings()
    credentials: CredentialSettings = CredentialSettings()
    search: SearchSettings = SearchSettings()
    catalog: CatalogSettings = CatalogSettings()
    generator: GeneratorSettings = GeneratorSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
