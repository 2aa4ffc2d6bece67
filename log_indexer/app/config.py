"""Config file."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import TypeVar

from eth_utils import is_address, to_checksum_address
from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    Field,
    SecretStr,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from log_indexer.app.domain.errors import ConfigurationError


_MIN_CHUNK_FLOOR = 50
_MIN_MIN_CHUNK_FLOOR = 10
_MIN_WATCH_INTERVAL = 8.0

_HTTP_URL: TypeAdapter[AnyHttpUrl] = TypeAdapter(AnyHttpUrl)

_SETTINGS_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


def _check_http_url(url: str, *, setting: str) -> str:
    try:
        _HTTP_URL.validate_python(url)
    except ValidationError as exc:
        raise ValueError(f"{setting} is not a valid http(s) URL: {url!r}") from exc
    return url


class StoreSettings(BaseSettings):
    """Settings shared by every process that opens the log store."""

    # DATABASE
    db_path: Path = Field(Path("dollardex_index.sqlite"), alias="DB_PATH")

    # LOGGING
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = _SETTINGS_CONFIG


class IndexerSettings(StoreSettings):
    """Settings for the sync (once/watch) modes."""

    # CONTRACT / EXPLORER
    contract_address: str = Field(..., alias="CONTRACT_ADDRESS")
    explorer_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("EXPLORER_API_KEY", "BSCSCAN_API_KEY", "explorer_api_key"),
    )
    abi_path: Path = Field(Path("scripts/abi/DollarDex.json"), alias="ABI_PATH")
    explorer_base_url: str = Field(
        "https://api.etherscan.io/v2/api",
        validation_alias=AliasChoices("EXPLORER_BASE_URL", "BSCSCAN_BASE", "explorer_base_url"),
    )
    explorer_fallback_urls: str = Field("", alias="EXPLORER_FALLBACK_URLS")
    chain_id: int = Field(56, alias="CHAIN_ID")
    http_timeout: float = Field(30.0, alias="HTTP_TIMEOUT", gt=0)

    # SYNC
    start_block: int = Field(0, alias="START_BLOCK", ge=0)
    chunk: int = Field(2000, alias="CHUNK")
    min_chunk: int = Field(200, alias="MIN_CHUNK")
    overlap: int = Field(5, alias="OVERLAP")
    watch_interval: float = Field(20.0, alias="WATCH_INTERVAL")
    retries: int = Field(8, alias="RETRIES", ge=0)
    result_cap: int = Field(1000, alias="RESULT_CAP", gt=0)

    @field_validator("contract_address", mode="before")
    @classmethod
    def checksum_contract_address(cls, value: object) -> str:
        raw = str(value or "").strip()
        if not raw:
            raise ValueError("CONTRACT_ADDRESS is empty")
        if not is_address(raw):
            raise ValueError(f"CONTRACT_ADDRESS is not a valid address: {raw!r}")
        return to_checksum_address(raw)

    @field_validator("explorer_api_key")
    @classmethod
    def non_empty_api_key(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("EXPLORER_API_KEY is empty")
        return SecretStr(value.get_secret_value().strip())

    @field_validator("abi_path")
    @classmethod
    def abi_file_exists(cls, value: Path) -> Path:
        if not value.is_file():
            raise ValueError(f"ABI file not found: {value}")
        return value

    @field_validator("explorer_base_url")
    @classmethod
    def valid_base_url(cls, value: str) -> str:
        return _check_http_url(value.strip(), setting="EXPLORER_BASE_URL")

    @field_validator("explorer_fallback_urls")
    @classmethod
    def valid_fallback_urls(cls, value: str) -> str:
        for url in value.split(","):
            if url.strip():
                _check_http_url(url.strip(), setting="EXPLORER_FALLBACK_URLS")
        return value

    @model_validator(mode="after")
    def clamp_window_settings(self) -> "IndexerSettings":
        self.chunk = max(_MIN_CHUNK_FLOOR, self.chunk)
        self.min_chunk = min(self.chunk, max(_MIN_MIN_CHUNK_FLOOR, self.min_chunk))
        self.overlap = max(0, self.overlap)
        self.watch_interval = max(_MIN_WATCH_INTERVAL, self.watch_interval)
        return self

    @property
    def explorer_urls(self) -> list[str]:
        urls = [self.explorer_base_url.strip()]
        for url in self.explorer_fallback_urls.split(","):
            url = url.strip()
            if url and url not in urls:
                urls.append(url)
        return urls


class ApiSettings(StoreSettings):
    """Settings for the read-only query server."""

    port: int = Field(8787, alias="PORT")
    allow_origin: str = Field("*", alias="ALLOW_ORIGIN")
    cache_ms: int = Field(5000, alias="CACHE_MS", ge=0)


SettingsT = TypeVar("SettingsT", bound=BaseSettings)


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "settings"
        problems.append(f"{location}: {err.get('msg')}")
    return "Invalid configuration -> " + "; ".join(problems)


def load_settings(settings_cls: type[SettingsT]) -> SettingsT:
    """Instantiate a settings class, turning validation errors into ConfigurationError."""
    try:
        return settings_cls()
    except ValidationError as exc:
        raise ConfigurationError(_describe_validation_error(exc)) from exc


@lru_cache(maxsize=1)
def get_indexer_settings() -> IndexerSettings:
    return load_settings(IndexerSettings)


@lru_cache(maxsize=1)
def get_store_settings() -> StoreSettings:
    return load_settings(StoreSettings)


@lru_cache(maxsize=1)
def get_api_settings() -> ApiSettings:
    return load_settings(ApiSettings)
