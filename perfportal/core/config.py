from functools import lru_cache
import os
from pathlib import Path
from typing import Optional, List, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging


_PSYCOPG_SCHEME = "postgresql+psycopg://"
_LEGACY_POSTGRES_SCHEMES = ("postgresql+psycopg2://", "postgresql://", "postgres://")


def _normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Point every postgres scheme at the psycopg v3 driver."""

    if not url or url.startswith(_PSYCOPG_SCHEME):
        return url
    for scheme in _LEGACY_POSTGRES_SCHEMES:
        if url.startswith(scheme):
            return _PSYCOPG_SCHEME + url[len(scheme):]
    return url


def _default_database_url() -> str:
    return _normalize_database_url(os.getenv("DATABASE_URL")) or "sqlite:///./perfportal.db"


class Settings(BaseSettings):
    """Application configuration pulled from environment variables or `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "Performance Portal API"
    environment: str = os.getenv("ENVIRONMENT") or "local"

    database_url: str = _default_database_url()

    ingestion_storage_dir: Path = Path(os.getenv("INGESTION_STORAGE_DIR") or "./uploads")
    log_buffer_size: int = 500
    log_parse_event_size: int = 200
    log_buffer_file: Optional[Path] = None

    # JTL parsing
    jtl_max_bytes: int = 100 * 1024 * 1024
    jtl_allowed_suffixes: Tuple[str, ...] = (".jtl",)
    jtl_csv_chunk_size: int = 10_000
    jtl_max_warnings: int = 20
    percentiles: Tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)

    default_uploaded_by: str = "system"

    cors_allow_all: bool = True
    cors_allowed_origins: List[str] = []

    @field_validator("database_url", mode="before")
    @classmethod
    def _coerce_database_url(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_database_url(value)

    @field_validator("log_buffer_file", mode="before")
    @classmethod
    def _coerce_log_buffer_file(cls, value: Optional[str]) -> Optional[Path]:
        if value in (None, "", "None"):
            return None
        return Path(value)

    @field_validator("jtl_allowed_suffixes", mode="before")
    @classmethod
    def _normalize_suffixes(cls, value):
        if isinstance(value, str):
            value = [part for part in value.split(",")]
        normalized = []
        for suffix in value or ():
            cleaned = str(suffix).strip().lower()
            if not cleaned:
                continue
            if not cleaned.startswith("."):
                cleaned = f".{cleaned}"
            normalized.append(cleaned)
        if not normalized:
            raise ValueError("jtl_allowed_suffixes must name at least one extension")
        return tuple(normalized)

    @field_validator("percentiles", mode="after")
    @classmethod
    def _require_report_percentiles(cls, value: Tuple[float, ...]) -> Tuple[float, ...]:
        missing = {90.0, 95.0, 99.0} - {float(p) for p in value}
        if missing:
            raise ValueError(f"percentiles must include 90, 95 and 99 (missing {sorted(missing)})")
        if any(p <= 0 or p > 100 for p in value):
            raise ValueError("percentiles must be in (0, 100]")
        return tuple(sorted({float(p) for p in value}))


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    settings = Settings()
    try:
        settings.ingestion_storage_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:  # pragma: no cover - defensive
        logging.getLogger("perfportal.startup").exception(
            "Failed to ensure storage dir %s: %s", settings.ingestion_storage_dir, exc
        )
    return settings


settings = get_settings()
