from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable SQL echo and FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/domain_catalog.db",
        description="SQLAlchemy compatible database URL for the embedded store",
    )
    production_database_url: AnyUrl | str | None = Field(
        default=None,
        description="Networked Postgres connection string used when ENVIRONMENT=production",
    )
    catalog_api_url: AnyUrl | str = Field(
        default="https://comercial01.soinda.es/api/external/domains",
        description="Paginated marketplace catalog endpoint",
    )
    catalog_api_key: str | None = Field(
        default=None,
        description="API key sent as X-API-Key to the catalog endpoint",
    )
    catalog_request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to each catalog request",
        gt=0,
    )
    sync_page_size: int = Field(
        default=100, description="Rows requested per catalog page during sync", ge=1
    )
    sync_max_pages_per_run: int = Field(
        default=80,
        description="Maximum number of pages fetched by a single sync invocation",
        ge=1,
    )
    sync_page_delay_seconds: float = Field(
        default=0.25,
        description="Pause between consecutive page requests",
        ge=0,
    )
    sync_interval_seconds: float = Field(
        default=2 * 60 * 60,
        description="Minimum age of the last completed sync before a scheduled run proceeds",
        gt=0,
    )
    sync_rate_limit_cooldown_seconds: float = Field(
        default=2 * 60 * 60,
        description="Cooldown applied after the upstream rate-limits a sync run",
        gt=0,
    )
    fetch_max_retries: int = Field(
        default=8,
        description="Retry ceiling for rate-limited or failing catalog requests",
        ge=0,
    )
    analytics_cache_ttl_seconds: float = Field(
        default=5 * 60,
        description="Lifetime of a cached analytics snapshot",
        gt=0,
    )

    @field_validator("database_url", "production_database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("catalog_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        if self.environment.lower() == "production":
            if not self.production_database_url:
                raise ValueError(
                    "PRODUCTION_DATABASE_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_database_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
