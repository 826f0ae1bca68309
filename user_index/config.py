import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from .errors import ConfigurationError


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="USER_INDEX_DATABASE_URL")
    database_pool_size: int = Field(10, alias="USER_INDEX_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="USER_INDEX_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="USER_INDEX_DATABASE_ECHO")

    elasticsearch_enabled: bool = Field(True, alias="USE_ELASTICSEARCH")
    elasticsearch_host: str = Field("http://localhost:9200", alias="ELASTICSEARCH_HOST")
    elasticsearch_username: Optional[str] = Field(None, alias="ELASTICSEARCH_USERNAME")
    elasticsearch_password: Optional[str] = Field(None, alias="ELASTICSEARCH_PASSWORD")
    elasticsearch_index: str = Field("users", alias="USER_INDEX_NAME")
    elasticsearch_timeout_seconds: float = Field(10.0, alias="ELASTICSEARCH_TIMEOUT_SECONDS", gt=0)
    elasticsearch_refresh: bool = Field(True, alias="ELASTICSEARCH_REFRESH")

    lms_service_url: Optional[str] = Field(None, alias="LMS_SERVICE_URL")
    assessment_service_url: Optional[str] = Field(None, alias="ASSESSMENT_SERVICE_URL")
    upstream_token: Optional[str] = Field(None, alias="USER_INDEX_UPSTREAM_TOKEN")
    require_upstream_token: bool = Field(False, alias="USER_INDEX_REQUIRE_UPSTREAM_TOKEN")
    upstream_timeout_seconds: float = Field(5.0, alias="USER_INDEX_UPSTREAM_TIMEOUT_SECONDS", gt=0, le=60)

    default_tenant_id: str = Field("default-tenant", alias="USER_INDEX_DEFAULT_TENANT_ID")
    default_organisation_id: str = Field("default-organisation", alias="USER_INDEX_DEFAULT_ORGANISATION_ID")

    sync_conflict_retries: int = Field(3, alias="USER_INDEX_SYNC_CONFLICT_RETRIES", ge=1, le=10)
    ensure_index_on_startup: bool = Field(True, alias="USER_INDEX_ENSURE_INDEX_ON_STARTUP")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def validate_startup(self) -> None:
        """Raise when the service cannot start with the current configuration."""
        if self.require_upstream_token and not self.upstream_token:
            raise ConfigurationError(
                "USER_INDEX_UPSTREAM_TOKEN must be set when USER_INDEX_REQUIRE_UPSTREAM_TOKEN is enabled."
            )
        if not self.elasticsearch_index.strip():
            raise ConfigurationError("USER_INDEX_NAME cannot be empty.")


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid user index configuration: {exc}") from exc
