"""
Module containing the application configuration model.
"""

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """
    Runtime configuration for the API.

    Attributes:
        secret_key: Secret used to sign bearer tokens.
        algorithm: JWT signing algorithm.
        access_token_expire_minutes: Lifetime of issued tokens.
        database_url: libpq connection string for the document store.
        pool_min / pool_max: Bounds of the connection pool.
        cors_origins: Origins allowed to call the API from a browser.
        save_max_attempts: Attempts made when saving questionnaire answers.
        retry_base_delay_ms: Delay before the first retry; doubles each time.
        expose_error_stack: Include tracebacks in 500 responses.
    """
    secret_key: str = Field(..., min_length=1, description="JWT signing secret")
    algorithm: str = Field("HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(
        120,
        gt=0,
        description="Lifetime of issued tokens in minutes"
    )
    database_url: Optional[str] = Field(
        None,
        description="libpq DSN; built from POSTGRES_* variables when absent"
    )
    pool_min: int = Field(1, ge=1, description="Minimum pooled connections")
    pool_max: int = Field(5, ge=1, description="Maximum pooled connections")
    cors_origins: List[str] = Field(
        default_factory=list,
        description="Origins allowed by the CORS middleware"
    )
    save_max_attempts: int = Field(3, ge=1, description="Questionnaire save attempts")
    retry_base_delay_ms: int = Field(500, ge=0, description="Base retry delay in ms")
    expose_error_stack: bool = Field(False, description="Return tracebacks on 500")
    log_level: str = Field("INFO", description="Root log level")


def _database_url_from_parts() -> Optional[str]:
    db_name = os.getenv("POSTGRES_DB")
    host = os.getenv("POSTGRES_HOST")
    if not db_name or not host:
        return None
    return (
        f"dbname={db_name} user={os.getenv('POSTGRES_USER', '')} "
        f"password={os.getenv('POSTGRES_PASSWORD', '')} host={host} "
        f"port={os.getenv('POSTGRES_PORT', '5432')}"
    )


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Load and validate the configuration from the environment (and `.env`).

    Returns:
        AppConfig: Validated configuration object.

    Raises:
        ValueError: If SECRET_KEY is not set.
    """
    load_dotenv()
    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        raise ValueError("SECRET_KEY environment variable is not set")

    origins = os.getenv("CORS_ORIGINS", "")
    raw_config = {
        "secret_key": secret_key,
        "algorithm": os.getenv("ALGORITHM", "HS256"),
        "access_token_expire_minutes": os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120"),
        "database_url": os.getenv("DATABASE_URL") or _database_url_from_parts(),
        "pool_min": os.getenv("DB_POOL_MIN", "1"),
        "pool_max": os.getenv("DB_POOL_MAX", "5"),
        "cors_origins": [o.strip() for o in origins.split(",") if o.strip()],
        "save_max_attempts": os.getenv("SAVE_MAX_ATTEMPTS", "3"),
        "retry_base_delay_ms": os.getenv("RETRY_BASE_DELAY_MS", "500"),
        "expose_error_stack": _as_bool(os.getenv("EXPOSE_ERROR_STACK", "false")),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
    }
    # Create the AppConfig object; validation happens here
    return AppConfig.model_validate(raw_config)
