"""Environment configuration and logging setup."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """
    Runtime settings loaded from the environment and a ``.env`` file.

    Values are validated on load; a malformed value raises instead of falling
    back to the default.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # =========================================================================
    # SERVICE
    # =========================================================================

    frontend_origin: str = Field(
        default="http://localhost:3000",
        description="Designer origin allowed by CORS",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # =========================================================================
    # SQL ROUND-TRIP
    # =========================================================================

    schema_name: str = Field(
        default="public",
        validation_alias="JETSCHEMA_SCHEMA_NAME",
        description="Schema reported by /health",
    )
    fold_identifiers: bool = Field(
        default=False,
        validation_alias="JETSCHEMA_FOLD_IDENTIFIERS",
        description="Lower-case unquoted identifiers while parsing",
    )
    max_nesting_depth: int = Field(
        default=64,
        gt=0,
        validation_alias="JETSCHEMA_MAX_NESTING_DEPTH",
        description="Deepest parenthesis nesting the parser accepts",
    )
    include_comments: bool = Field(
        default=True,
        validation_alias="JETSCHEMA_INCLUDE_COMMENTS",
        description="Emit COMMENT ON statements when generating tables",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger with the project format."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
    # Quiet down noisy third-party loggers
    for logger_name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)
