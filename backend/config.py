"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the PlanForge backend.
All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        default_model: Model used when the runtime configuration record is absent.
        model_provider_prefix: LiteLLM provider prefix prepended to bare model
            names read from the runtime configuration record.
        model_config_key: Key of the runtime configuration record holding the
            model name.
        generation_timeout_seconds: Deadline for a single generation call.
        generation_max_retries: Retries after the first attempt on overload.
        retry_base_delay_seconds: Base of the exponential backoff (1s, 2s, 4s...).
        adaptive_batch_size: Target number of files per per-file generation call.
        adaptive_max_retries: Retry budget per adaptive batch before splitting.
        fixed_chunk_size: Items per call for fixed-size chunking stages.
        default_page_limit: Page size when a paginated call omits ``limit``.
        pending_tasks_limit: Default number of tasks in the agent polling view.
        database_path: SQLite database file.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Generative backend
    default_model: str = "gemini/gemini-1.5-flash"
    model_provider_prefix: str = "gemini"
    model_config_key: str = "gemini_default_model"
    generation_timeout_seconds: float = 60.0

    # Retry & batching
    generation_max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    adaptive_batch_size: int = 5
    adaptive_max_retries: int = 1  # fail fast, prefer splitting
    fixed_chunk_size: int = 5
    default_page_limit: int = 5
    pending_tasks_limit: int = 10

    # Database Configuration
    database_path: str = "./data/planforge.db"

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
