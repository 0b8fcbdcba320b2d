"""
Centralized configuration management for the application

This module provides a single source of truth for all configuration settings,
loading from environment variables with sensible defaults. All configuration
values can be overridden via environment variables.

The Config class provides:
- Typed configuration access
- Validation methods to check configuration
- Helper methods for database type detection

Example:
    ```python
    from voterpulse.config import config

    batch_size = config.IMPORT_BATCH_SIZE

    warnings = config.validate()

    if config.is_sqlite():
        pass
    ```
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./voterpulse.db"


class Config:
    """
    Application configuration with environment variable support

    All values can be overridden by setting the corresponding environment
    variable. See env.example for the full list.
    """

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    # SQLite-specific pool settings
    SQLITE_POOL_SIZE: int = int(os.getenv("SQLITE_POOL_SIZE", "10"))
    SQLITE_MAX_OVERFLOW: int = int(os.getenv("SQLITE_MAX_OVERFLOW", "10"))
    # Upper bound on bound parameters per statement (SQLite default limit is 32766)
    SQLITE_MAX_VARIABLES: int = int(os.getenv("SQLITE_MAX_VARIABLES", "32000"))

    # PostgreSQL-specific pool settings (if using PostgreSQL)
    POSTGRES_POOL_SIZE: int = int(os.getenv("POSTGRES_POOL_SIZE", "20"))
    POSTGRES_MAX_OVERFLOW: int = int(os.getenv("POSTGRES_MAX_OVERFLOW", "30"))

    # Application Configuration
    DEBUG: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")
    LOG_FILE_MAX_BYTES: int = int(os.getenv("LOG_FILE_MAX_BYTES", "10485760"))
    LOG_FILE_BACKUP_COUNT: int = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))

    # CORS Configuration
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ]

    # Import Pipeline Configuration
    IMPORT_BATCH_SIZE: int = int(os.getenv("IMPORT_BATCH_SIZE", "1000"))
    IMPORT_MAX_STORED_ERRORS: int = int(os.getenv("IMPORT_MAX_STORED_ERRORS", "100"))
    IMPORT_PROGRESS_INTERVAL: int = int(os.getenv("IMPORT_PROGRESS_INTERVAL", "100"))
    IMPORT_CHUNK_SIZE: int = int(os.getenv("IMPORT_CHUNK_SIZE", "65536"))
    # Default character encoding of uploaded files; an upload may name its own
    IMPORT_ENCODING: str = os.getenv("IMPORT_ENCODING", "utf-8")
    IMPORT_PREVIEW_BYTES: int = int(os.getenv("IMPORT_PREVIEW_BYTES", "10240"))
    IMPORT_PREVIEW_ROWS: int = int(os.getenv("IMPORT_PREVIEW_ROWS", "5"))
    MAX_CONCURRENT_IMPORTS: int = int(os.getenv("MAX_CONCURRENT_IMPORTS", "3"))
    # Directory uploads are spooled to while an import runs (system temp dir if unset)
    IMPORT_SPOOL_DIR: Optional[str] = os.getenv("IMPORT_SPOOL_DIR") or None
    THREAD_POOL_WORKERS: int = int(os.getenv("THREAD_POOL_WORKERS", "4"))

    # Progress cache
    PROGRESS_CACHE_TTL_SECONDS: int = int(os.getenv("PROGRESS_CACHE_TTL_SECONDS", "3600"))
    PROGRESS_CACHE_PURGE_INTERVAL_SECONDS: int = int(os.getenv("PROGRESS_CACHE_PURGE_INTERVAL_SECONDS", "300"))

    # Lists
    LIST_POPULATE_BATCH_SIZE: int = int(os.getenv("LIST_POPULATE_BATCH_SIZE", "1000"))

    # Pagination
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Team invitations
    INVITATION_TTL_DAYS: int = int(os.getenv("INVITATION_TTL_DAYS", "7"))

    # Rate Limiting Configuration
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")
    RATE_LIMIT_DEFAULT: str = os.getenv("RATE_LIMIT_DEFAULT", "1000/hour")
    # Uploads and list population
    RATE_LIMIT_BULK: str = os.getenv("RATE_LIMIT_BULK", "5/minute")

    # Retry Configuration
    DEFAULT_MAX_RETRIES: int = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    DEFAULT_RETRY_DELAY: float = float(os.getenv("DEFAULT_RETRY_DELAY", "0.1"))

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of warnings/errors

        Returns:
            List of validation messages (empty if all valid)
        """
        warnings = []

        if cls.IMPORT_BATCH_SIZE < 1:
            warnings.append("IMPORT_BATCH_SIZE must be at least 1")

        if cls.IMPORT_MAX_STORED_ERRORS < 0:
            warnings.append("IMPORT_MAX_STORED_ERRORS cannot be negative")

        if cls.LIST_POPULATE_BATCH_SIZE < 1:
            warnings.append("LIST_POPULATE_BATCH_SIZE must be at least 1")

        if cls.MAX_CONCURRENT_IMPORTS > 1 and cls.is_sqlite():
            warnings.append(
                f"Warning: {cls.MAX_CONCURRENT_IMPORTS} concurrent imports against SQLite "
                "may cause lock contention. Consider PostgreSQL for multi-tenant load."
            )

        if cls.SQLITE_POOL_SIZE > 20:
            warnings.append(
                f"Warning: SQLite pool size ({cls.SQLITE_POOL_SIZE}) is high. "
                "SQLite works better with smaller pools (10-15 recommended)."
            )

        return warnings

    @classmethod
    def is_sqlite(cls) -> bool:
        """Check if using SQLite database"""
        return cls.DATABASE_URL.startswith("sqlite")


# Global config instance
config = Config()
