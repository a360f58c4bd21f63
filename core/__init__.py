"""
Core utilities and configuration for the price ingestion system.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async SQLAlchemy engine and session helpers for the SQL store
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    metrics: Prometheus counters and histograms

Usage:
    from core.config import settings
    from core.exceptions import NetworkError, PersistError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Per-provider configuration
    provider_config = settings.provider("dewa")
"""

__all__ = [
    "settings",
    "setup_logging",
    # Exceptions
    "IngestionException",
    "RetryableError",
    "NonRetryableError",
    "FetchError",
    "TransientFetchError",
    "NetworkError",
    "FetchTimeoutError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "PayloadFormatError",
    "SourceUnavailableError",
    "AllSourcesFailedError",
    "PersistError",
    "ConfigurationError",
    "ProviderNotFoundError",
    "RunCancelledError",
]
