"""Brivano service configuration module.

This module provides centralized configuration management for the credit
engine and enrichment pipeline, loading settings from environment variables
with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

All API keys and sensitive configuration should be provided via environment
variables, never hardcoded.

Usage:
    >>> from brivano.config import config
    >>> print(config.PROVIDER_TIMEOUT_SECONDS)
    30.0
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration class that loads settings from environment variables.

    Attributes:
        DATABASE_URL: PostgreSQL connection string.
        APOLLO_API_KEY: Apollo.io API key (first provider in the waterfall).
        HUNTER_API_KEY: Hunter.io API key.
        PDL_API_KEY: People Data Labs API key.
        CLEARBIT_API_KEY: Clearbit API key (company data).
        ZEROBOUNCE_API_KEY: ZeroBounce API key for email validation.
        TWILIO_ACCOUNT_SID: Twilio account SID for phone Lookup.
        TWILIO_AUTH_TOKEN: Twilio auth token.
        PROVIDER_TIMEOUT_SECONDS: Per-request timeout for provider calls.
        RETRY_MAX_ATTEMPTS: Attempts per provider before moving on.
        RETRY_BASE_DELAY_SECONDS: Base delay for exponential backoff.

    Example:
        >>> config = Config()
        >>> print(config.APP_ENV)
        dev
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""
        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")

        # Database Configuration
        self.DATABASE_URL = self._get_optional("DATABASE_URL")
        self.DATABASE_POOL_SIZE = int(self._get_optional("DATABASE_POOL_SIZE", "5"))
        self.DATABASE_MAX_OVERFLOW = int(
            self._get_optional("DATABASE_MAX_OVERFLOW", "10")
        )

        # Enrichment providers, in waterfall order
        self.APOLLO_API_KEY = self._get_optional("APOLLO_API_KEY")
        self.HUNTER_API_KEY = self._get_optional("HUNTER_API_KEY")
        self.PDL_API_KEY = self._get_optional("PDL_API_KEY")
        self.CLEARBIT_API_KEY = self._get_optional("CLEARBIT_API_KEY")

        # Contact validation
        self.ZEROBOUNCE_API_KEY = self._get_optional("ZEROBOUNCE_API_KEY")
        self.TWILIO_ACCOUNT_SID = self._get_optional("TWILIO_ACCOUNT_SID")
        self.TWILIO_AUTH_TOKEN = self._get_optional("TWILIO_AUTH_TOKEN")

        # Provider call policy
        self.PROVIDER_TIMEOUT_SECONDS = float(
            self._get_optional("PROVIDER_TIMEOUT_SECONDS", "30")
        )
        self.RETRY_MAX_ATTEMPTS = int(self._get_optional("RETRY_MAX_ATTEMPTS", "3"))
        self.RETRY_BASE_DELAY_SECONDS = float(
            self._get_optional("RETRY_BASE_DELAY_SECONDS", "1.0")
        )

        # Re-enrichment of stale leads
        self.STALE_THRESHOLD_DAYS = int(
            self._get_optional("STALE_THRESHOLD_DAYS", "30")
        )
        self.REENRICH_MAX_LEADS = int(self._get_optional("REENRICH_MAX_LEADS", "25"))

        # API Server Configuration
        self.API_HOST = self._get_optional("API_HOST", "0.0.0.0")
        self.API_PORT = int(self._get_optional("API_PORT", "8080"))

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Default value if not found (default: "").

        Returns:
            The value of the environment variable or the default value.
        """
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str) -> bool:
        """Get a boolean configuration value from environment variables.

        Args:
            name: The name of the environment variable.

        Returns:
            True if the environment variable exists and is set to 'true' or '1'.
        """
        return name in os.environ and os.environ[name].lower() in ["true", "1"]

    @property
    def configured_providers(self) -> list[str]:
        """Names of enrichment providers with credentials, in waterfall order."""
        providers = []
        if self.APOLLO_API_KEY:
            providers.append("apollo")
        if self.HUNTER_API_KEY:
            providers.append("hunter")
        if self.PDL_API_KEY:
            providers.append("pdl")
        if self.CLEARBIT_API_KEY:
            providers.append("clearbit")
        return providers

    @property
    def has_twilio_config(self) -> bool:
        """Check if Twilio Lookup credentials are present."""
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    def validate_for_enrichment(self) -> None:
        """Validate configuration required for waterfall enrichment.

        Raises:
            ConfigError: If no enrichment provider is configured.
        """
        if not self.configured_providers:
            raise ConfigError(
                "No enrichment providers configured. Set APOLLO_API_KEY, "
                "HUNTER_API_KEY, PDL_API_KEY, or CLEARBIT_API_KEY."
            )

    def validate_for_database(self) -> None:
        """Validate configuration required for database operations.

        Raises:
            ConfigError: If required database configuration is missing.
        """
        if not self.DATABASE_URL:
            raise ConfigError("DATABASE_URL is required for database operations")

    def get_database_connection_args(self) -> dict:
        """Get database connection arguments for SQLAlchemy.

        Returns:
            Dictionary of connection arguments.
        """
        return {
            "pool_size": self.DATABASE_POOL_SIZE,
            "max_overflow": self.DATABASE_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }


# Create global singleton instance
config = Config()
