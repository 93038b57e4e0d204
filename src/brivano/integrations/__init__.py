"""Enrichment provider and validator clients.

This module provides the adapters for every external data source used in
the enrichment waterfall, plus builders that assemble the chain from
configuration.

Imports are lazy so the twilio SDK is only loaded when phone validation is
configured.
"""

import logging
from typing import TYPE_CHECKING, Any

logger = logging.getLogger(__name__)

# Waterfall order; earlier providers are cheaper per contact
PROVIDER_ORDER = ("apollo", "hunter", "pdl", "clearbit")

_LAZY_CLASSES = {
    "ApolloProvider": ".apollo",
    "HunterProvider": ".hunter",
    "PeopleDataLabsProvider": ".pdl",
    "ClearbitProvider": ".clearbit",
    "ZeroBounceEmailValidator": ".zerobounce",
    "TwilioPhoneValidator": ".twilio_lookup",
}

# For type checking, use actual imports
if TYPE_CHECKING:
    from ..config import Config
    from ..enrichment.waterfall import ContactValidator, EnrichmentProvider
    from .apollo import ApolloProvider
    from .clearbit import ClearbitProvider
    from .hunter import HunterProvider
    from .pdl import PeopleDataLabsProvider
    from .twilio_lookup import TwilioPhoneValidator
    from .zerobounce import ZeroBounceEmailValidator


def __getattr__(name: str) -> Any:
    """Module-level __getattr__ for lazy imports."""
    if name in _LAZY_CLASSES:
        import importlib

        module = importlib.import_module(_LAZY_CLASSES[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def build_providers(config: "Config") -> list["EnrichmentProvider"]:
    """Instantiate every provider with credentials, in waterfall order.

    Args:
        config: Application configuration.

    Returns:
        Providers ordered Apollo, Hunter, PDL, Clearbit, skipping any
        without an API key. Empty when none are configured.
    """
    from .apollo import ApolloProvider
    from .clearbit import ClearbitProvider
    from .hunter import HunterProvider
    from .pdl import PeopleDataLabsProvider

    factories = {
        "apollo": lambda: ApolloProvider(config.APOLLO_API_KEY, config.PROVIDER_TIMEOUT_SECONDS),
        "hunter": lambda: HunterProvider(config.HUNTER_API_KEY, config.PROVIDER_TIMEOUT_SECONDS),
        "pdl": lambda: PeopleDataLabsProvider(config.PDL_API_KEY, config.PROVIDER_TIMEOUT_SECONDS),
        "clearbit": lambda: ClearbitProvider(
            config.CLEARBIT_API_KEY, config.PROVIDER_TIMEOUT_SECONDS
        ),
    }

    configured = set(config.configured_providers)
    providers = [factories[name]() for name in PROVIDER_ORDER if name in configured]
    logger.info(
        "Enrichment providers available: %s",
        ", ".join(p.name for p in providers) or "none",
    )
    return providers


def build_validators(config: "Config") -> list["ContactValidator"]:
    """Instantiate the configured contact validators (email, then phone)."""
    validators: list["ContactValidator"] = []
    if config.ZEROBOUNCE_API_KEY:
        from .zerobounce import ZeroBounceEmailValidator

        validators.append(
            ZeroBounceEmailValidator(config.ZEROBOUNCE_API_KEY, config.PROVIDER_TIMEOUT_SECONDS)
        )
    if config.has_twilio_config:
        from .twilio_lookup import TwilioPhoneValidator

        validators.append(
            TwilioPhoneValidator(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        )
    return validators


__all__ = [
    "PROVIDER_ORDER",
    "ApolloProvider",
    "HunterProvider",
    "PeopleDataLabsProvider",
    "ClearbitProvider",
    "ZeroBounceEmailValidator",
    "TwilioPhoneValidator",
    "build_providers",
    "build_validators",
]
