"""Brivano Lead Intelligence Backend.

This package provides the credit entitlement engine and the multi-provider
waterfall enrichment pipeline behind the Brivano B2B lead generation CRM.
"""

__version__ = "0.1.0"
