"""Brivano Database Models.

This module contains SQLAlchemy models for credit accounting, leads,
enrichment runs and the audit log.
"""

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Import models to register them with Base metadata
from .lead import Lead, LeadStatus, ACTIVE_LEAD_STATUSES
from .credits import CreditPeriod, CreditUsage
from .enrichment_run import EnrichmentRun
from .audit import AuditLogEntry

# Import database utilities
from .database import (
    DatabaseManager,
    init_database,
    close_database,
    create_test_engine,
)

__all__ = [
    # Base class
    "Base",
    # Models
    "Lead",
    "LeadStatus",
    "ACTIVE_LEAD_STATUSES",
    "CreditPeriod",
    "CreditUsage",
    "EnrichmentRun",
    "AuditLogEntry",
    # Database utilities
    "DatabaseManager",
    "init_database",
    "close_database",
    "create_test_engine",
]
