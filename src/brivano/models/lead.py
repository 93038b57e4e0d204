"""Lead SQLAlchemy model for storing prospect contact information."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class LeadStatus(str, Enum):
    """Status of a lead in the CRM pipeline."""

    NEW = "new"
    REVIEW = "review"
    APPROVED = "approved"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    CONVERTED = "converted"
    DISQUALIFIED = "disqualified"


# Leads in these states are still worked and worth keeping fresh
ACTIVE_LEAD_STATUSES = (
    LeadStatus.NEW,
    LeadStatus.REVIEW,
    LeadStatus.APPROVED,
    LeadStatus.ASSIGNED,
    LeadStatus.IN_PROGRESS,
)


class Lead(Base):
    """SQLAlchemy model representing a prospect lead.

    Holds the company domain used as the enrichment key together with the
    contact fields the enrichment waterfall fills in.

    Attributes:
        id: Unique identifier for the lead (UUID).
        name: Business or prospect name as captured.
        domain: Company web domain, the waterfall lookup key.
        full_name: Contact full name (from enrichment).
        email: Contact email (from enrichment).
        phone: Contact phone (from enrichment).
        status: Current pipeline status.
        enrichment_providers_used: Providers consulted on the latest run.
        enriched_at: Timestamp of the latest enrichment run.
    """

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Contact data filled by enrichment
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    linkedin_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status"),
        nullable=False,
        default=LeadStatus.NEW,
        index=True
    )

    enrichment_providers_used: Mapped[Optional[list[str]]] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
        comment="Providers consulted on the latest enrichment run"
    )
    enriched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    # Columns a waterfall result may write back onto the lead
    CONTACT_FIELDS = (
        "full_name",
        "email",
        "phone",
        "job_title",
        "linkedin_url",
        "company_name",
        "industry",
    )

    def __repr__(self) -> str:
        """Return string representation of the lead."""
        return f"<Lead(id={self.id!r}, domain={self.domain!r}, status={self.status.value!r})>"

    def known_fields(self) -> dict[str, Any]:
        """Contact fields currently held on the lead, dropping empty ones."""
        return {
            name: getattr(self, name)
            for name in self.CONTACT_FIELDS
            if getattr(self, name)
        }

    def to_dict(self) -> dict:
        """Convert lead to dictionary representation.

        Returns:
            Dictionary with all lead fields.
        """
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "job_title": self.job_title,
            "linkedin_url": self.linkedin_url,
            "company_name": self.company_name,
            "industry": self.industry,
            "status": self.status.value,
            "enrichment_providers_used": self.enrichment_providers_used,
            "enriched_at": self.enriched_at.isoformat() if self.enriched_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
