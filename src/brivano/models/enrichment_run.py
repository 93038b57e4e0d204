"""EnrichmentRun SQLAlchemy model for persisted waterfall results."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class EnrichmentRun(Base):
    """Final state of one waterfall execution.

    Rows are written once when a run reaches a terminal state and are not
    updated afterwards. Re-enriching a lead adds a row with the next
    ``version``.

    Attributes:
        id: Unique identifier for the run (UUID).
        lead_id: Lead the run was performed for, if any.
        user_id: User who triggered the run.
        domain: Company domain the waterfall looked up.
        version: 1-based run number for the lead.
        terminal_state: "complete", "exhausted" or "failed".
        merged_fields: Accumulated field values after the run.
        providers_used: Providers invoked, in call order.
        step_log: One entry per provider or validator step.
        is_complete: Whether name, email and phone are all present.
    """

    __tablename__ = "enrichment_runs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    lead_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    terminal_state: Mapped[str] = mapped_column(String(20), nullable=False)
    merged_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    providers_used: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    step_log: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<EnrichmentRun(id={self.id!r}, domain={self.domain!r}, "
            f"version={self.version}, terminal_state={self.terminal_state!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lead_id": self.lead_id,
            "user_id": self.user_id,
            "domain": self.domain,
            "version": self.version,
            "terminal_state": self.terminal_state,
            "merged_fields": self.merged_fields,
            "providers_used": self.providers_used,
            "step_log": self.step_log,
            "is_complete": self.is_complete,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
