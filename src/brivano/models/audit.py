"""Append-only audit log model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class AuditLogEntry(Base):
    """A single field-level change recorded for audit.

    Rows are only ever inserted. Credit charges and (re-)enrichment runs
    both write here.

    Attributes:
        table_name: Table the change applies to.
        record_id: Primary key of the changed row.
        action: Kind of change (e.g. "charge", "update").
        field_name: Column or logical field affected.
        old_value: Value before the change, stringified.
        new_value: Value after the change, stringified.
        reason: Human-readable reason for the change.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    field_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLogEntry(table_name={self.table_name!r}, record_id={self.record_id!r}, "
            f"action={self.action!r}, field_name={self.field_name!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "table": self.table_name,
            "record_id": self.record_id,
            "action": self.action,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }
