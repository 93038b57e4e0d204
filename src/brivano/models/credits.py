"""Credit accounting SQLAlchemy models.

``CreditPeriod`` holds one user's counter for one calendar month and
``CreditUsage`` holds one row per charged unit, which is what the usage
history and idempotent replays are read from.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class CreditPeriod(Base):
    """Monthly credit counter for a single user.

    Attributes:
        id: Unique identifier for the period row (UUID).
        user_id: Owner of the counter.
        period_start: First day of the calendar month (UTC).
        credits_used: Credits consumed in this period. Only ever incremented.
        bonus_credits: Non-expiring bonus credits attached to this period.
            Seeded from the unspent bonus of the previous period.
    """

    __tablename__ = "credit_periods"
    __table_args__ = (
        UniqueConstraint("user_id", "period_start", name="uq_credit_periods_user_period"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

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

    def __repr__(self) -> str:
        return (
            f"<CreditPeriod(user_id={self.user_id!r}, period_start={self.period_start}, "
            f"credits_used={self.credits_used}, bonus_credits={self.bonus_credits})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "period_start": self.period_start.isoformat(),
            "credits_used": self.credits_used,
            "bonus_credits": self.bonus_credits,
        }


class CreditUsage(Base):
    """One charged unit of a metered action.

    A charge of ``count`` units writes ``count`` rows sharing the same
    idempotency key with increasing ``unit_index``. Keys are scoped to the
    user, so two users may reuse the same key independently.
    """

    __tablename__ = "credit_usage"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "idempotency_key", "unit_index", name="uq_credit_usage_idempotency"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    credits_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True
    )
    unit_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Counter value right after the charge, returned on idempotent replay
    consumed_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<CreditUsage(user_id={self.user_id!r}, action={self.action!r}, "
            f"credits_spent={self.credits_spent})>"
        )
