"""SQLAlchemy-backed credit store.

The charge is a single conditional UPDATE:

    UPDATE credit_periods
       SET credits_used = credits_used + :cost
     WHERE id = :id
       AND credits_used + :cost <= :allowance + bonus_credits

so the database serializes concurrent charges on the row lock and a
charge that would overdraw the pool matches no row. Usage rows and the
audit entry are written in the same transaction; if anything fails the
whole charge rolls back.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import AuditLogEntry, CreditPeriod, CreditUsage, DatabaseManager
from .store import (
    CreditStore,
    DebitRequest,
    DebitResult,
    PeriodState,
    _charge_reason,
    replay_result,
)

logger = logging.getLogger(__name__)


def _to_state(period: CreditPeriod) -> PeriodState:
    return PeriodState(
        user_id=period.user_id,
        period_start=period.period_start,
        credits_used=period.credits_used,
        bonus_credits=period.bonus_credits,
        id=period.id,
    )


class SqlCreditStore(CreditStore):
    """Credit store on the ``credit_periods`` and ``credit_usage`` tables.

    Args:
        session_factory: Session factory to use. Defaults to the shared
            factory from ``DatabaseManager``.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._session_factory = session_factory

    async def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = await DatabaseManager.get_session_factory()
        return self._session_factory

    async def _select_period(
        self, session: AsyncSession, user_id: str, period_start: date
    ) -> Optional[CreditPeriod]:
        result = await session.execute(
            select(CreditPeriod).where(
                CreditPeriod.user_id == user_id,
                CreditPeriod.period_start == period_start,
            )
        )
        return result.scalar_one_or_none()

    async def get_period(self, user_id: str, period_start: date) -> Optional[PeriodState]:
        factory = await self._factory()
        async with factory() as session:
            period = await self._select_period(session, user_id, period_start)
            return _to_state(period) if period else None

    async def latest_period_before(
        self, user_id: str, period_start: date
    ) -> Optional[PeriodState]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(CreditPeriod)
                .where(
                    CreditPeriod.user_id == user_id,
                    CreditPeriod.period_start < period_start,
                )
                .order_by(CreditPeriod.period_start.desc())
                .limit(1)
            )
            period = result.scalar_one_or_none()
            return _to_state(period) if period else None

    async def ensure_period(
        self, user_id: str, period_start: date, opening_bonus: int
    ) -> PeriodState:
        factory = await self._factory()
        async with factory() as session:
            period = await self._select_period(session, user_id, period_start)
            if period is not None:
                return _to_state(period)

            period = CreditPeriod(
                user_id=user_id,
                period_start=period_start,
                credits_used=0,
                bonus_credits=opening_bonus,
            )
            session.add(period)
            try:
                await session.commit()
                logger.info(
                    "Opened credit period %s for user %s with %d bonus credits",
                    period_start, user_id, opening_bonus,
                )
                return _to_state(period)
            except IntegrityError:
                # Another request opened the same period first
                await session.rollback()

        async with factory() as session:
            period = await self._select_period(session, user_id, period_start)
            return _to_state(period)

    async def _replay(
        self, session: AsyncSession, request: DebitRequest
    ) -> Optional[DebitResult]:
        rows = (
            await session.execute(
                select(CreditUsage.action, CreditUsage.consumed_after).where(
                    CreditUsage.user_id == request.user_id,
                    CreditUsage.idempotency_key == request.idempotency_key,
                )
            )
        ).all()
        if not rows:
            return None
        action, consumed = rows[0]
        return replay_result(request, action, len(rows), consumed)

    async def debit(self, request: DebitRequest) -> DebitResult:
        factory = await self._factory()
        cost = request.total_cost

        async with factory() as session:
            if request.idempotency_key:
                replayed = await self._replay(session, request)
                if replayed is not None:
                    return replayed

            period_id = (
                await session.execute(
                    select(CreditPeriod.id).where(
                        CreditPeriod.user_id == request.user_id,
                        CreditPeriod.period_start == request.period_start,
                    )
                )
            ).scalar_one_or_none()
            if period_id is None:
                return DebitResult(success=False, consumed=0, reason="period_missing")

            stmt = update(CreditPeriod).where(CreditPeriod.id == period_id)
            if request.allowance is not None:
                stmt = stmt.where(
                    CreditPeriod.credits_used + cost
                    <= request.allowance + CreditPeriod.bonus_credits
                )
            stmt = stmt.values(
                credits_used=CreditPeriod.credits_used + cost,
                updated_at=datetime.utcnow(),
            ).execution_options(synchronize_session=False)

            result = await session.execute(stmt)
            consumed = (
                await session.execute(
                    select(CreditPeriod.credits_used).where(CreditPeriod.id == period_id)
                )
            ).scalar_one()

            if result.rowcount == 0:
                await session.rollback()
                return DebitResult(
                    success=False,
                    consumed=consumed,
                    reason="insufficient_credits",
                )

            for unit_index in range(request.count):
                session.add(CreditUsage(
                    user_id=request.user_id,
                    period_start=request.period_start,
                    action=request.action,
                    credits_spent=request.unit_cost,
                    reference_id=request.reference_id,
                    idempotency_key=request.idempotency_key,
                    unit_index=unit_index,
                    consumed_after=consumed,
                ))
            session.add(AuditLogEntry(
                table_name="credit_periods",
                record_id=period_id,
                action="charge",
                field_name="credits_used",
                old_value=str(consumed - cost),
                new_value=str(consumed),
                reason=_charge_reason(request),
            ))

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if not request.idempotency_key:
                    raise
                logger.info(
                    "Concurrent retry for idempotency key %s, returning original charge",
                    request.idempotency_key,
                )
                async with factory() as replay_session:
                    replayed = await self._replay(replay_session, request)
                if replayed is None:
                    raise
                return replayed

        return DebitResult(success=True, consumed=consumed)

    async def add_bonus(self, user_id: str, period_start: date, amount: int) -> PeriodState:
        factory = await self._factory()
        async with factory() as session:
            period_id = (
                await session.execute(
                    update(CreditPeriod)
                    .where(
                        CreditPeriod.user_id == user_id,
                        CreditPeriod.period_start == period_start,
                    )
                    .values(bonus_credits=CreditPeriod.bonus_credits + amount)
                    .returning(CreditPeriod.id)
                    .execution_options(synchronize_session=False)
                )
            ).scalar_one()
            bonus = (
                await session.execute(
                    select(CreditPeriod.bonus_credits).where(CreditPeriod.id == period_id)
                )
            ).scalar_one()
            session.add(AuditLogEntry(
                table_name="credit_periods",
                record_id=period_id,
                action="grant",
                field_name="bonus_credits",
                old_value=str(bonus - amount),
                new_value=str(bonus),
                reason="Bonus credits granted",
            ))
            await session.commit()

        return await self.get_period(user_id, period_start)
