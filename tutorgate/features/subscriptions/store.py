"""
tutorgate/features/subscriptions/store.py

Store adapter between the `subscriptions` table and the Subscription model.

No business rules live here. Writes are guarded by an optimistic `version`
check so a read-modify-write in the lifecycle manager either applies fully
or not at all.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorgate.core.clock import Clock, ensure_utc, utc_now
from tutorgate.core.database import get_db_session, get_session_factory, subscriptions
from tutorgate.core.errors import StoreFailureError
from tutorgate.models.subscription import BillingCycle, PlanTier, Subscription, SubscriptionStatus


logger = logging.getLogger("tutorgate")

# Columns a lifecycle transition may change
MUTABLE_FIELDS = frozenset({
    "plan",
    "status",
    "billing_cycle",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "scheduled_plan",
    "scheduled_billing_cycle",
    "scheduled_change_date",
})


def _to_db(value: Any) -> Any:
    if isinstance(value, (PlanTier, SubscriptionStatus, BillingCycle)):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


def _row_to_model(row) -> Optional[Subscription]:
    if row is None:
        return None
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan=row.plan,
        status=row.status,
        billing_cycle=row.billing_cycle,
        current_period_start=ensure_utc(row.current_period_start),
        current_period_end=ensure_utc(row.current_period_end),
        cancel_at_period_end=bool(row.cancel_at_period_end),
        scheduled_plan=row.scheduled_plan,
        scheduled_billing_cycle=row.scheduled_billing_cycle,
        scheduled_change_date=ensure_utc(row.scheduled_change_date),
        version=row.version,
        generation=row.generation,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


class SubscriptionStore:
    """Durable subscription records keyed by user id."""

    def __init__(self, session_factory: Optional[sessionmaker] = None, now_fn: Clock = utc_now):
        self._session_factory = session_factory
        self.now_fn = now_fn

    @contextmanager
    def _session(self):
        try:
            with get_db_session(self._session_factory or get_session_factory()) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("subscription.store_failure", extra={"error_code": "store_unavailable"})
            raise StoreFailureError("Subscription store is unavailable") from exc

    def get_latest(self, user_id: str) -> Optional[Subscription]:
        """Most recent record for the user, or None."""
        with self._session() as session:
            row = session.execute(
                select(subscriptions)
                .where(subscriptions.c.user_id == user_id)
                .order_by(subscriptions.c.generation.desc(), subscriptions.c.id.desc())
                .limit(1)
            ).first()
            return _row_to_model(row)

    def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        with self._session() as session:
            row = session.execute(
                select(subscriptions).where(subscriptions.c.id == subscription_id)
            ).first()
            return _row_to_model(row)

    def insert(
        self,
        user_id: str,
        plan: PlanTier,
        billing_cycle: BillingCycle,
        period_start: datetime,
        period_end: datetime,
        generation: int = 1,
    ) -> Optional[Subscription]:
        """
        Persist a new active record as the user's `generation`-th subscription.

        Returns None when a record with that generation already exists, i.e. a
        concurrent create for the same user won.
        """
        now = ensure_utc(self.now_fn())
        try:
            with self._session() as session:
                result = session.execute(
                    insert(subscriptions).values(
                        user_id=user_id,
                        plan=_to_db(plan),
                        status=SubscriptionStatus.ACTIVE.value,
                        billing_cycle=_to_db(billing_cycle),
                        current_period_start=_to_db(period_start),
                        current_period_end=_to_db(period_end),
                        cancel_at_period_end=False,
                        scheduled_plan=None,
                        scheduled_billing_cycle=None,
                        scheduled_change_date=None,
                        version=1,
                        generation=generation,
                        created_at=now,
                        updated_at=now,
                    )
                )
                new_id = result.inserted_primary_key[0]
                row = session.execute(
                    select(subscriptions).where(subscriptions.c.id == new_id)
                ).first()
        except IntegrityError:
            return None
        return _row_to_model(row)

    def apply_update(self, subscription_id: int, expected_version: int, changes: Dict[str, Any]) -> bool:
        """
        Apply `changes` only if the record is still at `expected_version`.

        Returns:
            True when the row was updated, False when it was missing or had
            been changed concurrently.

        Raises:
            ValueError: If `changes` names a column that is not mutable
            StoreFailureError: If the database is unavailable
        """
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")

        values = {key: _to_db(value) for key, value in changes.items()}
        values["version"] = expected_version + 1
        values["updated_at"] = ensure_utc(self.now_fn())

        with self._session() as session:
            result = session.execute(
                update(subscriptions)
                .where(
                    and_(
                        subscriptions.c.id == subscription_id,
                        subscriptions.c.version == expected_version,
                    )
                )
                .values(**values)
            )
            return result.rowcount == 1

    def list_due_scheduled_changes(self, now: datetime) -> List[Subscription]:
        """Records whose pending plan change has come due."""
        with self._session() as session:
            rows = session.execute(
                select(subscriptions)
                .where(subscriptions.c.scheduled_plan.is_not(None))
                .where(subscriptions.c.scheduled_change_date <= ensure_utc(now))
                .order_by(subscriptions.c.id)
            ).all()
            return [_row_to_model(row) for row in rows]

    def list_lapsed_cancellations(self, now: datetime) -> List[Subscription]:
        """Cancelled, unscheduled records whose grace period has ended."""
        with self._session() as session:
            rows = session.execute(
                select(subscriptions)
                .where(subscriptions.c.status == SubscriptionStatus.CANCELLED.value)
                .where(subscriptions.c.scheduled_plan.is_(None))
                .where(subscriptions.c.current_period_end <= ensure_utc(now))
                .order_by(subscriptions.c.id)
            ).all()
            return [_row_to_model(row) for row in rows]
