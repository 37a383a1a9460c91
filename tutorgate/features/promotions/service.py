"""
tutorgate/features/promotions/service.py

Promo code redemption.

Redemption is a single conditional UPDATE (active, inside the validity
window, below the usage cap) so two concurrent redemptions can never push
current_uses past max_uses.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorgate.core.clock import Clock, ensure_utc, utc_now
from tutorgate.core.database import get_db_session, get_session_factory, promo_codes
from tutorgate.core.errors import ConflictError, StoreFailureError, ValidationError
from tutorgate.core.logging import log_event
from tutorgate.models.promo_code import PromoCode


logger = logging.getLogger("tutorgate")


def normalize_code(code: Any) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Promo code is required")
    return code.strip().upper()


def _row_to_model(row) -> Optional[PromoCode]:
    if row is None:
        return None
    return PromoCode(
        id=row.id,
        code=row.code,
        description=row.description,
        discount_percent=row.discount_percent,
        is_active=bool(row.is_active),
        valid_from=ensure_utc(row.valid_from),
        valid_until=ensure_utc(row.valid_until),
        max_uses=row.max_uses,
        current_uses=row.current_uses,
    )


class PromoCodeService:
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
            logger.error("promo.store_failure", extra={"error_code": "store_unavailable"})
            raise StoreFailureError("Promo code store is unavailable") from exc

    def create(
        self,
        code: str,
        discount_percent: int,
        *,
        description: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        is_active: bool = True,
    ) -> PromoCode:
        """Register a new code (stored upper-case)."""
        normalized = normalize_code(code)
        if not 0 <= discount_percent <= 100:
            raise ValidationError("discount_percent must be between 0 and 100")
        if max_uses is not None and max_uses < 0:
            raise ValidationError("max_uses must not be negative")

        try:
            with self._session() as session:
                session.execute(
                    insert(promo_codes).values(
                        code=normalized,
                        description=description,
                        discount_percent=discount_percent,
                        is_active=is_active,
                        valid_from=ensure_utc(valid_from),
                        valid_until=ensure_utc(valid_until),
                        max_uses=max_uses,
                        current_uses=0,
                        created_at=ensure_utc(self.now_fn()),
                    )
                )
        except IntegrityError as exc:
            raise ConflictError(f"Promo code {normalized} already exists") from exc
        return self.get(normalized)

    def get(self, code: str) -> Optional[PromoCode]:
        with self._session() as session:
            row = session.execute(
                select(promo_codes).where(promo_codes.c.code == normalize_code(code))
            ).first()
            return _row_to_model(row)

    def redeem(self, code: Any, user_id: Optional[str] = None) -> PromoCode:
        """
        Consume one use of `code`.

        Raises:
            ValidationError: Missing, unknown, inactive, expired or exhausted code
            StoreFailureError: Store unavailable
        """
        normalized = normalize_code(code)
        now = ensure_utc(self.now_fn())
        with self._session() as session:
            result = session.execute(
                update(promo_codes)
                .where(
                    and_(
                        promo_codes.c.code == normalized,
                        promo_codes.c.is_active.is_(True),
                        or_(promo_codes.c.valid_from.is_(None), promo_codes.c.valid_from <= now),
                        or_(promo_codes.c.valid_until.is_(None), promo_codes.c.valid_until >= now),
                        or_(
                            promo_codes.c.max_uses.is_(None),
                            promo_codes.c.current_uses < promo_codes.c.max_uses,
                        ),
                    )
                )
                .values(current_uses=promo_codes.c.current_uses + 1)
            )
            if result.rowcount != 1:
                raise ValidationError("Invalid or expired promo code")
            row = session.execute(
                select(promo_codes).where(promo_codes.c.code == normalized)
            ).first()

        promo = _row_to_model(row)
        log_event("info", "promo.redeemed", user_id=user_id, event_type="promo_redeemed", extra={"code": promo.code})
        return promo
