"""
tutorgate/models/promo_code.py

Promo code model.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PromoCode(BaseModel):
    """
    A redeemable discount code.

    A code is redeemable while active, inside its optional validity window,
    and below its optional usage cap (max_uses None means unlimited).
    """
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    description: Optional[str] = None
    discount_percent: int = 0
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    current_uses: int = 0
