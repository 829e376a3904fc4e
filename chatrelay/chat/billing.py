"""Billing resolution: which credential a turn uses and how it is charged."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from chatrelay.errors import BillingError

if TYPE_CHECKING:
    from chatrelay.models import User

logger = logging.getLogger(__name__)


class BillingMode(str, Enum):
    BYOK = "BYOK"
    PREMIUM = "PREMIUM"
    CREDITS = "CREDITS"


@dataclass(frozen=True)
class BillingDecision:
    api_key: str
    mode: BillingMode

    @property
    def is_metered(self) -> bool:
        return self.mode is BillingMode.CREDITS


def resolve_billing(user: User, system_key: str) -> BillingDecision:
    """Pick the credential and billing mode for *user*.

    BYOK wins when enabled and a key is stored, then premium, then
    metered credits. Raises ``BillingError`` if a metered user has no
    credits left. Pure: nothing is charged here.
    """
    if user.byok_enabled and user.provider_key:
        return BillingDecision(api_key=user.provider_key, mode=BillingMode.BYOK)
    if user.is_premium:
        return BillingDecision(api_key=system_key, mode=BillingMode.PREMIUM)
    if user.credits <= 0:
        logger.info("User %s is out of credits", user.id)
        raise BillingError("You are out of credits, upgrade to premium")
    return BillingDecision(api_key=system_key, mode=BillingMode.CREDITS)
