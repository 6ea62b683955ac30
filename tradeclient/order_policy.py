"""Order Policy — client-side pre-trade checks mirrored from the backend rules."""

from enum import Enum
from typing import Any

from pydantic import BaseModel

from tradeclient.models.account import ActiveAccount, ChallengeAccount
from tradeclient.models.market import has_quote
from tradeclient.models.trade import OrderRequest


class ValidationCode(str, Enum):
    OK = "ok"
    STOP_LOSS_REQUIRED = "stop_loss_required"
    NO_PRICE = "no_price"
    PENDING_PRICE_REQUIRED = "pending_price_required"


class ValidationResult:
    def __init__(self, approved: bool, reason: str = "", code: ValidationCode = ValidationCode.OK):
        self.approved = approved
        self.reason = reason
        self.code = code

    @property
    def needs_stop_loss(self) -> bool:
        return self.code == ValidationCode.STOP_LOSS_REQUIRED

    def __repr__(self) -> str:
        return f"ValidationResult(approved={self.approved}, code={self.code.value}, reason={self.reason!r})"


class OrderPolicy(BaseModel):
    """Rules that apply to orders on one account. Regular accounts get the defaults."""
    stop_loss_mandatory: bool = False
    challenge_name: str = ""

    @classmethod
    def for_account(cls, active: ActiveAccount | None) -> "OrderPolicy":
        if active is None or not isinstance(active.account, ChallengeAccount):
            return cls()
        account = active.account
        return cls(
            stop_loss_mandatory=account.rules.stop_loss_mandatory,
            challenge_name=account.challenge.name,
        )


def validate_order(
    order: OrderRequest, quote: dict[str, Any] | None, policy: OrderPolicy
) -> ValidationResult:
    """Check an order before anything is sent.

    Used for the first attempt and for the resubmission after a stop-loss
    prompt, so both paths apply the same rules.
    """
    # 1. Stop loss mandatory (challenge rule)
    if policy.stop_loss_mandatory and not order.sl:
        return ValidationResult(
            False,
            "Stop Loss is mandatory for this challenge",
            ValidationCode.STOP_LOSS_REQUIRED,
        )

    # 2. Live price on both sides
    if not has_quote(quote):
        return ValidationResult(
            False,
            "Market is closed or no price data available",
            ValidationCode.NO_PRICE,
        )

    # 3. Entry price for pending orders
    if order.pending and not order.pending_price:
        return ValidationResult(
            False,
            "Please enter a pending price",
            ValidationCode.PENDING_PRICE_REQUIRED,
        )

    return ValidationResult(True, "All order checks passed")
