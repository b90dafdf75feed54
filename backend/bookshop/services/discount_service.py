# Overview: Discount computation and the cashier discount ceiling.

"""
Discount Engine

A discount is either a percentage of the cart subtotal or a flat amount.

UNITS:
- percent: value in basis points (1000 = 10%)
- flat: value in cents

RULES:
- amount = subtotal * bps / 10000 (half-up to the cent) or the flat value,
  then clamped to [0, subtotal]. Out-of-range values are clamped, never rejected.
- A cashier applying a percent discount above the ceiling is unauthorized
  unless the override code is supplied and matches.
- Flat discounts are not subject to the ceiling.
- Unauthorized is a gate (DiscountResult.authorized), not an exception.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..validation import ValidationError
from .auth_service import ROLE_CASHIER, normalize_role


DISCOUNT_PERCENT = "percent"
DISCOUNT_FLAT = "flat"

VALID_DISCOUNT_MODES = [DISCOUNT_PERCENT, DISCOUNT_FLAT]

BPS_PER_WHOLE = 10_000


class DiscountConfigurationError(Exception):
    """Raised when a discount reaches the engine with an unknown mode."""
    pass


@dataclass(frozen=True)
class Discount:
    mode: str = DISCOUNT_FLAT
    value: int = 0

    @property
    def is_zero(self) -> bool:
        return self.value <= 0


NO_DISCOUNT = Discount()


@dataclass(frozen=True)
class DiscountPolicy:
    cashier_max_percent_bps: int = 1000
    override_code: str | None = "ADMIN123"


DEFAULT_POLICY = DiscountPolicy()


@dataclass(frozen=True)
class DiscountResult:
    amount_cents: int
    authorized: bool
    # The ceiling applies to this actor/discount (independent of any override)
    requires_override: bool = False
    override_used: bool = False


def policy_from_config(config) -> DiscountPolicy:
    """Build the policy from a Flask config mapping."""
    return DiscountPolicy(
        cashier_max_percent_bps=int(config.get("CASHIER_MAX_DISCOUNT_BPS", 1000)),
        override_code=config.get("DISCOUNT_OVERRIDE_CODE") or None,
    )


def compute_discount_amount(subtotal_cents: int, discount: Discount) -> int:
    """Discount amount in cents, clamped to [0, subtotal]."""
    if discount.mode == DISCOUNT_PERCENT:
        raw = (subtotal_cents * discount.value * 2 + BPS_PER_WHOLE) // (2 * BPS_PER_WHOLE)
    elif discount.mode == DISCOUNT_FLAT:
        raw = discount.value
    else:
        raise DiscountConfigurationError(f"Invalid discount mode: {discount.mode!r}")

    if subtotal_cents <= 0:
        return 0
    return max(0, min(raw, subtotal_cents))


def exceeds_cashier_ceiling(discount: Discount, actor_role: str, policy: DiscountPolicy = DEFAULT_POLICY) -> bool:
    return (
        normalize_role(actor_role) == ROLE_CASHIER
        and discount.mode == DISCOUNT_PERCENT
        and discount.value > policy.cashier_max_percent_bps
    )


def verify_override_code(code: str | None, policy: DiscountPolicy = DEFAULT_POLICY) -> bool:
    """
    Compare a supplied override code with the configured shared secret.

    NOTE: A static bypass code is a weak control (no hashing, no expiry).
    An empty configured code disables overrides entirely.
    """
    if not code or not policy.override_code:
        return False
    return secrets.compare_digest(code.encode("utf-8"), policy.override_code.encode("utf-8"))


def compute_discount(
    subtotal_cents: int,
    discount: Discount,
    actor_role: str,
    *,
    override_code: str | None = None,
    policy: DiscountPolicy = DEFAULT_POLICY,
) -> DiscountResult:
    """
    Compute the discount amount and whether the actor may apply it.

    Args:
        subtotal_cents: Cart subtotal (>= 0)
        discount: Mode and value
        actor_role: Role of the user applying the discount (any case)
        override_code: Code typed in by the cashier, if any
        policy: Ceiling and override secret

    Returns:
        DiscountResult. authorized=False blocks purchase completion; the
        amount is still reported so the UI can show what was requested.

    Raises:
        DiscountConfigurationError: Unknown discount mode
        ValidationError: Unknown role
    """
    amount = compute_discount_amount(subtotal_cents, discount)

    if not exceeds_cashier_ceiling(discount, actor_role, policy):
        return DiscountResult(amount_cents=amount, authorized=True)

    override_ok = verify_override_code(override_code, policy)
    return DiscountResult(
        amount_cents=amount,
        authorized=override_ok,
        requires_override=True,
        override_used=override_ok,
    )


def _percent_to_bps(value) -> int:
    try:
        percent = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("discount value must be a number")
    if not percent.is_finite():
        raise ValidationError("discount value must be a number")
    return int((percent * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def discount_from_payload(data: dict | None) -> Discount:
    """
    Parse a request discount.

    Payload: {"mode": "percent", "value": 12.5} (percentage points) or
    {"mode": "flat", "value_cents": 2000}. Missing/empty -> no discount.
    Negative values are clamped to zero.
    """
    if not data:
        return NO_DISCOUNT
    if not isinstance(data, dict):
        raise ValidationError("discount must be an object")

    mode = data.get("mode") or DISCOUNT_FLAT
    if not isinstance(mode, str):
        raise ValidationError("discount mode must be a string")
    mode = mode.strip().lower()
    if mode not in VALID_DISCOUNT_MODES:
        raise ValidationError(f"Invalid discount mode: {mode}. Must be one of {VALID_DISCOUNT_MODES}")

    if mode == DISCOUNT_PERCENT:
        value = _percent_to_bps(data.get("value", 0) or 0)
    else:
        raw = data.get("value_cents", 0) or 0
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise ValidationError("value_cents must be an integer number of cents")
        value = raw

    return Discount(mode=mode, value=max(0, value))
