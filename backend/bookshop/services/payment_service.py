# Overview: Tender methods and split-payment validation.

"""
Split-Payment Validator

A sale is paid by one or more payment lines (method + amount). The sale may
only be completed when the lines add up EXACTLY to the post-discount total.

DESIGN PRINCIPLES:
- Integer cents everywhere, so exact equality is safe.
- Pure functions; the "complete purchase" action is gated on the result.
- Zero-amount lines are allowed and contribute nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..validation import ValidationError


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_MOBILE_MONEY = "mobile_money"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_MOBILE_MONEY,
    METHOD_BANK_TRANSFER,
    METHOD_OTHER,
]


@dataclass(frozen=True)
class PaymentLine:
    method: str
    amount_cents: int
    reference: str | None = None

    def __post_init__(self):
        if self.method not in VALID_PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {self.method}. Must be one of {VALID_PAYMENT_METHODS}")
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            raise ValidationError("amount_cents must be an integer number of cents")
        if self.amount_cents < 0:
            raise ValidationError("Payment amount must be >= 0")


@dataclass(frozen=True)
class PaymentValidation:
    valid: bool
    sum_cents: int
    total_cents: int
    errors: list[str] = field(default_factory=list)

    @property
    def remaining_cents(self) -> int:
        return self.total_cents - self.sum_cents


def payment_sum(payments: list[PaymentLine]) -> int:
    return sum(p.amount_cents for p in payments)


def validate_payments(payments: list[PaymentLine], total_cents: int) -> PaymentValidation:
    """
    valid <=> sum(amounts) == total AND total > 0 AND at least one line.

    Returns the sum alongside so callers can show "paid / remaining".
    """
    total_paid = payment_sum(payments)
    errors = []

    if not payments:
        errors.append("At least one payment line is required")
    if total_cents <= 0:
        errors.append("Total must be greater than zero")
    if total_paid != total_cents:
        errors.append(f"Payment total {total_paid} must match {total_cents}")

    return PaymentValidation(
        valid=not errors,
        sum_cents=total_paid,
        total_cents=total_cents,
        errors=errors,
    )


def payments_from_payload(rows) -> list[PaymentLine]:
    """Parse request payment lines: [{"method": "cash", "amount_cents": 12000, "reference": ""}]"""
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ValidationError("payments must be a list")

    lines = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"payments[{i}] must be an object")
        method = row.get("method") or ""
        reference = row.get("reference") or ""
        if not isinstance(method, str):
            raise ValidationError(f"payments[{i}].method must be a string")
        if not isinstance(reference, str):
            raise ValidationError(f"payments[{i}].reference must be a string")
        method = method.strip().lower()
        reference = reference.strip() or None
        try:
            lines.append(PaymentLine(
                method=method,
                amount_cents=row.get("amount_cents", 0),
                reference=reference,
            ))
        except ValidationError as exc:
            raise ValidationError(f"payments[{i}]: {exc}")
    return lines
