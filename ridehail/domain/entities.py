"""
Domain rules of the ride lifecycle, free of storage and transport.

Patterns used
-------------
- **State Pattern** via ``check_transition``: every status change is validated
  against ``RIDE_TRANSITIONS`` before the conditional write is issued.
- ``CancellationQuote`` encapsulates the fee / refund policy.
- ``otp_matches`` is the tolerant pickup-code comparison.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from .enums import OPEN_STATUSES, RIDE_TRANSITIONS, RideStatus
from .errors import InvalidTransition


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CancellationQuote:
    fee: int
    refund: int


@dataclass(frozen=True)
class RideParties:
    """Who may act on a ride; resolved from the stored row."""

    customer_id: int
    driver_id: Optional[int] = None
    sub_driver_id: Optional[int] = None

    def is_operator(self, user_id: Optional[int]) -> bool:
        """True for the assigned driver or their active sub-driver."""
        if user_id is None:
            return False
        return user_id in (self.driver_id, self.sub_driver_id)

    def is_customer(self, user_id: Optional[int]) -> bool:
        return user_id is not None and user_id == self.customer_id


# ── Rules ─────────────────────────────────────────────────────────────


def check_transition(current: RideStatus, new_status: RideStatus) -> None:
    """Raise ``InvalidTransition`` unless *current* -> *new_status* is legal."""
    allowed = RIDE_TRANSITIONS.get(current, set())
    if new_status not in allowed:
        raise InvalidTransition(
            f"Cannot transition from {current.value} to {new_status.value}"
        )


def quote_cancellation(
    status: RideStatus, final_amount: int, fee_rate: float, fee_cap: int
) -> CancellationQuote:
    """
    No fee before a driver accepted; afterwards ``min(rate x fare, cap)``.
    The refund is the fare minus the fee, never negative.
    """
    if status in OPEN_STATUSES:
        fee = 0
    else:
        fee = min(round(final_amount * fee_rate), fee_cap)
    return CancellationQuote(fee=fee, refund=max(0, final_amount - fee))


def normalise_otp(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def otp_matches(stored: object, entered: object) -> bool:
    expected = normalise_otp(stored)
    return bool(expected) and expected == normalise_otp(entered)


def generate_otp(length: int = 4) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))
