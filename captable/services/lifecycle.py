"""
Subscription lifecycle rules.

A subscription moves forward through::

    Pending → Confirmed → Allocated → Distributed

with one backward edge, ``Allocated → Confirmed`` (removing an allocation
that has not been distributed).  Nothing leaves ``Distributed``.

Each position is a frozen variant; the ``Allocated`` and ``Distributed``
variants carry the allocation data, so a distributed subscription without a
token amount cannot be represented.  Transition functions are pure: they
take a state and return the next one or raise a domain exception.  The
services persist the result (``status`` column plus the allocation row).
"""

import math
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import ClassVar, Optional, Union
from uuid import UUID

from captable.core.exceptions import ConflictException, ValidationException
from captable.models.allocation import TOKEN_AMOUNT_DIGITS, TOKEN_AMOUNT_PLACES, TokenAllocation
from captable.models.enums import SubscriptionStatus, TokenType
from captable.models.subscription import Subscription


# ── State variants ──


@dataclass(frozen=True)
class Pending:
    status: ClassVar[SubscriptionStatus] = SubscriptionStatus.PENDING


@dataclass(frozen=True)
class Confirmed:
    status: ClassVar[SubscriptionStatus] = SubscriptionStatus.CONFIRMED


@dataclass(frozen=True)
class Allocated:
    token_type: TokenType
    amount: Decimal
    allocation_id: UUID

    status: ClassVar[SubscriptionStatus] = SubscriptionStatus.ALLOCATED


@dataclass(frozen=True)
class Distributed:
    token_type: TokenType
    amount: Decimal
    allocation_id: UUID
    tx_hash: str
    distributed_at: datetime

    status: ClassVar[SubscriptionStatus] = SubscriptionStatus.DISTRIBUTED


SubscriptionState = Union[Pending, Confirmed, Allocated, Distributed]


# ── Validation ──


def validate_token_amount(value: object) -> Decimal:
    """
    Coerce ``value`` to a finite, positive ``Decimal`` that fits the
    ``token_amount`` column.

    Raises :class:`ValidationException` naming ``token_amount`` otherwise.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationException("token_amount", "Token amount must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationException("token_amount", "Token amount must be a finite number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationException("token_amount", f"'{value}' is not a valid token amount")
    if not amount.is_finite():
        raise ValidationException("token_amount", "Token amount must be a finite number")
    if amount <= 0:
        raise ValidationException("token_amount", "Token amount must be greater than zero")

    _, digits, exponent = amount.as_tuple()
    digits = list(digits)
    while exponent < 0 and digits and digits[-1] == 0:
        digits.pop()
        exponent += 1
    places = max(0, -exponent)
    integer_digits = max(0, len(digits) + exponent)
    if places > TOKEN_AMOUNT_PLACES:
        raise ValidationException(
            "token_amount",
            f"Token amount allows at most {TOKEN_AMOUNT_PLACES} decimal places",
        )
    if integer_digits > TOKEN_AMOUNT_DIGITS - TOKEN_AMOUNT_PLACES:
        raise ValidationException(
            "token_amount",
            f"Token amount allows at most {TOKEN_AMOUNT_DIGITS - TOKEN_AMOUNT_PLACES} integer digits",
        )
    return amount


def validate_token_type(value: object) -> TokenType:
    try:
        return TokenType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in TokenType)
        raise ValidationException("token_type", f"Token type must be one of: {allowed}")


def generate_tx_hash() -> str:
    """Mock transaction hash: ``0x`` followed by 64 lowercase hex characters."""
    return "0x" + secrets.token_hex(32)


# ── Transitions ──


def confirm(state: SubscriptionState) -> SubscriptionState:
    """Pending → Confirmed.  Any already-confirmed state is returned unchanged."""
    if isinstance(state, Pending):
        return Confirmed()
    return state


def allocate(
    state: SubscriptionState,
    token_type: object,
    amount: object,
    allocation_id: UUID,
) -> Allocated:
    """Confirmed → Allocated.  Confirmation is required first."""
    checked_type = validate_token_type(token_type)
    checked_amount = validate_token_amount(amount)
    if isinstance(state, Pending):
        raise ConflictException(
            "Subscription must be confirmed before tokens can be allocated"
        )
    if isinstance(state, (Allocated, Distributed)):
        raise ConflictException("Subscription already has a token allocation")
    return Allocated(checked_type, checked_amount, allocation_id)


def remove_allocation(state: SubscriptionState) -> Confirmed:
    """Allocated → Confirmed.  Distributed allocations cannot be removed."""
    if isinstance(state, Distributed):
        raise ConflictException("A distributed allocation cannot be removed")
    if not isinstance(state, Allocated):
        raise ConflictException("Subscription has no token allocation to remove")
    return Confirmed()


def distribute(state: SubscriptionState, tx_hash: str, at: datetime) -> Distributed:
    """Allocated → Distributed."""
    if isinstance(state, Distributed):
        raise ConflictException("Tokens have already been distributed")
    if not isinstance(state, Allocated):
        raise ConflictException("Subscription has no token allocation to distribute")
    return Distributed(state.token_type, state.amount, state.allocation_id, tx_hash, at)


def ensure_deletable(state: SubscriptionState) -> None:
    if isinstance(state, Distributed):
        raise ConflictException("A subscription whose tokens were distributed cannot be deleted")


# ── Persistence mapping ──


def state_from_record(
    subscription: Subscription, allocation: Optional[TokenAllocation] = None
) -> SubscriptionState:
    """
    Rebuild the state variant from a stored subscription and its allocation.

    Raises :class:`ConflictException` when the stored row and allocation
    disagree (e.g. status ``Allocated`` with no allocation row).
    """
    status = subscription.status
    if status in (SubscriptionStatus.PENDING, SubscriptionStatus.CONFIRMED):
        if allocation is not None:
            raise ConflictException(
                f"Subscription {subscription.subscription_id} is {status.value} "
                f"but has a token allocation"
            )
        return Pending() if status == SubscriptionStatus.PENDING else Confirmed()

    if allocation is None:
        raise ConflictException(
            f"Subscription {subscription.subscription_id} is {status.value} "
            f"but has no token allocation"
        )
    if status == SubscriptionStatus.ALLOCATED:
        if allocation.distributed:
            raise ConflictException(
                f"Allocation {allocation.id} is distributed but its subscription is not"
            )
        return Allocated(allocation.token_type, allocation.token_amount, allocation.id)

    if not allocation.distributed or not allocation.distribution_tx_hash:
        raise ConflictException(
            f"Subscription {subscription.subscription_id} is Distributed "
            f"but its allocation has no distribution record"
        )
    return Distributed(
        allocation.token_type,
        allocation.token_amount,
        allocation.id,
        allocation.distribution_tx_hash,
        allocation.distribution_date,
    )
