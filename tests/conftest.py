"""
Shared pytest fixtures for unit tests.

All tests run with ``USE_SQLITE=true`` and mocked dependencies so that
no real database or network I/O is needed.  The gateway tests in
``test_gateway.py`` use the in-memory SQLite engine directly.
"""

import os

os.environ.setdefault("USE_SQLITE", "true")

import uuid  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import List, Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from captable.core.cache import TTLCache  # noqa: E402
from captable.models.allocation import TokenAllocation  # noqa: E402
from captable.models.cap_table import CapTable  # noqa: E402
from captable.models.enums import (  # noqa: E402
    Currency,
    InvestorType,
    KycStatus,
    SubscriptionStatus,
    TokenType,
)
from captable.models.investor import Investor  # noqa: E402
from captable.models.project import Project  # noqa: E402
from captable.models.subscription import Subscription  # noqa: E402
from captable.schemas.investor import InvestorView  # noqa: E402
from captable.schemas.subscription import SubscriptionView  # noqa: E402

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers — create domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

PROJECT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
CAP_TABLE_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
INVESTOR_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
SUBSCRIPTION_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")
ALLOCATION_ID = uuid.UUID("55555555-5555-5555-5555-555555555555")
PROJECT_ID_2 = uuid.UUID("66666666-6666-6666-6666-666666666666")
CAP_TABLE_ID_2 = uuid.UUID("77777777-7777-7777-7777-777777777777")

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
WALLET_2 = "0xabcdef1234567890abcdef1234567890abcdef12"
TX_HASH = "0x" + "ab" * 32


def make_project(*, id: uuid.UUID = PROJECT_ID, name: str = "Main Project") -> Project:
    now = datetime.now(timezone.utc)
    return Project(id=id, name=name, description=None, created_at=now, updated_at=now)


def make_cap_table(
    *,
    id: uuid.UUID = CAP_TABLE_ID,
    project_id: uuid.UUID = PROJECT_ID,
    name: str = "Main Cap Table",
) -> CapTable:
    now = datetime.now(timezone.utc)
    return CapTable(
        id=id, project_id=project_id, name=name, description=None, created_at=now, updated_at=now
    )


def make_investor(
    *,
    id: uuid.UUID = INVESTOR_ID,
    investor_id: str = "INV-0001",
    name: str = "John Doe",
    email: str = "john@example.com",
    investor_type: InvestorType = InvestorType.INDIVIDUAL,
    wallet: str = WALLET,
    kyc_status: KycStatus = KycStatus.PENDING,
    kyc_expiry_date: Optional[datetime] = None,
) -> Investor:
    """Create an Investor domain object with sensible test defaults."""
    now = datetime.now(timezone.utc)
    return Investor(
        id=id,
        investor_id=investor_id,
        name=name,
        email=email,
        investor_type=investor_type,
        wallet=wallet,
        kyc_status=kyc_status,
        kyc_expiry_date=kyc_expiry_date,
        created_at=now,
        updated_at=now,
    )


def make_subscription(
    *,
    id: uuid.UUID = SUBSCRIPTION_ID,
    subscription_id: str = "SUB-001",
    investor_id: uuid.UUID = INVESTOR_ID,
    fiat_amount: Decimal = Decimal("10000.00"),
    currency: Currency = Currency.USD,
    status: SubscriptionStatus = SubscriptionStatus.PENDING,
    subscription_date: date = date(2024, 3, 15),
) -> Subscription:
    now = datetime.now(timezone.utc)
    return Subscription(
        id=id,
        subscription_id=subscription_id,
        investor_id=investor_id,
        fiat_amount=fiat_amount,
        currency=currency,
        status=status,
        subscription_date=subscription_date,
        created_at=now,
        updated_at=now,
    )


def make_allocation(
    *,
    id: uuid.UUID = ALLOCATION_ID,
    subscription_id: uuid.UUID = SUBSCRIPTION_ID,
    token_type: TokenType = TokenType.ERC20,
    token_amount: Decimal = Decimal("1000"),
    distributed: bool = False,
) -> TokenAllocation:
    return TokenAllocation(
        id=id,
        subscription_id=subscription_id,
        token_type=token_type,
        token_amount=token_amount,
        distributed=distributed,
        distribution_date=datetime.now(timezone.utc) if distributed else None,
        distribution_tx_hash=TX_HASH if distributed else None,
    )


def make_subscription_view(
    *,
    fiat_amount: str = "10000",
    status: SubscriptionStatus = SubscriptionStatus.PENDING,
    token_type: Optional[TokenType] = None,
    token_amount: Optional[str] = None,
    subscription_id: str = "SUB-001",
    investor_id: uuid.UUID = INVESTOR_ID,
) -> SubscriptionView:
    """A subscription view in ``status``; allocated states get an allocation."""
    subscription = make_subscription(
        id=uuid.uuid4(),
        subscription_id=subscription_id,
        investor_id=investor_id,
        fiat_amount=Decimal(fiat_amount),
        status=status,
    )
    allocation = None
    if status in (SubscriptionStatus.ALLOCATED, SubscriptionStatus.DISTRIBUTED):
        allocation = make_allocation(
            id=uuid.uuid4(),
            subscription_id=subscription.id,
            token_type=token_type or TokenType.ERC20,
            token_amount=Decimal(token_amount or "1000"),
            distributed=status == SubscriptionStatus.DISTRIBUTED,
        )
    return SubscriptionView.from_record(subscription, allocation)


def make_investor_view(
    *,
    id: Optional[uuid.UUID] = None,
    name: str = "John Doe",
    email: str = "john@example.com",
    investor_type: InvestorType = InvestorType.INDIVIDUAL,
    kyc_status: KycStatus = KycStatus.PENDING,
    wallet: str = WALLET,
    subscriptions: Optional[List[SubscriptionView]] = None,
) -> InvestorView:
    now = datetime.now(timezone.utc)
    return InvestorView(
        id=id or uuid.uuid4(),
        investor_id=f"INV-{name.replace(' ', '-').upper()}",
        name=name,
        email=email,
        investor_type=investor_type,
        wallet=wallet,
        kyc_status=kyc_status,
        created_at=now,
        updated_at=now,
        subscriptions=subscriptions or [],
    )


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    session.merge = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture()
def test_cache():
    """A fresh TTL cache instance for test isolation."""
    return TTLCache(ttl=30.0, max_size=100, enabled=True)


@pytest.fixture()
def disabled_cache():
    """A disabled TTL cache — all operations are no-ops."""
    return TTLCache(ttl=30.0, max_size=100, enabled=False)


@pytest.fixture(autouse=True)
def _clear_global_cache():
    """Clear the global cache before and after each test."""
    from captable.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def _reset_circuit_breaker():
    from captable.core.resilience import db_circuit_breaker

    db_circuit_breaker.reset()
    yield
    db_circuit_breaker.reset()
