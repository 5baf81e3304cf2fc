"""
Seed script — populates the database with sample data for development / demo.

Run when the database is accessible:
    python -m captable.seed

Creates a project with one cap table, five investors and subscriptions in
every lifecycle state (pending, confirmed, allocated, distributed).  The
script is idempotent: it checks for existing data before inserting.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlmodel import SQLModel

import captable.models  # noqa: F401
from captable.db.session import AsyncSessionLocal, engine
from captable.models.allocation import TokenAllocation
from captable.models.cap_table import CapTable, CapTableInvestor
from captable.models.enums import (
    AccreditationStatus,
    Currency,
    InvestorType,
    KycStatus,
    SubscriptionStatus,
    TokenType,
)
from captable.models.investor import Investor
from captable.models.project import Project
from captable.models.subscription import Subscription

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

NOW = datetime.now(timezone.utc)

PROJECT_ID = uuid.UUID("550e8400-e29b-41d4-a716-446655440000")
CAP_TABLE_ID = uuid.UUID("660e8400-e29b-41d4-a716-446655440001")

# ── Sample data ──

PROJECT = Project(
    id=PROJECT_ID,
    name="Demo Token Offering",
    description="Sample project created by the seed script",
)

CAP_TABLE = CapTable(
    id=CAP_TABLE_ID,
    project_id=PROJECT_ID,
    name="Series A",
    description="Sample cap table",
)

INVESTORS = [
    Investor(
        id=uuid.UUID("770e8400-e29b-41d4-a716-446655440002"),
        investor_id="INV-0001",
        name="John Doe",
        email="john@example.com",
        investor_type=InvestorType.INDIVIDUAL,
        wallet="0x1234567890abcdef1234567890abcdef12345678",
        kyc_status=KycStatus.VERIFIED,
        kyc_expiry_date=NOW + timedelta(days=180),
        country="US",
        accreditation_status=AccreditationStatus.ACCREDITED,
    ),
    Investor(
        id=uuid.UUID("880e8400-e29b-41d4-a716-446655440003"),
        investor_id="INV-0002",
        name="Acme Corp",
        email="finance@acme.com",
        investor_type=InvestorType.INSTITUTION,
        wallet="0xabcdef1234567890abcdef1234567890abcdef12",
        kyc_status=KycStatus.PENDING,
        country="UK",
    ),
    Investor(
        id=uuid.UUID("330e8400-e29b-41d4-a716-446655440030"),
        investor_id="INV-0003",
        name="Smith Family Office",
        email="invest@smithfo.com",
        investor_type=InvestorType.FAMILY_OFFICES,
        wallet="0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
        kyc_status=KycStatus.VERIFIED,
        kyc_expiry_date=NOW + timedelta(days=90),
        country="CH",
        accreditation_status=AccreditationStatus.ACCREDITED,
    ),
    Investor(
        id=uuid.UUID("440e8400-e29b-41d4-a716-446655440040"),
        investor_id="INV-0004",
        name="Jane Doe",
        email="jane.doe@example.com",
        investor_type=InvestorType.MASS_AFFLUENT,
        wallet="0x9f8e7d6c5b4a39281706f5e4d3c2b1a098765432",
        kyc_status=KycStatus.EXPIRED,
        country="DE",
    ),
    Investor(
        id=uuid.UUID("550e8400-e29b-41d4-a716-446655440050"),
        investor_id="INV-0005",
        name="Nordic Pension Fund",
        email="allocations@nordicpension.example",
        investor_type=InvestorType.PENSION_FUNDS,
        wallet="0x00112233445566778899aabbccddeeff00112233",
        kyc_status=KycStatus.NOT_STARTED,
        country="NO",
    ),
]

SUBSCRIPTIONS = [
    Subscription(
        id=uuid.UUID("990e8400-e29b-41d4-a716-446655440004"),
        subscription_id="SUB-001",
        investor_id=INVESTORS[0].id,
        fiat_amount=Decimal("10000.00"),
        currency=Currency.USD,
        status=SubscriptionStatus.DISTRIBUTED,
        subscription_date=date(2024, 3, 15),
        notes="Initial investment",
    ),
    Subscription(
        id=uuid.UUID("aa0e8400-e29b-41d4-a716-446655440005"),
        subscription_id="SUB-002",
        investor_id=INVESTORS[1].id,
        fiat_amount=Decimal("25000.00"),
        currency=Currency.EUR,
        status=SubscriptionStatus.PENDING,
        subscription_date=date(2024, 4, 2),
        notes="Pending wire transfer",
    ),
    Subscription(
        id=uuid.UUID("bb0e8400-e29b-41d4-a716-446655440006"),
        subscription_id="SUB-003",
        investor_id=INVESTORS[2].id,
        fiat_amount=Decimal("15000.00"),
        currency=Currency.GBP,
        status=SubscriptionStatus.ALLOCATED,
        subscription_date=date(2024, 5, 20),
    ),
    Subscription(
        id=uuid.UUID("cc0e8400-e29b-41d4-a716-446655440007"),
        subscription_id="SUB-004",
        investor_id=INVESTORS[0].id,
        fiat_amount=Decimal("5000.00"),
        currency=Currency.USD,
        status=SubscriptionStatus.CONFIRMED,
        subscription_date=date(2025, 1, 10),
        notes="Second round",
    ),
]

ALLOCATIONS = [
    TokenAllocation(
        id=uuid.UUID("dd0e8400-e29b-41d4-a716-446655440008"),
        subscription_id=SUBSCRIPTIONS[0].id,
        token_type=TokenType.ERC20,
        token_amount=Decimal("1000"),
        distributed=True,
        distribution_date=datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc),
        distribution_tx_hash="0x" + "ab" * 32,
    ),
    TokenAllocation(
        id=uuid.UUID("ee0e8400-e29b-41d4-a716-446655440009"),
        subscription_id=SUBSCRIPTIONS[2].id,
        token_type=TokenType.ERC1400,
        token_amount=Decimal("1500"),
    ),
]


async def seed() -> None:
    """Create tables and insert sample data if the database is empty."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Investor).limit(1))
        if result.scalars().first() is not None:
            logger.info("Database already contains investors — skipping seed.")
            return

        if await session.get(Project, PROJECT_ID) is None:
            session.add(PROJECT)
            session.add(CAP_TABLE)
        for investor in INVESTORS:
            session.add(investor)
        await session.commit()

        # Links, subscriptions and allocations depend on the rows above
        for investor in INVESTORS:
            session.add(CapTableInvestor(cap_table_id=CAP_TABLE_ID, investor_id=investor.id))
        for subscription in SUBSCRIPTIONS:
            session.add(subscription)
        await session.commit()

        for allocation in ALLOCATIONS:
            session.add(allocation)
        await session.commit()

        logger.info(
            "Seeded 1 project, 1 cap table, %d investors, %d subscriptions, %d allocations",
            len(INVESTORS),
            len(SUBSCRIPTIONS),
            len(ALLOCATIONS),
        )


if __name__ == "__main__":
    asyncio.run(seed())
