"""
Enumerations shared by the table models, API schemas and CSV formats.

All enums parse case-insensitively (``"verified"`` → ``KycStatus.VERIFIED``)
so imported spreadsheets and hand-written API payloads do not need exact
capitalisation.
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class CaseInsensitiveEnum(str, Enum):
    """``str`` enum whose lookup ignores case and surrounding whitespace."""

    @classmethod
    def _missing_(cls, value: object) -> Optional["CaseInsensitiveEnum"]:
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None


class KycStatus(CaseInsensitiveEnum):
    VERIFIED = "Verified"
    EXPIRED = "Expired"
    PENDING = "Pending"
    NOT_STARTED = "Not Started"
    APPROVED = "Approved"
    FAILED = "Failed"


class AccreditationStatus(CaseInsensitiveEnum):
    ACCREDITED = "Accredited"
    NON_ACCREDITED = "Non-Accredited"
    PENDING = "Pending"


class Currency(CaseInsensitiveEnum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class TokenType(CaseInsensitiveEnum):
    ERC20 = "ERC-20"
    ERC721 = "ERC-721"
    ERC1155 = "ERC-1155"
    ERC1400 = "ERC-1400"
    ERC3525 = "ERC-3525"


class SubscriptionStatus(CaseInsensitiveEnum):
    """
    Persisted lifecycle position of a subscription.

    Pending → Confirmed → Allocated → Distributed.  The ``confirmed`` /
    ``allocated`` / ``distributed`` flags shown in views are derived from
    this single column.
    """

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    ALLOCATED = "Allocated"
    DISTRIBUTED = "Distributed"


class InvestorType(CaseInsensitiveEnum):
    """Investor classifications, grouped into categories by :data:`INVESTOR_TYPE_CATEGORIES`."""

    # Institutional
    PENSION_FUNDS = "Pension Funds"
    SOVEREIGN_WEALTH_FUNDS = "Sovereign Wealth Funds (SWFs)"
    INSURANCE_COMPANIES = "Insurance Companies"
    ENDOWMENTS_FOUNDATIONS = "Endowments & Foundations"
    ASSET_MANAGERS = "Asset Managers & Mutual Funds"
    HEDGE_FUNDS = "Hedge Funds"
    PRIVATE_EQUITY_VC = "Private Equity & Venture Capital Firms"
    FAMILY_OFFICES = "Family Offices"
    BANKS_INVESTMENT_FIRMS = "Banks & Investment Firms"
    # Retail
    HNWI = "High-Net-Worth Individuals (HNWIs)"
    MASS_AFFLUENT = "Mass Affluent Investors"
    # Corporate & strategic
    CORPORATES_CONGLOMERATES = "Corporates & Conglomerates"
    PRIVATE_COMPANIES = "Private Companies & Holdings"
    STRATEGIC_INVESTORS = "Strategic Investors"
    # Government & supranational (SWFs listed above)
    DEVELOPMENT_FINANCE = "Development Finance Institutions (DFIs)"
    GOVERNMENT_INVESTMENT = "Government Investment Vehicles"
    MULTILATERAL_INSTITUTIONS = "Multilateral Institutions"
    # Alternative & thematic
    REITS = "Real Estate Investment Trusts (REITs)"
    INFRASTRUCTURE = "Infrastructure Investors"
    COMMODITIES = "Commodities & Natural Resources Funds"
    DISTRESSED = "Distressed & Special Situations Investors"
    QUANTITATIVE = "Quantitative & Algorithmic Investors"
    # Tokenized & digital asset
    INSTITUTIONAL_CRYPTO = "Institutional Crypto Investors"
    # Legacy values kept for existing records and imports
    INDIVIDUAL = "Individual"
    INSTITUTION = "Institution"


OTHER_CATEGORY = "Other"

# Ordered; a type listed under two categories resolves to the first.
INVESTOR_TYPE_CATEGORIES: Tuple[Tuple[str, Tuple[InvestorType, ...]], ...] = (
    (
        "Institutional Investors",
        (
            InvestorType.PENSION_FUNDS,
            InvestorType.SOVEREIGN_WEALTH_FUNDS,
            InvestorType.INSURANCE_COMPANIES,
            InvestorType.ENDOWMENTS_FOUNDATIONS,
            InvestorType.ASSET_MANAGERS,
            InvestorType.HEDGE_FUNDS,
            InvestorType.PRIVATE_EQUITY_VC,
            InvestorType.FAMILY_OFFICES,
            InvestorType.BANKS_INVESTMENT_FIRMS,
            InvestorType.INSTITUTION,
        ),
    ),
    (
        "Retail Investors",
        (
            InvestorType.HNWI,
            InvestorType.MASS_AFFLUENT,
            InvestorType.INDIVIDUAL,
        ),
    ),
    (
        "Corporate & Strategic Investors",
        (
            InvestorType.CORPORATES_CONGLOMERATES,
            InvestorType.PRIVATE_COMPANIES,
            InvestorType.STRATEGIC_INVESTORS,
        ),
    ),
    (
        "Government & Supranational Investors",
        (
            InvestorType.SOVEREIGN_WEALTH_FUNDS,
            InvestorType.DEVELOPMENT_FINANCE,
            InvestorType.GOVERNMENT_INVESTMENT,
            InvestorType.MULTILATERAL_INSTITUTIONS,
        ),
    ),
    (
        "Alternative & Thematic Investors",
        (
            InvestorType.REITS,
            InvestorType.INFRASTRUCTURE,
            InvestorType.COMMODITIES,
            InvestorType.DISTRESSED,
            InvestorType.QUANTITATIVE,
        ),
    ),
    (
        "Tokenized & Digital Asset Investors",
        (InvestorType.INSTITUTIONAL_CRYPTO,),
    ),
)


def category_names() -> List[str]:
    return [name for name, _ in INVESTOR_TYPE_CATEGORIES]


def investor_type_category(investor_type: object) -> str:
    """
    Return the category name for ``investor_type``.

    Accepts an :class:`InvestorType` or any string (matched
    case-insensitively).  Unknown types fall into ``"Other"``.
    """
    try:
        member = InvestorType(investor_type)
    except ValueError:
        logger.debug("Investor type not categorised: %r", investor_type)
        return OTHER_CATEGORY
    for name, types in INVESTOR_TYPE_CATEGORIES:
        if member in types:
            return name
    return OTHER_CATEGORY
