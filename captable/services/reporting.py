"""
Dashboard aggregates over a collection of investor views.

Every function here is pure and deterministic: same input, same output, no
I/O.  Callers load the investors (``InvestorService.list_cap_table_investors``)
and pass the views in.
"""

from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set
from uuid import UUID

from captable.models.enums import (
    KycStatus,
    SubscriptionStatus,
    TokenType,
    category_names,
    investor_type_category,
)
from captable.schemas.investor import InvestorView
from captable.schemas.reporting import DashboardSummary, KycCounts, TokenTypeSummary

# Token type assumed for confirmed subscriptions that have no allocation yet
DEFAULT_TOKEN_TYPE = TokenType.ERC20

_VERIFIED = {KycStatus.VERIFIED, KycStatus.APPROVED}
_EXPIRED = {KycStatus.EXPIRED, KycStatus.FAILED}


def percent(part: Decimal, whole: Decimal) -> int:
    """``part / whole`` as a whole percentage, rounded half-up; 0 when ``whole`` is 0."""
    if not whole:
        return 0
    ratio = Decimal(part) * 100 / Decimal(whole)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def total_allocated(investors: Iterable[InvestorView]) -> Decimal:
    """Sum of token allocations over every subscription."""
    return sum(
        (s.token_allocation or Decimal("0") for inv in investors for s in inv.subscriptions),
        Decimal("0"),
    )


def total_distributed(investors: Iterable[InvestorView]) -> Decimal:
    """Sum of token allocations over distributed subscriptions."""
    return sum(
        (
            s.token_allocation or Decimal("0")
            for inv in investors
            for s in inv.subscriptions
            if s.distributed
        ),
        Decimal("0"),
    )


def distribution_progress(investors: Sequence[InvestorView]) -> int:
    """Distributed share of allocated tokens, as a half-up rounded percentage."""
    return percent(total_distributed(investors), total_allocated(investors))


def kyc_counts(investors: Iterable[InvestorView]) -> KycCounts:
    counts = KycCounts()
    for inv in investors:
        if inv.kyc_status in _VERIFIED:
            counts.verified += 1
        elif inv.kyc_status in _EXPIRED:
            counts.expired += 1
        elif inv.kyc_status == KycStatus.PENDING:
            counts.pending += 1
        else:
            counts.not_started += 1
    return counts


def type_category_counts(investors: Iterable[InvestorView]) -> Dict[str, int]:
    """Investor count per type category.  Every category is present, even at 0."""
    counts: Dict[str, int] = {name: 0 for name in category_names()}
    tally = Counter(investor_type_category(inv.investor_type) for inv in investors)
    for name, count in tally.items():
        counts[name] = counts.get(name, 0) + count
    return counts


def token_type_summary(
    investors: Iterable[InvestorView],
    selection: Optional[Iterable[UUID]] = None,
) -> Dict[str, TokenTypeSummary]:
    """
    Per token type: fiat amount of confirmed subscriptions still to mint,
    and whether any subscription of that type is allocated.

    ``selection`` restricts the summary to those investor ids; ``None``
    means every investor.  Subscriptions without a token type count under
    ERC-20.
    """
    selected: Optional[Set[UUID]] = None if selection is None else set(selection)
    summary: Dict[str, TokenTypeSummary] = {}
    for inv in investors:
        if selected is not None and inv.id not in selected:
            continue
        for sub in inv.subscriptions:
            token_type = (sub.token_type or DEFAULT_TOKEN_TYPE).value
            entry = summary.setdefault(token_type, TokenTypeSummary())
            if sub.confirmed:
                entry.to_mint += sub.fiat_amount
            if sub.allocated:
                entry.minted = True
    return summary


def dashboard_summary(investors: Sequence[InvestorView]) -> DashboardSummary:
    return DashboardSummary(
        investor_count=len(investors),
        subscription_count=sum(len(inv.subscriptions) for inv in investors),
        total_allocated=total_allocated(investors),
        total_distributed=total_distributed(investors),
        distribution_progress=distribution_progress(investors),
        kyc=kyc_counts(investors),
        type_categories=type_category_counts(investors),
        token_types=token_type_summary(investors),
    )


# ── Filtering ──

# Filter values accepted for subscription and token status
CONFIRMED = "Confirmed"
UNCONFIRMED = "Unconfirmed"
ALLOCATED = "Allocated"
UNALLOCATED = "Unallocated"
DISTRIBUTED = "Distributed"
UNDISTRIBUTED = "Undistributed"


def _matches_search(inv: InvestorView, needle: str) -> bool:
    haystack = [inv.name, inv.email, inv.wallet]
    haystack.extend(s.token_type.value for s in inv.subscriptions if s.token_type)
    return any(needle in value.lower() for value in haystack)


def _subscription_flags(inv: InvestorView) -> Set[str]:
    flags: Set[str] = set()
    for sub in inv.subscriptions:
        flags.add(CONFIRMED if sub.confirmed else UNCONFIRMED)
        flags.add(ALLOCATED if sub.allocated else UNALLOCATED)
        flags.add(DISTRIBUTED if sub.status == SubscriptionStatus.DISTRIBUTED else UNDISTRIBUTED)
    return flags


def filter_investors(
    investors: Iterable[InvestorView],
    search: Optional[str] = None,
    types: Optional[Iterable[str]] = None,
    kyc_statuses: Optional[Iterable[str]] = None,
    subscription_statuses: Optional[Iterable[str]] = None,
    token_statuses: Optional[Iterable[str]] = None,
) -> List[InvestorView]:
    """
    Apply the cap table filter: free-text search over name, email, wallet
    and token type, then membership filters.  An empty or ``None`` filter
    matches everything.  An investor matches a status filter when any of
    its subscriptions does.
    """
    needle = (search or "").strip().lower()
    type_set = {t.lower() for t in types or ()}
    kyc_set = {k.lower() for k in kyc_statuses or ()}
    sub_set = set(subscription_statuses or ())
    token_set = set(token_statuses or ())

    matched = []
    for inv in investors:
        if needle and not _matches_search(inv, needle):
            continue
        if type_set and inv.investor_type.value.lower() not in type_set:
            continue
        if kyc_set and inv.kyc_status.value.lower() not in kyc_set:
            continue
        flags = _subscription_flags(inv) if (sub_set or token_set) else set()
        if sub_set and not flags & sub_set:
            continue
        if token_set and not flags & token_set:
            continue
        matched.append(inv)
    return matched
