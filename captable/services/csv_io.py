"""
CSV formats: investor import, subscription import, cap table export and
the downloadable templates.

Parsing is pure (text in, parsed rows and row-numbered errors out); the
database side of an import lives in :mod:`captable.services.import_service`.

The delimiter is taken from the header line: a tab wins over a semicolon,
which wins over a comma.  Header names are matched case-insensitively.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from captable.core.exceptions import ValidationException
from captable.models.enums import Currency
from captable.schemas.imports import RowError
from captable.schemas.investor import InvestorCreate, InvestorView
from captable.schemas.subscription import SubscriptionCreate, SubscriptionView
from captable.services.reporting import total_allocated

INVESTOR_REQUIRED_HEADERS = ("name", "email", "wallet")
INVESTOR_RECOMMENDED_HEADERS = ("type", "kyc status")
SUBSCRIPTION_REQUIRED_HEADERS = ("investor name", "fiat amount", "currency", "subscription id")

EXPORT_COLUMNS = (
    "Investor ID",
    "Name",
    "Email",
    "Type",
    "Wallet",
    "KYC Status",
    "KYC Expiry",
    "Country",
    "Accreditation Status",
    "Subscription ID",
    "Subscription Amount",
    "Currency",
    "Subscription Status",
    "Subscription Date",
    "Token Type",
    "Token Allocation",
    "Allocation Status",
    "Distribution Status",
    "Distribution Date",
    "Transaction Hash",
    "Notes",
)
KYC_COLUMNS = frozenset({"KYC Status", "KYC Expiry", "Accreditation Status"})
WALLET_COLUMNS = frozenset({"Wallet"})
TRANSACTION_COLUMNS = frozenset({"Distribution Date", "Transaction Hash"})

INVESTOR_TEMPLATE = (
    ("Name", "Email", "Type", "Wallet", "KYC Status", "Country", "Last Updated"),
    (
        "John Doe",
        "john@example.com",
        "Individual",
        "0x1234567890abcdef1234567890abcdef12345678",
        "Verified",
        "US",
        "2023-01-01",
    ),
    (
        "Acme Corp",
        "finance@acme.com",
        "Institution",
        "0xabcdef1234567890abcdef1234567890abcdef12",
        "Pending",
        "UK",
        "2023-01-02",
    ),
)
SUBSCRIPTION_TEMPLATE_HEADERS = (
    "Investor Name",
    "FIAT Amount",
    "Currency",
    "Status",
    "Subscription ID",
    "Subscription Date",
    "Notes",
)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TOTAL_PREFIX = "TOTAL ("


# ── Reading ──


def detect_delimiter(text: str) -> str:
    first_line = text.split("\n", 1)[0]
    if "\t" in first_line:
        return "\t"
    if ";" in first_line:
        return ";"
    return ","


def _read_table(text: str) -> Tuple[List[str], Iterator[Tuple[int, Dict[str, str]]]]:
    """
    Split ``text`` into lower-cased headers and ``(line number, row)`` pairs.

    Blank lines are skipped.  Missing trailing cells read as ``""``.
    """
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise ValidationException("file", "CSV file is empty")

    reader = csv.reader(io.StringIO(text), delimiter=detect_delimiter(text))
    headers: List[str] = []
    for values in reader:
        if any(v.strip() for v in values):
            headers = [h.strip().lower() for h in values]
            break

    def rows() -> Iterator[Tuple[int, Dict[str, str]]]:
        for values in reader:
            if not any(v.strip() for v in values):
                continue
            cells = [v.strip() for v in values]
            cells += [""] * (len(headers) - len(cells))
            yield reader.line_num, dict(zip(headers, cells))

    return headers, rows()


def _require_headers(headers: Sequence[str], required: Sequence[str]) -> None:
    missing = [h for h in required if h not in headers]
    if missing:
        raise ValidationException("file", f"Missing required headers: {', '.join(missing)}")


def _row_errors(row: int, exc: ValidationError) -> List[RowError]:
    return [
        RowError(
            row=row,
            field=".".join(str(p) for p in err["loc"]) or None,
            message=err["msg"],
        )
        for err in exc.errors()
    ]


@dataclass
class ParsedInvestor:
    row: int
    investor: InvestorCreate


@dataclass
class ParsedSubscription:
    row: int
    investor_name: str
    subscription: SubscriptionCreate


@dataclass
class ParseResult:
    total_rows: int = 0
    investors: List[ParsedInvestor] = field(default_factory=list)
    subscriptions: List[ParsedSubscription] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duplicates: int = 0


def parse_investor_csv(text: str) -> ParseResult:
    """
    Parse an investor file.  Each row is validated through
    :class:`InvestorCreate`, the same schema the API uses.

    Invalid rows become :class:`RowError` entries; valid rows are kept.  A
    repeated email keeps the first row and warns.  The export's trailing
    ``TOTAL`` row is ignored.  Raises :class:`ValidationException` when a
    required header is missing.
    """
    headers, rows = _read_table(text)
    _require_headers(headers, INVESTOR_REQUIRED_HEADERS)

    result = ParseResult()
    missing_recommended = [h for h in INVESTOR_RECOMMENDED_HEADERS if h not in headers]
    if missing_recommended:
        result.warnings.append(f"Missing recommended headers: {', '.join(missing_recommended)}")

    first_row_for_email: Dict[str, int] = {}
    for row_no, raw in rows:
        if raw.get("name", "").startswith(_TOTAL_PREFIX) and not raw.get("email"):
            continue
        result.total_rows += 1

        data = {
            "name": raw.get("name", ""),
            "email": raw.get("email", ""),
            "wallet": raw.get("wallet", ""),
            "investor_type": raw.get("type") or None,
            "country": raw.get("country") or None,
            "investor_id": raw.get("investorid") or raw.get("investor id") or None,
        }
        if raw.get("kyc status"):
            data["kyc_status"] = raw["kyc status"]
        if raw.get("accreditation status"):
            data["accreditation_status"] = raw["accreditation status"]

        try:
            investor = InvestorCreate.model_validate(data)
        except ValidationError as exc:
            result.errors.extend(_row_errors(row_no, exc))
            continue

        email_key = investor.email.lower()
        if email_key in first_row_for_email:
            result.duplicates += 1
            result.warnings.append(
                f"Row {row_no}: duplicate email '{investor.email}' "
                f"(first seen on row {first_row_for_email[email_key]}), row skipped"
            )
            continue
        first_row_for_email[email_key] = row_no
        result.investors.append(ParsedInvestor(row_no, investor))
    return result


def parse_subscription_csv(text: str, today: Optional[date] = None) -> ParseResult:
    """
    Parse a subscription file.

    Currency is upper-cased and limited to USD/EUR/GBP.  Status
    ``confirmed`` (any case) creates a confirmed subscription; anything
    else is unconfirmed.  Dates must be ``YYYY-MM-DD`` and default to
    ``today``.  A blank subscription id is generated on import.
    """
    headers, rows = _read_table(text)
    _require_headers(headers, SUBSCRIPTION_REQUIRED_HEADERS)
    today = today or date.today()

    result = ParseResult()
    for row_no, raw in rows:
        result.total_rows += 1
        investor_name = raw.get("investor name", "")
        if not investor_name:
            result.errors.append(
                RowError(row=row_no, field="investor name", message="Investor name is required")
            )
            continue

        amount_text = raw.get("fiat amount", "").replace(",", "")
        try:
            amount = Decimal(amount_text)
        except InvalidOperation:
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            result.errors.append(
                RowError(
                    row=row_no,
                    field="fiat amount",
                    message=f"Invalid fiat amount '{raw.get('fiat amount', '')}'; must be a positive number",
                )
            )
            continue

        currency_text = raw.get("currency", "").upper()
        if currency_text not in {c.value for c in Currency}:
            result.errors.append(
                RowError(
                    row=row_no,
                    field="currency",
                    message=f"Invalid currency '{raw.get('currency', '')}'; must be USD, EUR, or GBP",
                )
            )
            continue

        date_text = raw.get("subscription date", "")
        if date_text:
            try:
                if not _DATE_PATTERN.match(date_text):
                    raise ValueError(date_text)
                subscription_date = date.fromisoformat(date_text)
            except ValueError:
                result.errors.append(
                    RowError(
                        row=row_no,
                        field="subscription date",
                        message=f"Invalid date '{date_text}'; expected YYYY-MM-DD",
                    )
                )
                continue
        else:
            subscription_date = today

        code = raw.get("subscription id") or None
        if code is None:
            result.warnings.append(
                f"Row {row_no}: missing subscription id for '{investor_name}'; one will be generated"
            )

        try:
            subscription = SubscriptionCreate(
                subscription_id=code,
                fiat_amount=amount,
                currency=Currency(currency_text),
                notes=raw.get("notes") or None,
                subscription_date=subscription_date,
                confirmed=raw.get("status", "").lower() == "confirmed",
            )
        except ValidationError as exc:
            result.errors.extend(_row_errors(row_no, exc))
            continue
        result.subscriptions.append(ParsedSubscription(row_no, investor_name, subscription))
    return result


# ── Writing ──


def _number(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return format(Decimal(value).normalize(), "f")


def _day(value) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def export_columns(
    include_kyc: bool = True, include_wallets: bool = True, include_transactions: bool = True
) -> List[str]:
    excluded = set()
    if not include_kyc:
        excluded |= KYC_COLUMNS
    if not include_wallets:
        excluded |= WALLET_COLUMNS
    if not include_transactions:
        excluded |= TRANSACTION_COLUMNS
    return [c for c in EXPORT_COLUMNS if c not in excluded]


def _investor_cells(inv: InvestorView) -> Dict[str, str]:
    return {
        "Investor ID": inv.investor_id,
        "Name": inv.name,
        "Email": inv.email,
        "Type": inv.investor_type.value,
        "Wallet": inv.wallet,
        "KYC Status": inv.kyc_status.value,
        "KYC Expiry": _day(inv.kyc_expiry_date),
        "Country": inv.country or "",
        "Accreditation Status": (
            inv.accreditation_status.value if inv.accreditation_status else ""
        ),
    }


def _subscription_cells(sub: SubscriptionView) -> Dict[str, str]:
    return {
        "Subscription ID": sub.subscription_id,
        "Subscription Amount": _number(sub.fiat_amount),
        "Currency": sub.currency.value,
        "Subscription Status": "Confirmed" if sub.confirmed else "Unconfirmed",
        "Subscription Date": _day(sub.subscription_date),
        "Token Type": sub.token_type.value if sub.token_type else "",
        "Token Allocation": _number(sub.token_allocation),
        "Allocation Status": "Allocated" if sub.allocated else "Unallocated",
        "Distribution Status": "Distributed" if sub.distributed else "Pending",
        "Distribution Date": _day(sub.distribution_date),
        "Transaction Hash": sub.distribution_tx_hash or "",
        "Notes": sub.notes or "",
    }


def export_cap_table_csv(
    investors: Sequence[InvestorView],
    include_kyc: bool = True,
    include_wallets: bool = True,
    include_transactions: bool = True,
) -> str:
    """
    One row per subscription (a blank-subscription row for investors with
    none), then a ``TOTAL (<n> investors, <m> subscriptions)`` row carrying
    the token allocation sum.  Every cell is quoted.
    """
    columns = export_columns(include_kyc, include_wallets, include_transactions)
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer,
        fieldnames=columns,
        quoting=csv.QUOTE_ALL,
        extrasaction="ignore",
        restval="",
        lineterminator="\n",
    )
    writer.writeheader()

    subscription_count = 0
    for inv in investors:
        base = _investor_cells(inv)
        if not inv.subscriptions:
            writer.writerow(base)
            continue
        for sub in inv.subscriptions:
            writer.writerow({**base, **_subscription_cells(sub)})
            subscription_count += 1

    writer.writerow(
        {
            "Name": f"TOTAL ({len(investors)} investors, {subscription_count} subscriptions)",
            "Token Allocation": _number(total_allocated(investors)),
        }
    )
    return buffer.getvalue()


def _write_rows(rows: Sequence[Sequence[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def investor_template() -> str:
    return _write_rows(INVESTOR_TEMPLATE)


def subscription_template(today: Optional[date] = None) -> str:
    day = (today or date.today()).isoformat()
    return _write_rows(
        (
            SUBSCRIPTION_TEMPLATE_HEADERS,
            ("John Smith", "10000", "USD", "Confirmed", "SUB-001", day, "Initial investment"),
            ("Acme Capital", "25000", "EUR", "Unconfirmed", "SUB-002", day, "Pending wire transfer"),
            ("Jane Doe", "15000", "GBP", "Confirmed", "SUB-003", day, "Second round"),
        )
    )
