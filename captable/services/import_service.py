"""
Bulk CSV import of investors and subscriptions.

Rows are written one at a time through the regular services, so every row
obeys the same rules as an API call.  An import is not atomic: rows created
before a failure stay created, and the result reports what happened to each
row.
"""

import logging
from typing import Optional
from uuid import UUID

from captable.core.events import INSERT, change_feed
from captable.core.exceptions import ConflictException, NotFoundException
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.schemas.imports import ImportResult, RowError
from captable.services import csv_io
from captable.services.investor_service import InvestorService
from captable.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class ImportService:
    def __init__(
        self,
        investor_service: InvestorService,
        subscription_service: SubscriptionService,
        investor_repo: InvestorRepository,
        cap_table_repo: CapTableRepository,
    ):
        self._investors = investor_service
        self._subscriptions = subscription_service
        self._investor_repo = investor_repo
        self._cap_table_repo = cap_table_repo

    async def _check_cap_table(self, cap_table_id: Optional[UUID]) -> None:
        if cap_table_id is not None and await self._cap_table_repo.get(cap_table_id) is None:
            raise NotFoundException("Cap table", cap_table_id)

    async def import_investors(
        self, text: str, cap_table_id: Optional[UUID] = None
    ) -> ImportResult:
        """
        Create the investors in an investor file.

        An email that already exists is skipped with a warning; when a cap
        table is given the existing investor is added to it if not yet a
        member.  New investors are added to ``cap_table_id`` as well.
        """
        await self._check_cap_table(cap_table_id)
        parsed = csv_io.parse_investor_csv(text)
        result = ImportResult(
            total_rows=parsed.total_rows,
            skipped=parsed.duplicates,
            failed=len({e.row for e in parsed.errors}),
            errors=list(parsed.errors),
            warnings=list(parsed.warnings),
        )

        for item in parsed.investors:
            existing = await self._investor_repo.get_by_email(item.investor.email)
            if existing is not None:
                result.skipped += 1
                result.warnings.append(
                    f"Row {item.row}: investor with email '{item.investor.email}' already exists, skipped"
                )
                if (
                    cap_table_id is not None
                    and await self._cap_table_repo.get_link(cap_table_id, existing.id) is None
                ):
                    await self._cap_table_repo.add_link(cap_table_id, existing.id)
                    change_feed.emit("cap_table_investors", INSERT, cap_table_id)
                continue

            payload = item.investor.model_copy(update={"cap_table_id": cap_table_id})
            try:
                await self._investors.create_investor(payload)
            except ConflictException as exc:
                result.failed += 1
                result.errors.append(RowError(row=item.row, field="email", message=exc.message))
                continue
            result.created += 1

        logger.info(
            "Investor import: %d rows, %d created, %d skipped, %d failed",
            result.total_rows,
            result.created,
            result.skipped,
            result.failed,
        )
        return result

    async def import_subscriptions(
        self, text: str, cap_table_id: Optional[UUID] = None
    ) -> ImportResult:
        """
        Create the subscriptions in a subscription file.

        Each row is matched to an investor by name (case-insensitive),
        restricted to the members of ``cap_table_id`` when given.  A name
        matching several investors uses the earliest created and warns.  An
        existing subscription id is skipped.
        """
        await self._check_cap_table(cap_table_id)
        parsed = csv_io.parse_subscription_csv(text)
        result = ImportResult(
            total_rows=parsed.total_rows,
            failed=len({e.row for e in parsed.errors}),
            errors=list(parsed.errors),
            warnings=list(parsed.warnings),
        )

        for item in parsed.subscriptions:
            matches = await self._investor_repo.find_by_name(item.investor_name, cap_table_id)
            if not matches:
                result.failed += 1
                result.errors.append(
                    RowError(
                        row=item.row,
                        field="investor name",
                        message=f"No investor named '{item.investor_name}'",
                    )
                )
                continue
            if len(matches) > 1:
                result.warnings.append(
                    f"Row {item.row}: {len(matches)} investors named '{item.investor_name}'; "
                    f"using {matches[0].investor_id}"
                )

            try:
                await self._subscriptions.create_subscription(matches[0].id, item.subscription)
            except ConflictException as exc:
                result.skipped += 1
                result.warnings.append(f"Row {item.row}: {exc.message}, skipped")
                continue
            result.created += 1

        logger.info(
            "Subscription import: %d rows, %d created, %d skipped, %d failed",
            result.total_rows,
            result.created,
            result.skipped,
            result.failed,
        )
        return result
