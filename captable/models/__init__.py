"""SQLModel table models — import here so metadata is populated."""

from captable.models.allocation import TokenAllocation  # noqa: F401
from captable.models.cap_table import CapTable, CapTableInvestor  # noqa: F401
from captable.models.investor import Investor  # noqa: F401
from captable.models.project import Project  # noqa: F401
from captable.models.subscription import Subscription  # noqa: F401
