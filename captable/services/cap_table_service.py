"""
Cap table service — projects, cap tables and cap table membership.

At least one project, and at least one cap table per project, always
exist.  :meth:`CapTableService.ensure_defaults` establishes that at startup
and the delete operations refuse to break it.
"""

import logging
from datetime import datetime, timezone
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from captable.core.cache import CAP_TABLES_PREFIX, PROJECTS_PREFIX, cache
from captable.core.config import settings
from captable.core.events import DELETE, INSERT, UPDATE, change_feed
from captable.core.exceptions import ConflictException, NotFoundException
from captable.models.cap_table import CapTable
from captable.models.project import Project
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.project_repo import ProjectRepository
from captable.schemas.project import CapTableCreate, CapTableUpdate, ProjectCreate, ProjectUpdate

logger = logging.getLogger(__name__)


class CapTableService:
    """Encapsulates CRUD + invariants for :class:`Project` and :class:`CapTable`."""

    def __init__(
        self,
        project_repo: ProjectRepository,
        cap_table_repo: CapTableRepository,
        investor_repo: InvestorRepository,
    ):
        self._project_repo = project_repo
        self._cap_table_repo = cap_table_repo
        self._investor_repo = investor_repo

    # ── Bootstrap ──

    async def ensure_defaults(self) -> Project:
        """
        Create the default project and cap table when missing.

        Run once at startup, never as a side effect of a read.  Returns the
        first (default-selected) project.
        """
        projects = await self._project_repo.list_ordered()
        if not projects:
            project = Project(
                name=settings.DEFAULT_PROJECT_NAME,
                description=settings.DEFAULT_PROJECT_DESCRIPTION,
            )
            await self._save_with_default_cap_table(project)
            logger.info("Created default project %s", project.id)
            return project

        for project in projects:
            if await self._cap_table_repo.count_by_project(project.id) == 0:
                cap_table = await self._cap_table_repo.create(self._default_cap_table(project.id))
                change_feed.emit("cap_tables", INSERT, cap_table.id)
                logger.info("Created default cap table %s for project %s", cap_table.id, project.id)
        return projects[0]

    @staticmethod
    def _default_cap_table(project_id: UUID) -> CapTable:
        return CapTable(
            project_id=project_id,
            name=settings.DEFAULT_CAP_TABLE_NAME,
            description=settings.DEFAULT_CAP_TABLE_DESCRIPTION,
        )

    async def _save_with_default_cap_table(self, project: Project) -> CapTable:
        """Insert ``project`` and its default cap table in one commit."""
        cap_table = self._default_cap_table(project.id)
        await self._project_repo.save_all(project, cap_table)
        change_feed.emit("projects", INSERT, project.id)
        change_feed.emit("cap_tables", INSERT, cap_table.id)
        return cap_table

    # ── Projects ──

    async def list_projects(self) -> List[Project]:
        cache_key = f"{PROJECTS_PREFIX}list"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        projects = await self._project_repo.list_ordered()
        cache.set(cache_key, projects)
        return projects

    async def get_project(self, project_id: UUID) -> Project:
        project = await self._project_repo.get(project_id)
        if project is None:
            raise NotFoundException("Project", project_id)
        return project

    async def create_project(self, project_in: ProjectCreate) -> Project:
        """Create a project together with its default cap table."""
        project = Project(**project_in.model_dump())
        await self._save_with_default_cap_table(project)
        logger.info("Created project %s (%s)", project.id, project.name)
        return project

    async def update_project(self, project_id: UUID, project_in: ProjectUpdate) -> Project:
        project = await self.get_project(project_id)
        for key, value in project_in.model_dump(exclude_unset=True).items():
            if key == "name" and value is None:
                continue
            setattr(project, key, value)
        project.updated_at = datetime.now(timezone.utc)
        updated = await self._project_repo.update(project)
        change_feed.emit("projects", UPDATE, updated.id)
        logger.info("Updated project %s", updated.id)
        return updated

    async def delete_project(self, project_id: UUID) -> UUID:
        """
        Delete a project with its cap tables and their memberships.

        Returns the id of the project to select next.  Raises
        :class:`ConflictException` when it is the last project.
        """
        await self.get_project(project_id)
        projects = await self._project_repo.list_ordered()
        remaining = [p for p in projects if p.id != project_id]
        if not remaining:
            raise ConflictException("Cannot delete the last remaining project")

        await self._project_repo.delete_cascade(project_id)
        change_feed.emit("projects", DELETE, project_id)
        change_feed.emit("cap_table_investors", DELETE)
        logger.info("Deleted project %s", project_id)
        return remaining[0].id

    # ── Cap tables ──

    async def list_cap_tables(self, project_id: UUID) -> List[CapTable]:
        await self.get_project(project_id)
        cache_key = f"{CAP_TABLES_PREFIX}project:{project_id}"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        cap_tables = await self._cap_table_repo.list_by_project(project_id)
        cache.set(cache_key, cap_tables)
        return cap_tables

    async def get_cap_table(self, cap_table_id: UUID) -> CapTable:
        cap_table = await self._cap_table_repo.get(cap_table_id)
        if cap_table is None:
            raise NotFoundException("Cap table", cap_table_id)
        return cap_table

    async def create_cap_table(self, project_id: UUID, cap_table_in: CapTableCreate) -> CapTable:
        await self.get_project(project_id)
        cap_table = await self._cap_table_repo.create(
            CapTable(project_id=project_id, **cap_table_in.model_dump())
        )
        change_feed.emit("cap_tables", INSERT, cap_table.id)
        logger.info("Created cap table %s in project %s", cap_table.id, project_id)
        return cap_table

    async def update_cap_table(self, cap_table_id: UUID, cap_table_in: CapTableUpdate) -> CapTable:
        cap_table = await self.get_cap_table(cap_table_id)
        for key, value in cap_table_in.model_dump(exclude_unset=True).items():
            if key == "name" and value is None:
                continue
            setattr(cap_table, key, value)
        cap_table.updated_at = datetime.now(timezone.utc)
        updated = await self._cap_table_repo.update(cap_table)
        change_feed.emit("cap_tables", UPDATE, updated.id)
        return updated

    async def delete_cap_table(self, cap_table_id: UUID) -> UUID:
        """
        Delete a cap table and its memberships (never the investors).

        Returns the id of the remaining cap table to select.  Raises
        :class:`ConflictException` when it is the last one in its project.
        """
        cap_table = await self.get_cap_table(cap_table_id)
        siblings = await self._cap_table_repo.list_by_project(cap_table.project_id)
        remaining = [c for c in siblings if c.id != cap_table_id]
        if not remaining:
            raise ConflictException("Cannot delete the last cap table in a project")

        await self._cap_table_repo.delete_cascade(cap_table_id)
        change_feed.emit("cap_tables", DELETE, cap_table_id)
        change_feed.emit("cap_table_investors", DELETE, cap_table_id)
        logger.info("Deleted cap table %s", cap_table_id)
        return remaining[0].id

    # ── Membership ──

    async def add_investor_to_cap_table(self, cap_table_id: UUID, investor_id: UUID) -> None:
        await self.get_cap_table(cap_table_id)
        if await self._investor_repo.get(investor_id) is None:
            raise NotFoundException("Investor", investor_id)
        if await self._cap_table_repo.get_link(cap_table_id, investor_id) is not None:
            raise ConflictException("Investor is already in this cap table")

        try:
            await self._cap_table_repo.add_link(cap_table_id, investor_id)
        except IntegrityError as exc:
            await self._cap_table_repo.db.rollback()
            logger.warning(
                "IntegrityError adding investor %s to cap table %s: %s", investor_id, cap_table_id, exc
            )
            raise ConflictException("Investor is already in this cap table")
        change_feed.emit("cap_table_investors", INSERT, cap_table_id)
        logger.info("Added investor %s to cap table %s", investor_id, cap_table_id)

    async def remove_investor_from_cap_table(self, cap_table_id: UUID, investor_id: UUID) -> None:
        """Remove a membership.  The investor and its subscriptions are untouched."""
        await self.get_cap_table(cap_table_id)
        if not await self._cap_table_repo.remove_link(cap_table_id, investor_id):
            raise NotFoundException("Cap table member", investor_id)
        change_feed.emit("cap_table_investors", DELETE, cap_table_id)
        logger.info("Removed investor %s from cap table %s", investor_id, cap_table_id)
