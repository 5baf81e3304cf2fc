"""
Unit tests for CapTableService — projects, cap tables and membership.

All repository calls are mocked.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from captable.core.events import change_feed
from captable.core.exceptions import ConflictException, NotFoundException
from captable.schemas.project import CapTableCreate, CapTableUpdate, ProjectCreate
from captable.services.cap_table_service import CapTableService

from .conftest import (
    CAP_TABLE_ID,
    CAP_TABLE_ID_2,
    INVESTOR_ID,
    PROJECT_ID,
    PROJECT_ID_2,
    make_cap_table,
    make_investor,
    make_project,
)


@pytest.fixture()
def project_repo():
    return AsyncMock()


@pytest.fixture()
def cap_table_repo():
    return AsyncMock()


@pytest.fixture()
def investor_repo():
    return AsyncMock()


@pytest.fixture()
def service(project_repo, cap_table_repo, investor_repo):
    return CapTableService(project_repo, cap_table_repo, investor_repo)


# ────────────────────────────────────────────────────────────────────────────
# Bootstrap
# ────────────────────────────────────────────────────────────────────────────


class TestEnsureDefaults:
    @pytest.mark.asyncio
    async def test_creates_project_and_cap_table_when_empty(
        self, service, project_repo, cap_table_repo
    ):
        project_repo.list_ordered.return_value = []

        project = await service.ensure_defaults()

        assert project.name == "Main Project"
        saved_project, created = project_repo.save_all.await_args.args
        assert saved_project is project
        assert created.name == "Main Cap Table"
        assert created.project_id == project.id
        cap_table_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idempotent_when_present(self, service, project_repo, cap_table_repo):
        project_repo.list_ordered.return_value = [make_project()]
        cap_table_repo.count_by_project.return_value = 1

        project = await service.ensure_defaults()

        assert project.id == PROJECT_ID
        project_repo.save_all.assert_not_awaited()
        cap_table_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repairs_project_without_cap_table(self, service, project_repo, cap_table_repo):
        project_repo.list_ordered.return_value = [make_project(), make_project(id=PROJECT_ID_2)]
        cap_table_repo.count_by_project.side_effect = [1, 0]
        cap_table_repo.create.side_effect = lambda c: c

        await service.ensure_defaults()

        cap_table_repo.create.assert_awaited_once()
        assert cap_table_repo.create.await_args.args[0].project_id == PROJECT_ID_2


# ────────────────────────────────────────────────────────────────────────────
# Projects
# ────────────────────────────────────────────────────────────────────────────


class TestProjects:
    @pytest.mark.asyncio
    async def test_create_project_adds_default_cap_table(
        self, service, project_repo, cap_table_repo
    ):
        project = await service.create_project(ProjectCreate(name="Series B"))

        assert project.name == "Series B"
        saved_project, cap_table = project_repo.save_all.await_args.args
        assert saved_project is project
        assert cap_table.project_id == project.id
        cap_table_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_project_failure_publishes_nothing(self, service, project_repo):
        project_repo.save_all.side_effect = OperationalError("INSERT", {}, Exception("gone"))
        received = []
        unsubscribe = change_feed.on_change(received.append)

        try:
            with pytest.raises(OperationalError):
                await service.create_project(ProjectCreate(name="Series B"))
        finally:
            unsubscribe()

        project_repo.save_all.assert_awaited_once()
        assert received == []

    @pytest.mark.asyncio
    async def test_get_missing_project(self, service, project_repo):
        project_repo.get.return_value = None
        with pytest.raises(NotFoundException, match="Project"):
            await service.get_project(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_delete_last_project_refused(self, service, project_repo):
        project_repo.get.return_value = make_project()
        project_repo.list_ordered.return_value = [make_project()]

        with pytest.raises(ConflictException, match="last"):
            await service.delete_project(PROJECT_ID)
        project_repo.delete_cascade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_returns_next_project(self, service, project_repo):
        project_repo.get.return_value = make_project()
        project_repo.list_ordered.return_value = [
            make_project(),
            make_project(id=PROJECT_ID_2, name="Other"),
        ]

        next_id = await service.delete_project(PROJECT_ID)

        assert next_id == PROJECT_ID_2
        project_repo.delete_cascade.assert_awaited_once_with(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_list_is_cached(self, service, project_repo):
        project_repo.list_ordered.return_value = [make_project()]

        await service.list_projects()
        await service.list_projects()

        project_repo.list_ordered.assert_awaited_once()


# ────────────────────────────────────────────────────────────────────────────
# Cap tables
# ────────────────────────────────────────────────────────────────────────────


class TestCapTables:
    @pytest.mark.asyncio
    async def test_create_in_missing_project(self, service, project_repo):
        project_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await service.create_cap_table(PROJECT_ID, CapTableCreate(name="B"))

    @pytest.mark.asyncio
    async def test_create(self, service, project_repo, cap_table_repo):
        project_repo.get.return_value = make_project()
        cap_table_repo.create.side_effect = lambda c: c

        cap_table = await service.create_cap_table(PROJECT_ID, CapTableCreate(name="Series B"))

        assert cap_table.project_id == PROJECT_ID
        assert cap_table.name == "Series B"

    @pytest.mark.asyncio
    async def test_rename(self, service, cap_table_repo):
        cap_table_repo.get.return_value = make_cap_table()
        cap_table_repo.update.side_effect = lambda c: c

        updated = await service.update_cap_table(CAP_TABLE_ID, CapTableUpdate(name="Renamed"))

        assert updated.name == "Renamed"

    @pytest.mark.asyncio
    async def test_delete_last_in_project_refused(self, service, cap_table_repo):
        cap_table_repo.get.return_value = make_cap_table()
        cap_table_repo.list_by_project.return_value = [make_cap_table()]

        with pytest.raises(ConflictException, match="last cap table"):
            await service.delete_cap_table(CAP_TABLE_ID)

    @pytest.mark.asyncio
    async def test_delete_returns_sibling(self, service, cap_table_repo):
        cap_table_repo.get.return_value = make_cap_table()
        cap_table_repo.list_by_project.return_value = [
            make_cap_table(),
            make_cap_table(id=CAP_TABLE_ID_2, name="Second"),
        ]

        assert await service.delete_cap_table(CAP_TABLE_ID) == CAP_TABLE_ID_2
        cap_table_repo.delete_cascade.assert_awaited_once_with(CAP_TABLE_ID)


# ────────────────────────────────────────────────────────────────────────────
# Membership
# ────────────────────────────────────────────────────────────────────────────


class TestMembership:
    @pytest.mark.asyncio
    async def test_add(self, service, cap_table_repo, investor_repo):
        cap_table_repo.get.return_value = make_cap_table()
        investor_repo.get.return_value = make_investor()
        cap_table_repo.get_link.return_value = None

        await service.add_investor_to_cap_table(CAP_TABLE_ID, INVESTOR_ID)

        cap_table_repo.add_link.assert_awaited_once_with(CAP_TABLE_ID, INVESTOR_ID)

    @pytest.mark.asyncio
    async def test_add_twice_conflicts(self, service, cap_table_repo, investor_repo):
        cap_table_repo.get.return_value = make_cap_table()
        investor_repo.get.return_value = make_investor()
        cap_table_repo.get_link.return_value = object()

        with pytest.raises(ConflictException, match="already"):
            await service.add_investor_to_cap_table(CAP_TABLE_ID, INVESTOR_ID)

    @pytest.mark.asyncio
    async def test_concurrent_add_conflicts(self, service, cap_table_repo, investor_repo):
        cap_table_repo.get.return_value = make_cap_table()
        investor_repo.get.return_value = make_investor()
        cap_table_repo.get_link.return_value = None
        cap_table_repo.add_link.side_effect = IntegrityError("INSERT", {}, Exception("unique"))

        with pytest.raises(ConflictException, match="already"):
            await service.add_investor_to_cap_table(CAP_TABLE_ID, INVESTOR_ID)
        cap_table_repo.db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_unknown_investor(self, service, cap_table_repo, investor_repo):
        cap_table_repo.get.return_value = make_cap_table()
        investor_repo.get.return_value = None

        with pytest.raises(NotFoundException, match="Investor"):
            await service.add_investor_to_cap_table(CAP_TABLE_ID, INVESTOR_ID)

    @pytest.mark.asyncio
    async def test_remove_non_member(self, service, cap_table_repo):
        cap_table_repo.get.return_value = make_cap_table()
        cap_table_repo.remove_link.return_value = False

        with pytest.raises(NotFoundException):
            await service.remove_investor_from_cap_table(CAP_TABLE_ID, INVESTOR_ID)

    @pytest.mark.asyncio
    async def test_remove_keeps_investor(self, service, cap_table_repo, investor_repo):
        cap_table_repo.get.return_value = make_cap_table()
        cap_table_repo.remove_link.return_value = True

        await service.remove_investor_from_cap_table(CAP_TABLE_ID, INVESTOR_ID)

        investor_repo.delete.assert_not_awaited()
