"""
Project API endpoints.

- GET    /projects                          — List projects
- POST   /projects                          — Create a project (with its default cap table)
- GET    /projects/{project_id}             — Retrieve a project
- PUT    /projects/{project_id}             — Rename / describe a project
- DELETE /projects/{project_id}             — Delete a project and its cap tables
- GET    /projects/{project_id}/cap-tables  — List the project's cap tables
- POST   /projects/{project_id}/cap-tables  — Create a cap table in the project
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from captable.db.session import get_db
from captable.models.cap_table import CapTable
from captable.models.investor import Investor
from captable.models.project import Project
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.project_repo import ProjectRepository
from captable.schemas.common import ErrorResponse, ValidationErrorResponse
from captable.schemas.project import (
    CapTableCreate,
    CapTableResponse,
    ProjectCreate,
    ProjectDeleted,
    ProjectResponse,
    ProjectUpdate,
)
from captable.services.cap_table_service import CapTableService

router = APIRouter()


# ── Dependency injection ──


def _get_cap_table_service(db: AsyncSession = Depends(get_db)) -> CapTableService:
    """Build a CapTableService wired to the current request's DB session."""
    return CapTableService(
        project_repo=ProjectRepository(Project, db),
        cap_table_repo=CapTableRepository(CapTable, db),
        investor_repo=InvestorRepository(Investor, db),
    )


# ── Endpoints ──


@router.get(
    "",
    response_model=List[ProjectResponse],
    summary="List all projects",
    description="Projects ordered by creation time; the first is the default selection.",
)
async def list_projects(
    service: CapTableService = Depends(_get_cap_table_service),
) -> List[ProjectResponse]:
    return await service.list_projects()


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=201,
    summary="Create a project",
    description="Creates the project and an empty default cap table inside it.",
    responses={
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_project(
    project: ProjectCreate,
    service: CapTableService = Depends(_get_cap_table_service),
) -> ProjectResponse:
    return await service.create_project(project)


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get a project",
    responses={404: {"model": ErrorResponse, "description": "Project not found"}},
)
async def get_project(
    project_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> ProjectResponse:
    return await service.get_project(project_id)


@router.put(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Update a project",
    responses={
        404: {"model": ErrorResponse, "description": "Project not found"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def update_project(
    project_id: UUID,
    project: ProjectUpdate,
    service: CapTableService = Depends(_get_cap_table_service),
) -> ProjectResponse:
    return await service.update_project(project_id, project)


@router.delete(
    "/{project_id}",
    response_model=ProjectDeleted,
    summary="Delete a project",
    description=(
        "Deletes the project, its cap tables and their memberships.  Investors "
        "are kept.  The last remaining project cannot be deleted (409)."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Project not found"},
        409: {"model": ErrorResponse, "description": "Last remaining project"},
    },
)
async def delete_project(
    project_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> ProjectDeleted:
    selected = await service.delete_project(project_id)
    return ProjectDeleted(deleted_id=project_id, selected_project_id=selected)


@router.get(
    "/{project_id}/cap-tables",
    response_model=List[CapTableResponse],
    summary="List a project's cap tables",
    responses={404: {"model": ErrorResponse, "description": "Project not found"}},
)
async def list_cap_tables(
    project_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> List[CapTableResponse]:
    return await service.list_cap_tables(project_id)


@router.post(
    "/{project_id}/cap-tables",
    response_model=CapTableResponse,
    status_code=201,
    summary="Create a cap table",
    responses={
        404: {"model": ErrorResponse, "description": "Project not found"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_cap_table(
    project_id: UUID,
    cap_table: CapTableCreate,
    service: CapTableService = Depends(_get_cap_table_service),
) -> CapTableResponse:
    return await service.create_cap_table(project_id, cap_table)
