"""
V1 API router aggregation.

All versioned endpoint routers are mounted here under a common prefix.
The top-level ``main.py`` mounts this router at ``/api/v1``.
"""

from fastapi import APIRouter

from captable.api.v1.endpoints import (
    cap_tables,
    changes,
    distributions,
    imports,
    investors,
    kyc,
    projects,
    subscriptions,
)

api_router = APIRouter()

api_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
api_router.include_router(cap_tables.router, prefix="/cap-tables", tags=["Cap Tables"])
api_router.include_router(investors.router, prefix="/investors", tags=["Investors"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])
api_router.include_router(distributions.router, prefix="/distributions", tags=["Distributions"])
api_router.include_router(kyc.router, prefix="/kyc", tags=["KYC"])
api_router.include_router(changes.router, prefix="/changes", tags=["Changes"])

# Imports router defines its own full paths (/imports/..., /templates/...)
api_router.include_router(imports.router, tags=["Imports"])
