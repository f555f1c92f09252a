from fastapi import APIRouter

from pagehost.api.v1.provisioning import router as provisioning_router
from pagehost.api.v1.deployments import router as deployments_router
from pagehost.api.v1.domains import router as domains_router
from pagehost.api.v1.landing_pages import router as landing_pages_router
from pagehost.api.v1.diagnostics import router as diagnostics_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(provisioning_router)
api_router.include_router(deployments_router)
api_router.include_router(domains_router)
api_router.include_router(landing_pages_router)
api_router.include_router(diagnostics_router)
