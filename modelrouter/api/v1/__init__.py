"""V1 API router aggregation."""

from fastapi import APIRouter

from modelrouter.api.v1.admin import router as admin_router
from modelrouter.api.v1.models import router as models_router
from modelrouter.api.v1.system import router as system_router
from modelrouter.api.v1.usage import router as usage_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(models_router)
v1_router.include_router(usage_router)
v1_router.include_router(admin_router)
v1_router.include_router(system_router)
