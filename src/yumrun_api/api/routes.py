from fastapi import APIRouter

from yumrun_api.core.settings import settings

from .v1 import router as v1_router

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(v1_router)
