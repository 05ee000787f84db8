from fastapi import APIRouter

from .endpoints import delivery, health, loyalty, observability, orders

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(orders.router)
router.include_router(delivery.router)
router.include_router(loyalty.router)
router.include_router(observability.router)
