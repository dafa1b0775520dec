"""
FastAPI Router для AlgoStudio status API
"""

from fastapi import APIRouter

from algostudio.api.strategy_status import router as strategy_status_router


# Создаем главный router
router = APIRouter()

router.include_router(strategy_status_router)
