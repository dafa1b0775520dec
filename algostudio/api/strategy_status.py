"""
Strategy Status API Endpoints

Внутренний REST API: резолв статуса одного инстанса по запросу
(страница инстанса в web app, ручной refresh).
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel

from algostudio.api.api_key_auth import verify_api_key
from algostudio.core.exceptions import InstanceNotFoundError, StoreUnavailableError
from algostudio.services.strategy_status.orchestrator import StatusOrchestrator
from algostudio.services.strategy_status.resolver import get_status_explanation

router = APIRouter(prefix="/strategy-status", tags=["Strategy Status"])


# =============================================================================
# Pydantic Models (Response Schemas)
# =============================================================================

class StrategyStatusResponse(BaseModel):
    """Response для статуса инстанса."""
    instance_id: str
    status: str
    confidence: str
    changed: bool
    explanation: str


# =============================================================================
# Dependencies
# =============================================================================

def get_orchestrator(request: Request) -> StatusOrchestrator:
    """Orchestrator создаётся в lifespan и живёт в app.state."""
    orchestrator = getattr(request.app.state, "status_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Strategy status engine not started")
    return orchestrator


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/{instance_id}", response_model=StrategyStatusResponse)
async def get_strategy_status(
    instance_id: str,
    orchestrator: StatusOrchestrator = Depends(get_orchestrator),
    _: str = Depends(verify_api_key),
):
    """
    Пересчитать и вернуть статус инстанса.

    Side effects (transition, alert, audit) выполняются в фоне,
    ответ их не ждёт.
    """
    try:
        result = await orchestrator.compute_and_cache_status(instance_id)
    except InstanceNotFoundError:
        raise HTTPException(status_code=404, detail="Instance not found")
    except StoreUnavailableError as e:
        logger.warning(f"Strategy status for {instance_id} unavailable: {e}")
        raise HTTPException(status_code=503, detail="Status store unavailable")

    return StrategyStatusResponse(
        instance_id=instance_id,
        status=result.status.value,
        confidence=result.confidence.value,
        changed=result.changed,
        explanation=result.explanation or get_status_explanation(result.status),
    )
