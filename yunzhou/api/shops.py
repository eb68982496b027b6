"""Shop directory endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from yunzhou.api.deps import get_orchestrator
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.models import Shop

router = APIRouter()


@router.get("/shops", response_model=list[Shop])
def list_shops(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return orchestrator.load_shops()


@router.put("/shops", response_model=list[Shop])
def replace_shops(shops: list[Shop], orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Replace the whole shop directory. Shop ids must be unique."""
    ids = [s.id for s in shops]
    if len(ids) != len(set(ids)):
        raise HTTPException(status_code=422, detail="Duplicate shop id")
    orchestrator.save_shops(shops)
    return shops
