"""Remote store connection endpoints — reconfigure or drop the store client."""

import logging

from fastapi import APIRouter, Depends

from yunzhou.api.deps import get_orchestrator, http_error
from yunzhou.core.exceptions import ConnectionUnavailableError
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.models import StoreConnectionUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/connection")
def get_connection(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    store = orchestrator.store
    return {
        "configured": store is not None,
        "url": store.base_url if store is not None else None,
    }


@router.put("/connection")
def update_connection(
    body: StoreConnectionUpdate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Point the service at another store and reload metadata."""
    try:
        client = orchestrator.reconfigure_store(body.url, body.api_key)
    except ConnectionUnavailableError as e:
        raise http_error(e)
    orchestrator.try_refresh_metadata()
    return {"configured": True, "url": client.base_url}


@router.delete("/connection")
def reset_connection(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    orchestrator.reset_store()
    orchestrator.refresh_metadata()
    logger.info("Store connection reset via API")
    return {"configured": False, "url": None}
