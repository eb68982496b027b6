"""Health check endpoint — verifies backend + remote store and Redis reachability."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health_check(request: Request):
    """Check backend status and connectivity to the remote store and Redis."""
    orchestrator = request.app.state.orchestrator
    config_store = request.app.state.config_store

    store = orchestrator.store
    if store is None:
        store_status = "unconfigured"
    else:
        store_status = "ok" if store.ping() else "error"
    redis_ok = config_store.ping()

    all_ok = store_status == "ok" and redis_ok

    return {
        "status": "ok" if all_ok else "degraded",
        "services": {
            "store": store_status,
            "redis": "ok" if redis_ok else "error",
        }
    }
