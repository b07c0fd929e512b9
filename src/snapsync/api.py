"""
HTTP control surface for snapsync.

All errors are returned as {"error": message}: 400 for rejected arguments, 404 for an
unknown record, 500 for everything else.
"""

import logging
from typing import Any, Awaitable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from snapsync.exceptions import InvalidRequestError
from snapsync.sync.service import SyncService

logger = logging.getLogger(__name__)


async def _respond(action: str, call: Awaitable[Any]):
    try:
        return await call
    except InvalidRequestError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        logger.error(f"{action} failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})


def create_app(service: SyncService) -> FastAPI:
    """
    Build the API for a sync service.

    Args:
        service: Service the routes delegate to

    Returns:
        FastAPI application
    """
    app = FastAPI(title="snapsync", version="1.0.0")
    app.state.service = service

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": details or "Invalid request"})

    @app.get("/")
    async def health():
        return service.health()

    @app.post("/api/sync/backfill")
    async def backfill():
        return await _respond("Backfill", service.backfill())

    @app.get("/api/sync/status")
    async def status_summary():
        return await _respond("Status", service.status())

    @app.get("/api/sync/status/{record_id}")
    async def record_status(record_id: int):
        result = await _respond("Status", service.status(record_id))
        if result is None:
            return JSONResponse(status_code=404, content={"error": "Not found"})
        return result

    @app.get("/api/sync/logs")
    async def logs(limit: int = 100, status: Optional[str] = None):
        return await _respond("Logs", service.logs(limit=limit, status=status))

    @app.post("/api/sync/reconcile")
    async def reconcile(detailed: bool = False):
        return await _respond("Reconcile", service.reconcile(detailed=detailed))

    @app.post("/api/sync/retry-failed")
    async def retry_failed():
        return await _respond("Retry failed", service.retry_failed())

    @app.post("/api/sync/poll")
    async def poll():
        return await _respond("Poll", service.poll())

    @app.get("/api/sync/poller")
    async def poller_state():
        return service.poller_state()

    return app
