"""
Remote collaborator endpoint.

A FastAPI app that speaks the same action protocol as the hosted spreadsheet
script: GET ?action=<name> for reads, and POST with a text/plain JSON body
{"action": ..., "data": ...} for writes. Every request is served under one
exclusive lock, and errors come back as JSON payloads with HTTP 200.
"""

import asyncio
import json
import logging
import os
import threading
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from portal.actions import dispatch
from portal.backends import LocalBackend
from portal.blob_storage import BlobStorage
from portal.config import get_config_value
from portal.database import Database
from portal.service import PortalService

logger = logging.getLogger(__name__)


class ActionHandler:
    """Serializes action dispatch over one service instance."""

    def __init__(self, service: PortalService):
        self.service = service
        self._lock = threading.Lock()

    def handle(self, action: Optional[str], data: Any = None) -> Any:
        with self._lock:
            try:
                return dispatch(self.service, action, data)
            except Exception as e:
                logger.error(f"Unhandled error while running action '{action}': {e}", exc_info=True)
                return {"error": f"Server Error: {e}"}


def create_app(
    db_path: Optional[str] = None,
    blob_dir: Optional[str] = None,
    public_base_url: Optional[str] = None,
) -> FastAPI:
    db = Database(db_path or get_config_value("portal_settings.db_file_name", "portal.db"))
    storage = BlobStorage(blob_dir, public_base_url)
    handler = ActionHandler(PortalService(LocalBackend(db), blob_storage=storage))

    app = FastAPI(
        title=get_config_value("portal_settings.app_name", "Class Portal"),
        description="Record store for applications, invite codes and class configuration.",
        docs_url=None,
        redoc_url=None,
    )
    app.state.handler = handler

    os.makedirs(storage.root, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=str(storage.root)), name="uploads")

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    @app.get("/")
    @app.get("/exec")
    async def run_get(request: Request):
        action = request.query_params.get("action")
        result = await asyncio.to_thread(handler.handle, action)
        return JSONResponse(result)

    @app.post("/")
    @app.post("/exec")
    async def run_post(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Rejected request with malformed body: {e}")
            return JSONResponse({"error": f"Server Error: invalid JSON body ({e})"})
        if not isinstance(payload, dict):
            return JSONResponse({"error": "Server Error: request body must be a JSON object"})

        result = await asyncio.to_thread(handler.handle, payload.get("action"), payload.get("data"))
        return JSONResponse(result)

    logger.info(f"Collaborator app ready (database: {db.db_file}, uploads: {storage.root})")
    return app
