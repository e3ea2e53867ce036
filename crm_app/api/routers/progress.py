"""
WebSocket push channel for import progress.

Clients send ``{"action": "subscribe" | "unsubscribe", "job_id": ...}`` or
``{"action": "ping"}`` and receive control messages plus ``import-progress``
frames. Frames are produced on worker threads and handed to the socket through
an asyncio queue owned by the connection.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from crm_app.api.dependencies import get_import_service, get_progress_hub
from crm_app.domain.imports.errors import ImportJobNotFound
from crm_app.domain.imports.orchestrator import ImportService
from crm_app.domain.imports.progress_hub import ProgressHub, build_frame

router = APIRouter(tags=["import-progress"])

logger = logging.getLogger(__name__)


async def _pump(websocket: WebSocket, outbox: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


async def _current_frame(service: ImportService, job_id: str) -> Optional[Dict[str, Any]]:
    try:
        job = await run_in_threadpool(service.get_job_status, job_id)
    except ImportJobNotFound:
        return None
    return build_frame(job)


@router.websocket("/ws/import-progress")
async def import_progress_socket(
    websocket: WebSocket,
    hub: ProgressHub = Depends(get_progress_hub),
    service: ImportService = Depends(get_import_service),
):
    await websocket.accept()
    loop = asyncio.get_running_loop()
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def send_from_worker(frame: Dict[str, Any]) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, frame)

    connection_id = hub.connect(send_from_worker)
    outbox.put_nowait({"type": "connected", "message": "WebSocket connection established"})
    sender = asyncio.create_task(_pump(websocket, outbox))
    logger.info(f"Progress client {connection_id} connected")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                outbox.put_nowait({"type": "error", "message": "Invalid JSON message"})
                continue
            if not isinstance(message, dict):
                outbox.put_nowait({"type": "error", "message": "Message must be a JSON object"})
                continue

            action = message.get("action")
            job_id = message.get("job_id")

            if action == "ping":
                outbox.put_nowait({"type": "pong"})
                continue
            if action not in ("subscribe", "unsubscribe"):
                outbox.put_nowait({"type": "error", "message": "Unknown action"})
                continue
            if not job_id:
                outbox.put_nowait({"type": "error", "message": "job_id is required"})
                continue

            if action == "subscribe":
                latest = hub.subscribe(connection_id, job_id)
                outbox.put_nowait({"type": "subscribed", "job_id": job_id})
                # Late subscribers get the current snapshot straight away.
                frame = latest or await _current_frame(service, job_id)
                if frame is not None:
                    outbox.put_nowait(frame)
            else:
                hub.unsubscribe(connection_id, job_id)
                outbox.put_nowait({"type": "unsubscribed", "job_id": job_id})
    except WebSocketDisconnect:
        logger.info(f"Progress client {connection_id} disconnected")
    finally:
        hub.disconnect(connection_id)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Progress sender for client %d stopped: %s", connection_id, exc)
