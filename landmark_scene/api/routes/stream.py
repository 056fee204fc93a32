from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from landmark_scene.api.services.engine import SceneEngine
from landmark_scene.api.services.state import get_engine
from landmark_scene.core.types import FrameSummary, to_jsonable

router = APIRouter()

logger = logging.getLogger(__name__)


def _is_closed_send_error(exc: BaseException) -> bool:
    # Uvicorn raises this when an ASGI websocket.send happens after close.
    if not isinstance(exc, RuntimeError):
        return False
    msg = str(exc)
    return "Unexpected ASGI message 'websocket.send'" in msg or "response already completed" in msg


def marker_payload(summary: FrameSummary, stream_fps: float) -> dict[str, Any]:
    """Serialize a summary for the marker websocket (profile timings omitted).

    Non-finite values, e.g. from degenerate face input, are sent as `null`.
    """

    payload = to_jsonable(summary)
    payload.pop("profile", None)
    payload["stream_fps"] = stream_fps
    return payload


@router.get("/stream/video")
async def stream_video():
    async def generator():
        last_engine: SceneEngine | None = None
        last_sent: bytes | None = None
        last_sent_id: int | None = None
        while True:
            engine = await asyncio.to_thread(get_engine)
            if engine is not last_engine:
                last_engine = engine
                last_sent = None
                last_sent_id = None

            frame, summary = engine.latest_stream_packet()
            frame_id = int(summary.frame_id) if summary is not None else None
            if frame is not None and (frame != last_sent or frame_id != last_sent_id):
                headers = b"--frame\r\n" b"Content-Type: image/jpeg\r\n"
                if frame_id is not None:
                    headers += f"X-Frame-Id: {frame_id}\r\n".encode("ascii")
                headers += f"Content-Length: {len(frame)}\r\n".encode("ascii")
                headers += b"\r\n"
                yield headers + frame + b"\r\n"
                last_sent = frame
                last_sent_id = frame_id
            await asyncio.sleep(0.02)

    return StreamingResponse(
        generator(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
            # Helps avoid proxy buffering (e.g., nginx) in front of the stream.
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/stream/markers")
async def stream_markers(ws: WebSocket):
    await ws.accept()

    async def _poll_and_handle_ping() -> None:
        # Avoid concurrent send() calls: this is called from the main loop.
        try:
            msg = await asyncio.wait_for(ws.receive_json(), timeout=0.001)
        except asyncio.TimeoutError:
            return
        except WebSocketDisconnect:
            raise
        except Exception:
            return

        if not isinstance(msg, dict) or msg.get("type") != "ping":
            return

        try:
            await ws.send_json({"type": "pong", "t": msg.get("t"), "server_time": time.time()})
        except Exception as e:
            if _is_closed_send_error(e) or isinstance(e, WebSocketDisconnect):
                raise WebSocketDisconnect() from e
            return

    last_engine: SceneEngine | None = None
    last_id = -1
    try:
        while True:
            await _poll_and_handle_ping()
            engine = await asyncio.to_thread(get_engine)
            if engine is not last_engine:
                last_engine = engine
                last_id = -1

            summary = engine.latest_summary()
            if summary and summary.frame_id != last_id:
                try:
                    payload = marker_payload(summary, engine.stream_fps())
                    try:
                        await ws.send_json(payload)
                    except Exception as e:
                        if _is_closed_send_error(e) or isinstance(e, WebSocketDisconnect):
                            return
                        raise
                    last_id = summary.frame_id
                except Exception:
                    # Keep the websocket alive even if one frame fails serialization.
                    logger.exception("Failed to send marker frame")
                    await asyncio.sleep(0.05)

            await asyncio.sleep(0.02)
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Marker websocket crashed")
        try:
            await ws.close(code=1011)
        except Exception:
            logger.debug("Websocket already closed")
        return
