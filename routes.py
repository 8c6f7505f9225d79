"""API route handlers for Rengu."""
import time
from typing import Optional
from collections import OrderedDict

from log import get_logger

logger = get_logger("rengu.routes")

from fastapi import APIRouter, Header, HTTPException, Response

from models import SUPPORTED_LANGUAGES, UI_STRINGS, DispatchRequest, DispatchResponse
from llm import ModelGateway
from controller import AppState, ViewController, snapshot

router = APIRouter()

controller = ViewController(ModelGateway())

# --- In-memory sessions (nothing survives a restart) ---
MAX_SESSIONS = 500
MAX_SESSION_ID_LEN = 64
_sessions: OrderedDict = OrderedDict()  # session id -> AppState


def _session_id(x_session_id: Optional[str]) -> str:
    sid = (x_session_id or "default").strip()
    if not sid or len(sid) > MAX_SESSION_ID_LEN:
        raise HTTPException(400, "Invalid session id")
    return sid


def get_session(sid: str) -> AppState:
    state = _sessions.get(sid)
    if state is None:
        state = AppState()
        _sessions[sid] = state
        while len(_sessions) > MAX_SESSIONS:
            evicted, _ = _sessions.popitem(last=False)
            logger.info("Session evicted", extra={"component": "sessions", "session": evicted})
    else:
        _sessions.move_to_end(sid)
    return state


@router.get("/api/languages", tags=["Reference"], summary="List supported UI/output languages")
async def get_languages():
    return {
        code.value: {"label": label, "ui": UI_STRINGS[code]}
        for code, label in SUPPORTED_LANGUAGES.items()
    }


@router.get("/api/health", tags=["System"], summary="Health check")
async def health_check():
    gateway = controller.gateway
    reachable = await gateway.check_connectivity()
    return {
        "status": "ok" if reachable else "degraded",
        "model": gateway.model,
        "credential_configured": bool(gateway.api_key),
        "sessions": len(_sessions),
        "in_flight": controller.in_flight,
    }


@router.get("/api/state", tags=["UI"], summary="Current UI state for this session")
async def get_state(x_session_id: Optional[str] = Header(default=None)):
    return snapshot(get_session(_session_id(x_session_id)))


@router.post("/api/dispatch", tags=["UI"], summary="Apply one user action",
             response_model=DispatchResponse)
async def dispatch(req: DispatchRequest, x_session_id: Optional[str] = Header(default=None)):
    sid = _session_id(x_session_id)
    state = get_session(sid)
    action = req.action

    start = time.monotonic()
    accepted = await controller.submit(state, action)
    logger.debug("Dispatched", extra={
        "component": "routes", "endpoint": action.type, "session": sid,
        "duration_ms": round((time.monotonic() - start) * 1000),
        "detail": "accepted" if accepted else "ignored",
    })
    return DispatchResponse(
        accepted=accepted,
        scroll_top=action.type == "reset",
        state=snapshot(state),
    )


@router.get("/api/drawing.png", tags=["Drawing"], summary="Current drawing as PNG")
async def drawing_png(x_session_id: Optional[str] = Header(default=None)):
    data = get_session(_session_id(x_session_id)).draw.recorder.serialize()
    if not data:
        return Response(status_code=204)
    return Response(content=data, media_type="image/png", headers={"Cache-Control": "no-store"})
