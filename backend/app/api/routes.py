from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional
import logging
import uuid

from api.connections import ConnectionRegistry, get_connection_registry
from gateway import (
    Gateway,
    NoContent,
    SingleResponse,
    TransportMode,
    credentials_from_headers,
    get_gateway,
)
from gateway.dispatcher import DispatchResult
from gateway.errors import ProviderError, ProviderUnavailable
from gateway.streaming import SseEvent, format_sse_event
from models.auth import PollOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


class DeviceStartRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, max_length=200)


class DevicePollRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=200)


def _to_http(result: DispatchResult) -> Response:
    if isinstance(result, NoContent):
        # notifications get no body at all
        return Response(status_code=result.status_code)
    if isinstance(result, SingleResponse):
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
            media_type="application/json",
        )
    return StreamingResponse(result.frames, media_type=result.media_type, headers=result.headers)


async def _dispatch(request: Request, gateway: Gateway, transport: TransportMode) -> Response:
    raw = await request.body()
    result = await gateway.dispatcher.handle(
        raw,
        credentials=credentials_from_headers(request.headers),
        transport=transport,
        accepts_sse="text/event-stream" in request.headers.get("accept", ""),
        is_disconnected=request.is_disconnected,
    )
    return _to_http(result)


# ── JSON-RPC endpoints ─────────────────────────────────────────────────────────

@router.post("/", tags=["mcp"])
@router.post("/mcp", tags=["mcp"])
async def mcp_endpoint(request: Request, gateway: Gateway = Depends(get_gateway)):
    return await _dispatch(request, gateway, TransportMode.JSON)


@router.post("/mcp/stream/sse", tags=["mcp"])
async def mcp_stream_sse(request: Request, gateway: Gateway = Depends(get_gateway)):
    return await _dispatch(request, gateway, TransportMode.SSE)


@router.post("/mcp/stream/chunked", tags=["mcp"])
async def mcp_stream_chunked(request: Request, gateway: Gateway = Depends(get_gateway)):
    return await _dispatch(request, gateway, TransportMode.CHUNKED)


@router.get("/mcp/stream/capabilities", tags=["mcp"])
async def streaming_capabilities(gateway: Gateway = Depends(get_gateway)):
    streaming_tools = [t for t in gateway.tools.list_tools() if t.streaming]
    return {
        "streaming": {
            "supported": True,
            "protocols": ["sse", "chunked-json"],
            "endpoints": {
                "toolCallSSE": "/mcp/stream/sse",
                "toolCallChunked": "/mcp/stream/chunked",
                "events": "/mcp/sse",
            },
            "tools": [{"name": t.name, "description": t.description, "streaming": True} for t in streaming_tools],
        },
        "server": gateway.dispatcher.server_info,
    }


@router.get("/mcp/sse", tags=["mcp"])
async def event_channel(registry: ConnectionRegistry = Depends(get_connection_registry)):
    """Long-lived SSE channel receiving heartbeat broadcasts."""
    connection = registry.connect()

    async def frames():
        try:
            yield format_sse_event(SseEvent("connected", {"connectionId": connection.connection_id}))
            async for frame in connection.frames():
                yield frame
        finally:
            registry.disconnect(connection.connection_id)

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.get("/mcp/call-log", tags=["mcp"])
async def get_call_log(limit: int = 50, gateway: Gateway = Depends(get_gateway)):
    calls = gateway.tools.get_call_log(limit=max(1, min(limit, gateway.tools.MAX_CALL_LOG)))
    return {"total": len(calls), "calls": calls}


# ── Device code authentication ─────────────────────────────────────────────────

@router.post("/auth/device/start", tags=["auth"])
async def start_device_flow(body: DeviceStartRequest, gateway: Gateway = Depends(get_gateway)):
    session_id = body.session_id or str(uuid.uuid4())
    try:
        challenge = await gateway.sessions.start(session_id)
    except ProviderUnavailable as exc:
        raise HTTPException(status_code=502, detail=f"OAuth provider unavailable: {exc}")
    return challenge.model_dump(by_alias=True)


@router.post("/auth/device/poll", tags=["auth"])
async def poll_device_flow(body: DevicePollRequest, gateway: Gateway = Depends(get_gateway)):
    try:
        outcome = await gateway.sessions.poll(body.session_id)
    except ProviderUnavailable as exc:
        raise HTTPException(status_code=502, detail=f"OAuth provider unavailable: {exc}")
    except ProviderError as exc:
        raise HTTPException(status_code=400, detail={"error": exc.error_code, "message": str(exc)})

    if outcome == PollOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Session {body.session_id} not found")

    session = gateway.sessions.get(body.session_id)
    response = {"sessionId": body.session_id, "status": outcome.value}
    if session is not None:
        response["interval"] = session.poll_interval
    if outcome == PollOutcome.AUTHORIZED:
        response["accessToken"] = gateway.sessions.get_access_token(body.session_id)
    return response


@router.get("/auth/device/status/{session_id}", tags=["auth"])
async def device_flow_status(session_id: str, gateway: Gateway = Depends(get_gateway)):
    session = gateway.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {
        **session.model_dump(mode="json", by_alias=True, exclude={"device_code", "access_token"}),
        "authorized": gateway.sessions.is_authorized(session_id),
    }
