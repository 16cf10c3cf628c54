"""
JSON-RPC dispatcher — the single entry point for every MCP request.

Request pipeline:

  raw bytes
    └─ decode()                 ParseError        → -32700 (id echoed when readable)
        └─ notification?        null id           → NoContent (HTTP 202, empty body)
            └─ AuthGate         protected method  → -32001 + remediation (HTTP 401)
                └─ route lookup miss              → -32601
                    └─ params model               → -32602
                        └─ handler
                             ├─ ProtocolError     → its own code
                             ├─ other exception   → -32603
                             └─ result            → SingleResponse | StreamResponse

tools/call streams only when all three hold: the tool is registered as
streaming, the transport can stream, and the caller did not send
`streaming: false`. A streaming tool reached over plain JSON is run to
completion and aggregated into one result.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from models.jsonrpc import (
    AUTHENTICATION_REQUIRED,
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcRequest,
    RequestId,
)
from models.tools import PromptGetParams, ResourceReadParams, ToolCallParams, ToolCallResult

from .auth_gate import AuthGate, Credentials
from .envelope import decode, encode_error, encode_result
from .errors import InvalidParamsError, ParseError, ProtocolError
from .prompts import PromptRegistry, ResourceRegistry
from .streaming import ChunkEmitter, DisconnectProbe
from .tool_registry import ToolInvoker

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

CHUNKED_HEADERS = {
    "Cache-Control": "no-cache",
    "Transfer-Encoding": "chunked",
}

DEFAULT_STREAMING_ENDPOINTS = {
    "sse": "/mcp/stream/sse",
    "chunked": "/mcp/stream/chunked",
}


class TransportMode(str, Enum):
    JSON = "json"
    SSE = "sse"
    CHUNKED = "chunked"


@dataclass(frozen=True)
class NoContent:
    status_code: int = 202


@dataclass
class SingleResponse:
    body: bytes
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def payload(self) -> dict:
        return json.loads(self.body)


@dataclass
class StreamResponse:
    frames: AsyncIterator[str]
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)


DispatchResult = Union[NoContent, SingleResponse, StreamResponse]


@dataclass
class RequestContext:
    credentials: Credentials = field(default_factory=Credentials)
    transport: TransportMode = TransportMode.JSON
    accepts_sse: bool = False
    is_disconnected: Optional[DisconnectProbe] = None

    @property
    def can_stream(self) -> bool:
        return self.transport != TransportMode.JSON or self.accepts_sse


Handler = Callable[[JsonRpcRequest, Any, RequestContext], Awaitable[Any]]


def is_notification(request: JsonRpcRequest) -> bool:
    if request.id is not None:
        return False
    return request.method == "initialized" or request.method.startswith("notifications/")


class Dispatcher:
    def __init__(
        self,
        tools: ToolInvoker,
        gate: AuthGate,
        prompts: Optional[PromptRegistry] = None,
        resources: Optional[ResourceRegistry] = None,
        server_info: Optional[dict] = None,
        protocol_version: str = "2024-11-05",
        streaming_endpoints: Optional[dict[str, str]] = None,
    ):
        self.tools = tools
        self.gate = gate
        self.prompts = prompts or PromptRegistry()
        self.resources = resources or ResourceRegistry()
        self.server_info = server_info or {"name": "MCP Gateway", "version": "1.0.0"}
        self.protocol_version = protocol_version
        self.streaming_endpoints = streaming_endpoints or dict(DEFAULT_STREAMING_ENDPOINTS)
        self._routes: dict[str, tuple[Handler, Optional[type[BaseModel]]]] = {}

        self.register("initialize", self._initialize)
        self.register("initialized", self._empty)
        self.register("notifications/initialized", self._empty)
        self.register("ping", self._empty)
        self.register("tools/list", self._tools_list)
        self.register("tools/call", self._tools_call, ToolCallParams)
        self.register("prompts/list", self._prompts_list)
        self.register("prompts/get", self._prompts_get, PromptGetParams)
        self.register("resources/list", self._resources_list)
        self.register("resources/read", self._resources_read, ResourceReadParams)

    def register(self, method: str, handler: Handler, params_model: Optional[type[BaseModel]] = None) -> None:
        self._routes[method] = (handler, params_model)

    # ── Entry point ────────────────────────────────────────────────────────────

    async def handle(
        self,
        raw: Union[bytes, str],
        credentials: Optional[Credentials] = None,
        transport: TransportMode = TransportMode.JSON,
        accepts_sse: bool = False,
        is_disconnected: Optional[DisconnectProbe] = None,
    ) -> DispatchResult:
        try:
            request = decode(raw)
        except ParseError as e:
            logger.warning(f"Dispatcher: parse error: {e}")
            return self._error(e.request_id, PARSE_ERROR, "Parse error", str(e))

        logger.info(f"Dispatcher: {request.method} id={request.id!r} transport={transport.value}")

        if is_notification(request):
            logger.debug(f"Dispatcher: notification {request.method}")
            return NoContent()

        ctx = RequestContext(
            credentials=credentials or Credentials(),
            transport=transport,
            accepts_sse=accepts_sse,
            is_disconnected=is_disconnected,
        )

        decision = self.gate.authorize(request.method, ctx.credentials)
        if not decision.allowed:
            body = encode_error(request.id, AUTHENTICATION_REQUIRED, decision.error.message, decision.error.data)
            return SingleResponse(body, status_code=401, headers={"WWW-Authenticate": 'Bearer realm="mcp"'})

        route = self._routes.get(request.method)
        if route is None:
            return self._error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        handler, params_model = route

        params: Any = request.params
        if params_model is not None:
            try:
                params = self._decode_params(params_model, request.params)
            except ProtocolError as e:
                return self._error(request.id, e.code, e.message, e.data)

        try:
            result = await handler(request, params, ctx)
        except ProtocolError as e:
            return self._error(request.id, e.code, e.message, e.data)
        except Exception as e:
            logger.error(f"Dispatcher: unexpected error in '{request.method}': {e}", exc_info=True)
            return self._error(request.id, INTERNAL_ERROR, "Internal error", f"{type(e).__name__}: {e}")

        if isinstance(result, (StreamResponse, NoContent)):
            return result
        if isinstance(result, ToolCallResult):
            result = result.to_wire()
        return SingleResponse(encode_result(request.id, result))

    # ── Method handlers ────────────────────────────────────────────────────────

    async def _initialize(self, request: JsonRpcRequest, params: Any, ctx: RequestContext) -> dict:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False, "streaming": True},
                "prompts": {"listChanged": False},
                "resources": {"listChanged": False},
                "streaming": {
                    "supported": True,
                    "protocols": ["sse", "chunked-json"],
                    "toolStreaming": True,
                    "endpoints": self.streaming_endpoints,
                },
            },
            "serverInfo": self.server_info,
        }

    async def _empty(self, request: JsonRpcRequest, params: Any, ctx: RequestContext) -> dict:
        return {}

    async def _tools_list(self, request: JsonRpcRequest, params: Any, ctx: RequestContext) -> dict:
        return {"tools": [t.model_dump(by_alias=True) for t in self.tools.list_tools()]}

    async def _tools_call(
        self, request: JsonRpcRequest, params: ToolCallParams, ctx: RequestContext
    ) -> Union[ToolCallResult, StreamResponse]:
        streaming_tool = self.tools.is_streaming(params.name)
        if streaming_tool and ctx.can_stream and params.streaming is not False:
            return self._stream_tool(request.id, params, ctx)

        if params.streaming and not streaming_tool:
            logger.debug(f"Dispatcher: '{params.name}' is not a streaming tool, executing synchronously")

        result = await self.tools.invoke(params.name, params.arguments)
        if streaming_tool:
            result.meta = {
                "streaming": {
                    "available": True,
                    "aggregated": True,
                    "endpoints": self.streaming_endpoints,
                }
            }
        return result

    async def _prompts_list(self, request: JsonRpcRequest, params: Any, ctx: RequestContext) -> dict:
        return {"prompts": self.prompts.list_prompts()}

    async def _prompts_get(self, request: JsonRpcRequest, params: PromptGetParams, ctx: RequestContext) -> dict:
        return self.prompts.get(params.name, params.arguments)

    async def _resources_list(self, request: JsonRpcRequest, params: Any, ctx: RequestContext) -> dict:
        return {"resources": self.resources.list_resources()}

    async def _resources_read(self, request: JsonRpcRequest, params: ResourceReadParams, ctx: RequestContext) -> dict:
        return self.resources.read(params.uri)

    # ── Internals ──────────────────────────────────────────────────────────────

    def _stream_tool(self, request_id: RequestId, params: ToolCallParams, ctx: RequestContext) -> StreamResponse:
        emitter = ChunkEmitter(
            request_id,
            self.tools.invoke_streaming(params.name, params.arguments),
            is_disconnected=ctx.is_disconnected,
        )
        if ctx.transport == TransportMode.CHUNKED:
            return StreamResponse(emitter.chunked_json(), "application/json", dict(CHUNKED_HEADERS))
        return StreamResponse(emitter.sse(tool=params.name), "text/event-stream", dict(SSE_HEADERS))

    @staticmethod
    def _decode_params(model: type[BaseModel], raw: Any) -> BaseModel:
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise InvalidParamsError("Invalid params: expected an object")
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            details = json.loads(e.json(include_url=False))
            raise InvalidParamsError("Invalid params", data=details) from e

    @staticmethod
    def _error(request_id: RequestId, code: int, message: str, data: Any = None) -> SingleResponse:
        return SingleResponse(encode_error(request_id, code, message, data))
