"""JSON-RPC 2.0 envelope: request decoding and response encoding."""

import json
from typing import Any, Optional, Union

from models.jsonrpc import (
    JSONRPC_VERSION,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
)

from .errors import ParseError

_COMPACT = (",", ":")


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not valid JSON
    raise ParseError(f"Invalid JSON: non-finite number {name}")


def _is_valid_id(value: Any) -> bool:
    # bool is a subclass of int; a JSON `true` is not a valid id
    if isinstance(value, bool):
        return False
    return value is None or isinstance(value, (str, int, float))


def decode(raw: Union[bytes, str]) -> JsonRpcRequest:
    """Decode raw request bytes into a JsonRpcRequest.

    Raises:
        ParseError: If the body is not JSON, not an object, has no string
            ``method``, or has an ``id`` that is not a string, number or null.
            ``ParseError.request_id`` holds the id whenever it could be read.
    """
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Request must be a JSON object")

    request_id = data.get("id")
    if not _is_valid_id(request_id):
        raise ParseError(f"id must be string, number, or null, got: {type(request_id).__name__}")

    jsonrpc = data.get("jsonrpc", JSONRPC_VERSION)
    if jsonrpc != JSONRPC_VERSION:
        raise ParseError(f"jsonrpc must be '2.0', got: {jsonrpc!r}", request_id=request_id)

    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise ParseError("Request must have a string 'method' field", request_id=request_id)

    return JsonRpcRequest(
        jsonrpc=jsonrpc,
        id=request_id,
        method=method,
        params=data.get("params"),
    )


def encode_response(response: JsonRpcResponse) -> bytes:
    return json.dumps(response.to_dict(), separators=_COMPACT, default=str).encode("utf-8")


def encode_result(request_id: RequestId, result: Any) -> bytes:
    return encode_response(JsonRpcResponse(id=request_id, result=result))


def encode_error(
    request_id: RequestId,
    code: int,
    message: str,
    data: Any = None,
) -> bytes:
    error = JsonRpcError(code=code, message=message, data=data)
    return encode_response(JsonRpcResponse(id=request_id, error=error))


# ── Client side ───────────────────────────────────────────────────────────────

def encode_request(request: JsonRpcRequest) -> bytes:
    """Serialize a request. A null id is written explicitly."""
    data: dict[str, Any] = {
        "jsonrpc": request.jsonrpc,
        "id": request.id,
        "method": request.method,
    }
    if request.params is not None:
        data["params"] = request.params
    return json.dumps(data, separators=_COMPACT).encode("utf-8")


def decode_response(raw: Union[bytes, str]) -> JsonRpcResponse:
    """Parse a response body, enforcing exactly one of result/error."""
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Response must be a JSON object")
    if "id" not in data:
        raise ParseError("Response must have 'id' field")
    if not _is_valid_id(data["id"]):
        raise ParseError("Response id must be string, number, or null")

    has_result = "result" in data
    has_error = "error" in data
    if has_result == has_error:
        raise ParseError("Response must have exactly one of 'result' or 'error'")

    error: Optional[JsonRpcError] = None
    if has_error:
        raw_error = data["error"]
        if not isinstance(raw_error, dict) or "code" not in raw_error or "message" not in raw_error:
            raise ParseError("error must be an object with 'code' and 'message'")
        error = JsonRpcError(
            code=raw_error["code"],
            message=raw_error["message"],
            data=raw_error.get("data"),
        )

    return JsonRpcResponse(
        jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
        id=data["id"],
        result=data.get("result"),
        error=error,
    )
