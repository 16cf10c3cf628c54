from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr
from typing import Any, Optional, Union

JSONRPC_VERSION = "2.0"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Application-reserved: protected method called without valid credentials
AUTHENTICATION_REQUIRED = -32001

# Strict types keep `true` from being coerced into an integer id
RequestId = Optional[Union[StrictStr, StrictInt, StrictFloat]]


class JsonRpcRequest(BaseModel):
    jsonrpc: str = JSONRPC_VERSION
    id: RequestId = None
    method: str
    params: Any = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class JsonRpcResponse(BaseModel):
    jsonrpc: str = JSONRPC_VERSION
    id: RequestId = None
    result: Any = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.to_dict()
        else:
            data["result"] = self.result
        return data
