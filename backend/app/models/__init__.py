# MCP Gateway - Models Package
from .jsonrpc import JsonRpcRequest, JsonRpcResponse, JsonRpcError
from .tools import ToolDescriptor, ToolCallParams, ToolCallResult, ToolCallRecord, TextContent
from .auth import AuthSession, DeviceCodeChallenge, PollOutcome, SessionState

__all__ = [
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonRpcError",
    "ToolDescriptor",
    "ToolCallParams",
    "ToolCallResult",
    "ToolCallRecord",
    "TextContent",
    "AuthSession",
    "DeviceCodeChallenge",
    "PollOutcome",
    "SessionState",
]
