"""
MCP gateway core — JSON-RPC dispatch, auth gating, device-code sessions
and streaming tool results.
"""
from .auth_gate import AuthGate, Credentials, credentials_from_headers
from .container import Gateway, build_gateway, get_gateway
from .device_auth import DeviceAuthSessionStore
from .dispatcher import Dispatcher, NoContent, SingleResponse, StreamResponse, TransportMode
from .tool_registry import ToolRegistry

__all__ = [
    "AuthGate",
    "Credentials",
    "credentials_from_headers",
    "Gateway",
    "build_gateway",
    "get_gateway",
    "DeviceAuthSessionStore",
    "Dispatcher",
    "NoContent",
    "SingleResponse",
    "StreamResponse",
    "TransportMode",
    "ToolRegistry",
]
