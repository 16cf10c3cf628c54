"""
Gateway exception taxonomy.

  GatewayError
    ├── ProtocolError          — becomes a JSON-RPC `error` object
    │     ├── ParseError
    │     └── InvalidParamsError
    ├── ToolExecutionError     — becomes an `isError` tool result
    ├── ProviderError          — OAuth backend refused the flow (non-retriable)
    │     └── ProviderUnavailable  — OAuth backend unreachable (retriable)
    └── ChannelClosedError     — fragment channel closed twice / written after close

Authentication failures are not exceptions: the AuthGate returns a Deny
decision that the dispatcher turns into a -32001 response.
"""
from typing import Any, Optional, Union

from models.jsonrpc import INVALID_PARAMS, PARSE_ERROR


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ProtocolError(GatewayError):
    code: int = PARSE_ERROR

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ParseError(ProtocolError):
    """Request bytes are not a decodable JSON-RPC request."""

    code = PARSE_ERROR

    def __init__(self, message: str, request_id: Optional[Union[str, int, float]] = None):
        super().__init__(message)
        self.request_id = request_id


class InvalidParamsError(ProtocolError):
    code = INVALID_PARAMS


class ToolExecutionError(GatewayError):
    """Raised by a tool to report a user-facing failure."""


class ProviderError(GatewayError):
    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class ProviderUnavailable(ProviderError):
    pass


class ChannelClosedError(GatewayError):
    pass
