"""
Tool registry — the ToolInvoker behind tools/list and tools/call.

Architecture:
  ToolRegistry
    ├── _tools            — name → MCPTool (schema + streaming flag + handler)
    ├── invoke()          — run to completion, always returns a ToolCallResult
    ├── invoke_streaming()— async iterator of fragments for streaming tools
    └── call log          — bounded history of invocations (GET /mcp/call-log)

Tool failures never escape as exceptions from invoke(): an unknown name or a
raising handler becomes an `isError` result, so the client can tell "the
protocol worked, the tool failed" apart from a JSON-RPC error.
"""
import asyncio
import inspect
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Protocol

from models.tools import ToolCallRecord, ToolCallResult, ToolDescriptor

from .errors import ToolExecutionError

logger = logging.getLogger(__name__)

EMPTY_SCHEMA = {"type": "object", "properties": {}, "required": [], "additionalProperties": False}


class MCPTool(ABC):
    """Base class for all tools."""

    name: str
    description: str
    input_schema: dict = EMPTY_SCHEMA
    streaming: bool = False

    @abstractmethod
    async def execute(self, arguments: dict) -> Any:
        """Run the tool. May return a str, a JSON value or a ToolCallResult."""

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            streaming=self.streaming,
        )


class StreamingTool(MCPTool):
    """A tool that produces its result as a sequence of fragments."""

    streaming = True

    @abstractmethod
    def stream(self, arguments: dict) -> AsyncIterator[Any]:
        """Async generator of fragments."""

    async def execute(self, arguments: dict) -> Any:
        return aggregate_fragments([fragment async for fragment in self.stream(arguments)])


def aggregate_fragments(fragments: list[Any]) -> ToolCallResult:
    """Fold a complete fragment sequence into one result for non-streaming transports."""
    parts = []
    for fragment in fragments:
        if isinstance(fragment, str):
            parts.append(fragment)
        elif isinstance(fragment, dict) and isinstance(fragment.get("text"), str):
            parts.append(fragment["text"])
        else:
            parts.append(json.dumps(fragment, default=str))
    result = ToolCallResult.text("\n".join(parts))
    result.structured_content = {"items": json.loads(json.dumps(fragments, default=str))}
    return result


class FunctionTool(MCPTool):
    """Wraps a plain sync or async callable taking the arguments dict."""

    def __init__(
        self,
        name: str,
        description: str,
        handler: Callable[[dict], Any],
        input_schema: Optional[dict] = None,
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema or EMPTY_SCHEMA
        self._handler = handler

    async def execute(self, arguments: dict) -> Any:
        result = self._handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


class ToolInvoker(Protocol):
    def list_tools(self) -> list[ToolDescriptor]: ...

    def is_streaming(self, name: str) -> bool: ...

    async def invoke(self, name: str, arguments: dict) -> ToolCallResult: ...

    def invoke_streaming(self, name: str, arguments: dict) -> AsyncIterator[Any]: ...


def to_tool_result(value: Any) -> ToolCallResult:
    """Normalize a handler return value into a ToolCallResult."""
    if isinstance(value, ToolCallResult):
        return value
    if isinstance(value, str):
        return ToolCallResult.text(value)
    text = json.dumps(value, indent=2, default=str)
    structured = value if isinstance(value, dict) else {"items": value}
    result = ToolCallResult.text(text)
    result.structured_content = json.loads(json.dumps(structured, default=str))
    return result


class ToolRegistry:
    MAX_CALL_LOG = 500  # keep last N calls in memory

    def __init__(self, tools: Iterable[MCPTool] = ()):
        self._tools: dict[str, MCPTool] = {}
        self._call_log: list[ToolCallRecord] = []
        for tool in tools:
            self.register(tool)

    # ── Registration ───────────────────────────────────────────────────────────

    def register(self, tool: MCPTool) -> None:
        if tool.name in self._tools:
            logger.warning(f"ToolRegistry: replacing tool '{tool.name}'")
        self._tools[tool.name] = tool
        logger.debug(f"ToolRegistry: registered '{tool.name}' (streaming={tool.streaming})")

    def register_function(
        self,
        name: str,
        description: str,
        handler: Callable[[dict], Any],
        input_schema: Optional[dict] = None,
    ) -> None:
        self.register(FunctionTool(name, description, handler, input_schema))

    # ── Discovery ──────────────────────────────────────────────────────────────

    def get(self, name: str) -> Optional[MCPTool]:
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDescriptor]:
        return [tool.to_descriptor() for tool in self._tools.values()]

    def is_streaming(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.streaming

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    # ── Invocation ─────────────────────────────────────────────────────────────

    async def invoke(self, name: str, arguments: dict) -> ToolCallResult:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"ToolRegistry: unknown tool '{name}'")
            return ToolCallResult.error(f"Error: Unknown tool: {name}")

        record = self._new_record(name, arguments, streaming=False)
        start = time.monotonic()
        try:
            result = to_tool_result(await tool.execute(arguments))
        except ToolExecutionError as e:
            record.fail(str(e), self._elapsed(start))
            logger.info(f"ToolRegistry: [{record.call_id}] {name} reported error: {e}")
            result = ToolCallResult.error(f"Error: {e}")
        except Exception as e:
            record.fail(str(e), self._elapsed(start))
            logger.error(f"ToolRegistry: [{record.call_id}] {name} failed in {record.elapsed_ms}ms: {e}")
            result = ToolCallResult.error(f"Error executing tool '{name}': {e}")
        else:
            if result.is_error:
                record.fail(result.content[0].text if result.content else "error", self._elapsed(start))
            else:
                record.complete(self._elapsed(start))
                logger.info(f"ToolRegistry: [{record.call_id}] {name} completed in {record.elapsed_ms}ms")

        self._store(record)
        return result

    async def invoke_streaming(self, name: str, arguments: dict) -> AsyncIterator[Any]:
        tool = self._tools.get(name)
        if not isinstance(tool, StreamingTool):
            raise ToolExecutionError(f"Tool '{name}' does not support streaming")

        record = self._new_record(name, arguments, streaming=True)
        start = time.monotonic()
        fragments = 0
        try:
            async for fragment in tool.stream(arguments):
                fragments += 1
                yield fragment
        except (asyncio.CancelledError, GeneratorExit):
            record.fail(f"cancelled after {fragments} fragment(s)", self._elapsed(start))
            raise
        except Exception as e:
            record.fail(str(e), self._elapsed(start))
            logger.error(f"ToolRegistry: [{record.call_id}] stream {name} failed after {fragments} fragment(s): {e}")
            raise
        else:
            record.complete(self._elapsed(start))
            logger.info(
                f"ToolRegistry: [{record.call_id}] stream {name} sent {fragments} fragment(s) "
                f"in {record.elapsed_ms}ms"
            )
        finally:
            self._store(record)

    # ── Call log ───────────────────────────────────────────────────────────────

    def get_call_log(self, limit: int = 50) -> list[dict]:
        """Return recent calls, most recent first."""
        records = list(reversed(self._call_log))
        return [r.model_dump(mode="json", by_alias=True) for r in records[:limit]]

    # ── Internals ──────────────────────────────────────────────────────────────

    @staticmethod
    def _new_record(name: str, arguments: dict, streaming: bool) -> ToolCallRecord:
        return ToolCallRecord(
            call_id=f"call-{str(uuid.uuid4())[:8]}",
            tool_name=name,
            arguments=arguments,
            streaming=streaming,
        )

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _store(self, record: ToolCallRecord) -> None:
        self._call_log.append(record)
        if len(self._call_log) > self.MAX_CALL_LOG:
            self._call_log = self._call_log[-self.MAX_CALL_LOG :]
