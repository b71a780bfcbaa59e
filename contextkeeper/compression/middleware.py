"""OutputCompressionMiddleware for compressing oversized tool results.

This middleware:
1. Intercepts tool results and compresses ones over the target size
2. Escrows the full output so nothing is lost
3. Provides tools for retrieving escrowed output
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from langchain.agents.middleware.types import (
    AgentMiddleware,
    ModelRequest,
    ModelResponse,
)
from langchain.tools.tool_node import ToolCallRequest
from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool, StructuredTool
from langgraph.types import Command

from contextkeeper.compression.compressor import ANALYZE_PROJECT_TOOL, OutputCompressor
from contextkeeper.compression.config import CompressionConfig
from contextkeeper.compression.output_store import OutputStore

logger = logging.getLogger(__name__)

RETRIEVAL_TOOL_NAMES = frozenset({"retrieve_output", "list_stored_outputs"})

COMPRESSION_SYSTEM_PROMPT = """## Compressed Tool Output

Large tool outputs are compressed before you see them. Critical findings are
always shown in full; the rest is grouped into patterns. The full output is
stored under the `full_data_ref` in the compressed result.

- **retrieve_output**: Fetch a stored output by reference ID, optionally filtered
  with a query like "severity:critical", "file:deployment.yaml" or "code:DL3008"
- **list_stored_outputs**: List every stored output in this session

Retrieve details only when you need them.
"""


class OutputCompressionMiddleware(AgentMiddleware):
    """Middleware for compressing verbose tool output.

    Args:
        config: Compression configuration. If None, uses defaults.
        store: Output store to escrow into. If None, a fresh store is created.
        system_prompt: Custom system prompt. If None, uses the default.

    Example:
        ```python
        from contextkeeper import CompressionConfig, OutputCompressionMiddleware

        middleware = OutputCompressionMiddleware(
            config=CompressionConfig(target_size_bytes=8_000)
        )
        agent = create_agent(model, tools=tools, middleware=[middleware])
        ```
    """

    def __init__(
        self,
        config: CompressionConfig | None = None,
        store: OutputStore | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.config = config or CompressionConfig()
        self.store = store if store is not None else OutputStore()
        self.compressor = OutputCompressor(self.store, self.config)
        self._custom_system_prompt = system_prompt
        self._compressed_count = 0

        self.tools = self._build_tools()

    def _build_tools(self) -> list[BaseTool]:
        """Build the retrieval tools."""
        return [
            self._build_retrieve_output_tool(),
            self._build_list_stored_outputs_tool(),
        ]

    def _build_retrieve_output_tool(self) -> BaseTool:
        """Build the retrieve_output tool."""
        def retrieve_output(ref_id: str, query: str | None = None) -> str:
            """Retrieve a stored tool output by reference ID.

            Args:
                ref_id: The reference ID from a compressed result's full_data_ref.
                query: Optional filter, e.g. "severity:critical", "file:path",
                    "code:DL3008", or free text to match anywhere.

            Returns:
                The stored output or the matching issues, as JSON.
            """
            result = self.store.retrieve(ref_id, query)
            if result is None:
                return f"Error: Output {ref_id} not found. Use list_stored_outputs to see available outputs."
            if isinstance(result, str):
                return result
            return json.dumps(result, indent=2, ensure_ascii=False)

        return StructuredTool.from_function(
            name="retrieve_output",
            description="Retrieve a stored tool output by reference ID, optionally filtered by a query.",
            func=retrieve_output,
        )

    def _build_list_stored_outputs_tool(self) -> BaseTool:
        """Build the list_stored_outputs tool."""
        def list_stored_outputs() -> str:
            """List every tool output stored in this session.

            Returns:
                The session registry of retrievable outputs.
            """
            return self.store.render_registry().strip() or "No outputs stored yet."

        return StructuredTool.from_function(
            name="list_stored_outputs",
            description="List every stored tool output available for retrieval.",
            func=list_stored_outputs,
        )

    def wrap_tool_call(
        self,
        request: ToolCallRequest,
        handler: Callable[[ToolCallRequest], ToolMessage | Command],
    ) -> ToolMessage | Command:
        """Intercept tool results and compress oversized ones.

        Args:
            request: The tool call request.
            handler: The handler to call.

        Returns:
            The tool result, possibly with compressed content.
        """
        result = handler(request)
        return self._process_tool_result(result, request)

    async def awrap_tool_call(
        self,
        request: ToolCallRequest,
        handler: Callable[[ToolCallRequest], Awaitable[ToolMessage | Command]],
    ) -> ToolMessage | Command:
        """(Async) Intercept tool results and compress oversized ones."""
        result = await handler(request)
        return self._process_tool_result(result, request)

    def _process_tool_result(
        self,
        result: ToolMessage | Command,
        request: ToolCallRequest,
    ) -> ToolMessage | Command:
        """Compress a tool result if it is over the target size."""
        tool_name = request.tool_call.get("name", "")
        if tool_name in RETRIEVAL_TOOL_NAMES:
            return result

        if isinstance(result, Command):
            return result

        content = result.content
        if not isinstance(content, str):
            return result
        if len(content.encode("utf-8")) <= self.config.target_size_bytes:
            return result

        payload = _parse_content(content)
        if tool_name == ANALYZE_PROJECT_TOOL:
            compressed = self.compressor.compress_analysis(payload, serialized=content)
        else:
            compressed = self.compressor.compress(payload, tool_name or "tool", serialized=content)

        self._compressed_count += 1
        logger.info(f"Compressed {tool_name} result: {len(content):,} → {len(compressed):,} chars")
        return ToolMessage(
            content=compressed,
            tool_call_id=result.tool_call_id,
            name=result.name,
        )

    def wrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], ModelResponse],
    ) -> ModelResponse:
        """Add the retrieval tools and system prompt to the model call."""
        request = self._add_tools_to_request(request)
        request = self._add_system_prompt(request)
        return handler(request)

    async def awrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        """(Async) Add the retrieval tools and system prompt to the model call."""
        request = self._add_tools_to_request(request)
        request = self._add_system_prompt(request)
        return await handler(request)

    def _add_system_prompt(self, request: ModelRequest) -> ModelRequest:
        system_prompt = self._custom_system_prompt or COMPRESSION_SYSTEM_PROMPT
        new_prompt = (
            request.system_prompt + "\n\n" + system_prompt
            if request.system_prompt
            else system_prompt
        )
        return request.override(system_prompt=new_prompt)

    def _add_tools_to_request(self, request: ModelRequest) -> ModelRequest:
        existing_tools = list(request.tools) if request.tools else []
        existing_names = {t.name for t in existing_tools if hasattr(t, "name")}

        for tool in self.tools:
            if tool.name not in existing_names:
                existing_tools.append(tool)

        return request.override(tools=existing_tools)

    def get_compressed_count(self) -> int:
        """Get the number of tool results compressed so far."""
        return self._compressed_count


def _parse_content(content: str) -> Any:
    """Parse JSON tool content, keeping plain text as-is."""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return content
