"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from opti_context.types import LLMRequest, ToolTrace


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[LLMRequest]]
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> LLMRequest:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec

    async def aexecute(self, name: str, payload: dict[str, Any]) -> LLMRequest:
        return await self._execute_spec(self.get(name), payload)

    def execute(self, name: str, payload: dict[str, Any]) -> LLMRequest:
        """Synchronous entry point; must not be called from a running event loop."""
        return asyncio.run(self.aexecute(name, payload))

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                    coroutine=self._build_coroutine(spec),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _build_function(self, spec: ToolSpec) -> Callable[..., dict[str, Any]]:
        def _callable(**kwargs: Any) -> dict[str, Any]:
            return asyncio.run(self._execute_spec(spec, kwargs)).to_payload()

        return _callable

    def _build_coroutine(self, spec: ToolSpec) -> Callable[..., Awaitable[dict[str, Any]]]:
        async def _coroutine(**kwargs: Any) -> dict[str, Any]:
            output = await self._execute_spec(spec, kwargs)
            return output.to_payload()

        return _coroutine

    async def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> LLMRequest:
        start = perf_counter()
        output = await spec.invoke(payload)
        latency_ms = (perf_counter() - start) * 1000.0

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=json.dumps(output.to_payload(), default=str)[:320],
                    latency_ms=latency_ms,
                )
            )
        return output
