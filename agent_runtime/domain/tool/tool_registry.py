from typing import Dict, List, Any, Optional, Callable, Awaitable, Iterable
import asyncio
import time
from enum import Enum
import structlog
from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.infrastructure.observability.langfuse_tracing import WorkflowTracer
from agent_runtime.infrastructure.observability.logging import workflow_logger

logger = structlog.get_logger(__name__)


class ToolCategory(str, Enum):
    DATA = "data"
    ACTION = "action"
    REASONING = "reasoning"


class ToolExecutionContext(BaseModel):
    """Who is calling a tool, and the ids placeholders resolve to"""
    agent_id: str
    trigger_id: Optional[str] = None
    conversation_id: Optional[str] = None
    trace_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


ToolHandler = Callable[[Dict[str, Any], ToolExecutionContext], Awaitable[Any]]


class ToolDefinition(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    category: ToolCategory
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: ToolHandler


class ToolResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    execution_time: float = Field(0.0, description="Milliseconds")
    retryable: bool = True


# Placeholder strings a model may emit instead of concrete ids
_PLACEHOLDERS = {
    "event.userId": "user_id",
    "event.user.id": "user_id",
    "event.mentionerId": "user_id",
    "event.senderId": "user_id",
    "subject.userId": "user_id",
    "subject.user.id": "user_id",
    "event.postId": "post_id",
    "event.post.id": "post_id",
    "subject.postId": "post_id",
    "subject.id": "subject_id",
}


def resolve_placeholders(value: Any, context: ToolExecutionContext) -> Any:
    if isinstance(value, list):
        return [resolve_placeholders(item, context) for item in value]
    if isinstance(value, dict):
        return {key: resolve_placeholders(child, context) for key, child in value.items()}
    if isinstance(value, str):
        field = _PLACEHOLDERS.get(value.strip())
        if field and context.metadata.get(field):
            return context.metadata[field]
    return value


class ToolRegistry:
    """Registry for tools callable by the Reason and Act nodes"""

    def __init__(self, tracer: Optional[WorkflowTracer] = None):
        self.tools: Dict[str, ToolDefinition] = {}
        self.tracer = tracer

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool, replacing any tool of the same name"""

        self.tools[tool.name] = tool
        logger.debug("Registered tool", tool_name=tool.name, category=tool.category.value)

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self.tools.get(name)

    def get_all_tools(self) -> List[ToolDefinition]:
        return list(self.tools.values())

    def get_tools_by_category(self, category: ToolCategory) -> List[ToolDefinition]:
        return [tool for tool in self.tools.values() if tool.category == category]

    def as_llm_tools(
        self,
        categories: Optional[Iterable[ToolCategory]] = None,
        names: Optional[Iterable[str]] = None
    ) -> List[Dict[str, Any]]:
        """Function schemas accepted by a chat model's bind_tools"""

        allowed_categories = set(categories) if categories is not None else None
        allowed_names = set(names) if names is not None else None

        schemas = []
        for tool in self.tools.values():
            if allowed_categories is not None and tool.category not in allowed_categories:
                continue
            if allowed_names is not None and tool.name not in allowed_names:
                continue
            schemas.append({
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": {
                        "type": "object",
                        "properties": tool.parameters.get("properties", {}),
                        "required": tool.parameters.get("required", []),
                    },
                },
            })
        return schemas

    async def execute_tool(
        self,
        name: str,
        input_data: Dict[str, Any],
        context: ToolExecutionContext,
        timeout_ms: Optional[float] = None
    ) -> ToolResult:
        """Run one tool. Failures come back as a failed ToolResult, never raised."""

        start_time = time.perf_counter()

        tool = self.get_tool(name)
        if tool is None:
            result = ToolResult(
                success=False,
                error=f"Tool not found: {name}",
                execution_time=(time.perf_counter() - start_time) * 1000,
                retryable=False,
            )
            self._record(name, input_data, context, result)
            return result

        arguments = resolve_placeholders(input_data or {}, context)

        try:
            call = tool.handler(arguments, context)
            if timeout_ms is not None:
                data = await asyncio.wait_for(call, timeout=timeout_ms / 1000)
            else:
                data = await call
            result = ToolResult(success=True, data=data, execution_time=(time.perf_counter() - start_time) * 1000)
        except asyncio.TimeoutError:
            result = ToolResult(
                success=False,
                error=f"Tool {name} timed out after {timeout_ms:.0f}ms",
                execution_time=(time.perf_counter() - start_time) * 1000,
            )
        except Exception as e:
            result = ToolResult(
                success=False,
                error=str(e) or type(e).__name__,
                execution_time=(time.perf_counter() - start_time) * 1000,
            )

        self._record(name, arguments, context, result)
        return result

    async def execute_tool_chain(
        self,
        tool_calls: List[Dict[str, Any]],
        context: ToolExecutionContext,
        timeout_ms: Optional[float] = None
    ) -> List[ToolResult]:
        """Execute calls in order, stopping at the first failure"""

        results = []
        for call in tool_calls:
            result = await self.execute_tool(call["name"], call.get("arguments", {}), context, timeout_ms)
            results.append(result)
            if not result.success:
                logger.warning("Tool failed, stopping chain", tool_name=call["name"], error=result.error)
                break
        return results

    def _record(self, name: str, arguments: Dict[str, Any], context: ToolExecutionContext, result: ToolResult) -> None:
        workflow_logger.log_tool_execution(
            tool_name=name,
            agent_id=context.agent_id,
            input_data=arguments,
            duration_ms=result.execution_time,
            success=result.success,
            error=result.error
        )
        if self.tracer:
            self.tracer.trace_tool_execution(
                context.trace_id, name, arguments, result.success, result.execution_time, result.error
            )
