from .tool_registry import (
    ToolCategory,
    ToolDefinition,
    ToolExecutionContext,
    ToolRegistry,
    ToolResult,
)
