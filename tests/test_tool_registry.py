from unittest.mock import MagicMock

import pytest

from agent_runtime.domain.tool.tool_registry import (
    ToolCategory,
    ToolExecutionContext,
    ToolRegistry,
    resolve_placeholders,
)

from helpers import make_tool


@pytest.fixture
def context():
    return ToolExecutionContext(
        agent_id="agent-1",
        trace_id="trace-1",
        metadata={"user_id": "human-1", "post_id": "post-1", "subject_id": "post-1"},
    )


def test_register_and_lookup():
    registry = ToolRegistry()
    registry.register_tool(make_tool("reply"))
    registry.register_tool(make_tool("get_post", ToolCategory.DATA))

    assert registry.get_tool("reply").category == ToolCategory.ACTION
    assert registry.get_tool("missing") is None
    assert [t.name for t in registry.get_all_tools()] == ["reply", "get_post"]
    assert [t.name for t in registry.get_tools_by_category(ToolCategory.DATA)] == ["get_post"]


def test_registering_again_replaces():
    registry = ToolRegistry()
    registry.register_tool(make_tool("reply"))
    registry.register_tool(make_tool("reply", ToolCategory.REASONING))

    assert len(registry.get_all_tools()) == 1
    assert registry.get_tool("reply").category == ToolCategory.REASONING


def test_llm_tool_schemas(tools):
    data_only = tools.as_llm_tools(categories=[ToolCategory.DATA])
    assert data_only == [{
        "type": "function",
        "function": {
            "name": "get_post",
            "description": "get_post tool",
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    }]

    named = tools.as_llm_tools(names=["like", "reply"])
    assert [s["function"]["name"] for s in named] == ["reply", "like"]
    assert len(tools.as_llm_tools()) == 6


def test_placeholders_resolve_from_context(context):
    resolved = resolve_placeholders(
        {"userId": "event.userId", "targets": ["subject.id", "literal"], "nested": {"post": " event.postId "}},
        context,
    )

    assert resolved == {"userId": "human-1", "targets": ["post-1", "literal"], "nested": {"post": "post-1"}}


def test_unresolvable_placeholder_is_left_alone():
    context = ToolExecutionContext(agent_id="agent-1")

    assert resolve_placeholders({"userId": "event.userId"}, context) == {"userId": "event.userId"}


@pytest.mark.asyncio
async def test_execute_success(context):
    seen = []

    async def handler(args, ctx):
        seen.append((args, ctx.agent_id))
        return {"ok": True}

    registry = ToolRegistry()
    registry.register_tool(make_tool("follow", handler=handler))

    result = await registry.execute_tool("follow", {"userId": "event.userId"}, context)

    assert result.success
    assert result.data == {"ok": True}
    assert result.error is None
    assert result.execution_time >= 0
    assert seen == [({"userId": "human-1"}, "agent-1")]


@pytest.mark.asyncio
async def test_execute_unknown_tool(context):
    result = await ToolRegistry().execute_tool("nope", {}, context)

    assert result.success is False
    assert result.error == "Tool not found: nope"
    assert result.retryable is False


@pytest.mark.asyncio
async def test_handler_errors_become_failed_results(context):
    async def broken(args, ctx):
        raise ValueError("bad input")

    registry = ToolRegistry()
    registry.register_tool(make_tool("reply", handler=broken))

    result = await registry.execute_tool("reply", {}, context)

    assert result.success is False
    assert result.error == "bad input"
    assert result.retryable is True


@pytest.mark.asyncio
async def test_tool_chain_stops_at_first_failure(context):
    calls = []

    async def broken(args, ctx):
        raise RuntimeError("nope")

    registry = ToolRegistry()
    registry.register_tool(make_tool("a", calls=calls))
    registry.register_tool(make_tool("b", handler=broken, calls=calls))
    registry.register_tool(make_tool("c", calls=calls))

    results = await registry.execute_tool_chain(
        [{"name": "a", "arguments": {"x": 1}}, {"name": "b"}, {"name": "c"}],
        context,
    )

    assert [r.success for r in results] == [True, False]
    assert [name for name, _ in calls] == ["a", "b"]


@pytest.mark.asyncio
async def test_executions_are_traced(context):
    tracer = MagicMock()
    registry = ToolRegistry(tracer=tracer)
    registry.register_tool(make_tool("like"))

    await registry.execute_tool("like", {"postId": "event.postId"}, context)

    tracer.trace_tool_execution.assert_called_once()
    args = tracer.trace_tool_execution.call_args.args
    assert args[0] == "trace-1"
    assert args[1] == "like"
    assert args[2] == {"postId": "post-1"}
    assert args[3] is True
