from unittest.mock import MagicMock

import pytest

from agent_runtime.infrastructure.config import LangfuseSettings
from agent_runtime.infrastructure.observability.langfuse_tracing import WorkflowTracer

from helpers import decision, make_scope, scripted_model


@pytest.fixture
def langfuse():
    client = MagicMock()
    root = client.start_span.return_value
    root.trace_id = "trace-abc"
    return client


def test_disabled_without_credentials():
    tracer = WorkflowTracer.from_settings(LangfuseSettings())

    assert tracer.enabled is False
    trace_id = tracer.start_trace(make_scope())
    assert len(trace_id) == 32
    # all no-ops
    tracer.trace_error(trace_id, "observe", "boom")
    tracer.end_node(tracer.start_node(trace_id, "observe", 1), {})
    tracer.end_trace(trace_id, True, 1.0, 0)
    tracer.flush()


def test_start_trace_opens_root_span(langfuse):
    tracer = WorkflowTracer(langfuse)

    trace_id = tracer.start_trace(make_scope())

    assert trace_id == "trace-abc"
    kwargs = langfuse.start_span.call_args.kwargs
    assert kwargs["name"] == "agent_workflow_execution"
    assert kwargs["input"]["trigger"] == "event:chat"
    root = langfuse.start_span.return_value
    assert root.update_trace.call_args.kwargs["user_id"] == "agent-1"
    assert root.update_trace.call_args.kwargs["session_id"] == "agent_agent-1"


def test_end_trace_closes_root_span(langfuse):
    tracer = WorkflowTracer(langfuse)
    trace_id = tracer.start_trace(make_scope())
    root = langfuse.start_span.return_value

    tracer.end_trace(trace_id, False, 12.5, 0)

    assert root.update.call_args.kwargs["level"] == "ERROR"
    assert root.update.call_args.kwargs["output"]["duration_ms"] == 12.5
    root.end.assert_called_once()
    # spans are released once ended
    tracer.end_trace(trace_id, False, 12.5, 0)
    root.end.assert_called_once()


def test_tracing_errors_never_escape(langfuse):
    langfuse.start_span.side_effect = RuntimeError("langfuse unreachable")
    tracer = WorkflowTracer(langfuse)

    trace_id = tracer.start_trace(make_scope())

    assert len(trace_id) == 32


def test_node_and_tool_spans_hang_off_the_root(langfuse):
    tracer = WorkflowTracer(langfuse)
    trace_id = tracer.start_trace(make_scope())
    root = langfuse.start_span.return_value
    root.start_span.side_effect = lambda **kwargs: MagicMock()

    node_span = tracer.start_node(trace_id, "reason", 2)
    tracer.end_node(node_span, {"next_step": "act"}, error="bad json")
    tracer.trace_tool_execution(trace_id, "get_post", {"post_id": "p"}, False, 3.0, "not found")

    names = [call.kwargs["name"] for call in root.start_span.call_args_list]
    assert names == ["node:reason", "tool:get_post"]
    assert node_span.update.call_args.kwargs["status_message"] == "bad json"
    assert node_span.end.called


@pytest.mark.asyncio
async def test_orchestrator_run_is_traced(build_orchestrator, langfuse):
    tracer = WorkflowTracer(langfuse)
    orchestrator = build_orchestrator(scripted_model(decision("like", {"postId": "post-1"})), tracer=tracer)

    result = await orchestrator.execute(make_scope())

    assert result.state["metadata"]["trace_id"] == "trace-abc"
    root = langfuse.start_span.return_value
    names = [call.kwargs["name"] for call in root.start_span.call_args_list]
    assert names[:3] == ["node:observe", "node:reason", "node:act"]
    assert "node:loop_check" in names
    assert root.end.called
    metadata_updates = [c.kwargs["metadata"] for c in root.update.call_args_list if "metadata" in c.kwargs]
    assert metadata_updates[-1]["completion_reason"] == "goal_achieved"
