import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel

from agent_runtime.domain.models.memory import ConversationMessage, MemoryType
from agent_runtime.domain.models.scope import DataScopeConfig, MemoriesScope
from agent_runtime.domain.models.workflow_state import (
    LoopContinueReason,
    PlanStep,
    WorkflowObservation,
    WorkflowReasoning,
    WorkflowStep,
)
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.nodes.reason import ReasonNode, parse_decision, tool_cache_key
from agent_runtime.domain.tool.tool_registry import ToolRegistry

from helpers import decision, make_scope, make_state, make_tool, scripted_model, tool_call_message


def _observed_state(**overrides):
    state = make_state(
        observation=WorkflowObservation(context_summary="TRIGGER: event:chat\nPOSTS: 1"),
        step=WorkflowStep.REASON,
        actor_identity={"order_chaos": 0.4},
    )
    state.update(overrides)
    return state


class TestParseDecision:

    def test_fenced_json_block(self):
        parsed = parse_decision(decision("reply", {"content": "hey"}, confidence=0.8, reasoning="be kind"))

        assert parsed["action"] == "reply"
        assert parsed["args"] == {"content": "hey"}
        assert parsed["reasoning"] == "be kind"
        assert parsed["confidence"] == 0.8
        assert parsed["plan"] == []

    def test_fence_without_language_tag(self):
        parsed = parse_decision('```\n{"action": "like", "args": {"postId": "p"}}\n```')

        assert parsed["action"] == "like"
        assert parsed["args"] == {"postId": "p"}
        assert parsed["confidence"] == 0.5

    def test_bare_object_inside_prose(self):
        parsed = parse_decision('I will go with {"action": "follow", "confidence": 2} for now.')

        assert parsed["action"] == "follow"
        assert parsed["confidence"] == 1.0

    @pytest.mark.parametrize("content", [
        "I am not sure what to do.",
        '{"action": like}',
        "```json\n[1, 2, 3]\n```",
    ])
    def test_unparseable_output_becomes_ignore(self, content):
        parsed = parse_decision(content)

        assert parsed["action"] == "ignore"
        assert parsed["confidence"] == 0.3
        assert parsed["args"] == {"reason": "Could not parse decision"}

    def test_plan_factors_and_alternatives(self):
        content = """```json
        {
          "action": "create_post",
          "confidence": "high",
          "plan": [
            {"tool": "create_post", "args": {"content": "hi"}, "description": "announce"},
            {"description": "no tool here"},
            {"step": 7, "tool": "like", "args": "not a dict"}
          ],
          "factors": {"morale": 0.7, "flag": true, "label": "x"},
          "alternatives": ["ignore", "", "reply"]
        }
        ```"""

        parsed = parse_decision(content)

        assert parsed["confidence"] == 0.5
        assert [(s.step, s.tool, s.args) for s in parsed["plan"]] == [
            (1, "create_post", {"content": "hi"}),
            (7, "like", {}),
        ]
        assert parsed["factors"] == {"morale": 0.7}
        assert parsed["alternatives"] == ["ignore", "reply"]


def test_tool_cache_key_is_order_independent():
    assert tool_cache_key("get_post", {"a": 1, "b": 2}) == tool_cache_key("get_post", {"b": 2, "a": 1})


@pytest.mark.asyncio
async def test_decides_without_tools_when_none_are_data_tools():
    tools = ToolRegistry()
    tools.register_tool(make_tool("reply"))
    model = scripted_model(decision("reply", {"content": "hi"}, confidence=0.7))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_observed_state())

    assert update["step"] == WorkflowStep.ACT
    reasoning = update["reasoning"]
    assert reasoning.decision == "reply"
    assert reasoning.arguments == {"content": "hi"}
    assert reasoning.confidence == 0.7
    assert reasoning.observation.startswith("TRIGGER: event:chat")
    assert model.bound_tools == []
    assert len(model.prompts) == 1
    assert update["metadata"]["tool_call_count"] == 0


@pytest.mark.asyncio
async def test_prompts_describe_actor_and_situation(tools):
    model = scripted_model(decision("like"))

    await ReasonNode(model, None, tools, WorkflowConfig()).execute(_observed_state())

    system, user = model.prompts[0]
    assert "You are Nova" in system.content
    assert "Personality: curious" in system.content
    assert "order_chaos=+0.40" in system.content
    assert "Available action tools: reply, like, create_post, decline, ignore" in system.content
    assert "POSTS: 1" in user.content
    assert "Loop iteration: 1/3" in user.content
    assert "Respond with your decision as JSON" in user.content


@pytest.mark.asyncio
async def test_tool_calls_over_the_limit_are_dropped(tools, tool_calls):
    model = scripted_model(
        tool_call_message(("get_post", {"post_id": "post-1"}), ("get_post", {"post_id": "post-3"})),
        decision("like"),
    )
    config = WorkflowConfig(max_tool_calls_per_reasoning=1)

    update = await ReasonNode(model, None, tools, config).execute(_observed_state())

    assert tool_calls == [("get_post", {"post_id": "post-1"})]
    assert len(update["reasoning"].tool_calls) == 1
    assert update["metadata"]["tool_call_count"] == 1


@pytest.mark.asyncio
async def test_zero_tool_budget_skips_binding(tools):
    model = scripted_model(decision("like"))

    await ReasonNode(model, None, tools, WorkflowConfig(max_tool_calls_per_reasoning=0)).execute(_observed_state())

    assert model.bound_tools == []


@pytest.mark.asyncio
async def test_failed_tool_is_reported_and_not_cached(tools):
    model = scripted_model(tool_call_message(("get_post", {"post_id": "nope"})), decision("ignore"))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_observed_state())

    result = update["reasoning"].tool_results[0]
    assert result.success is False
    assert result.content == "Post not found: nope"
    assert update["metadata"]["tool_cache"] == {}
    assert "Tool get_post failed" in model.prompts[1][-1].content


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["reply", "launch_missiles"])
async def test_action_and_unknown_tools_are_not_run_while_reasoning(tools, tool_calls, name):
    model = scripted_model(tool_call_message((name, {"content": "side effect"})), decision("ignore"))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_observed_state())

    assert tool_calls == []
    result = update["reasoning"].tool_results[0]
    assert result.success is False
    assert result.content == f"Not a data tool: {name}"
    assert update["metadata"]["tool_cache"] == {}
    assert "executed_actions" not in update


@pytest.mark.asyncio
async def test_cached_tool_results_are_reused(tools, tool_calls):
    cached = {"success": True, "data": {"id": "post-1", "content": "from cache"}, "error": None}
    state = _observed_state()
    state["metadata"]["tool_cache"] = {tool_cache_key("get_post", {"post_id": "post-1"}): cached}
    model = scripted_model(tool_call_message(("get_post", {"post_id": "post-1"})), decision("like"))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(state)

    assert tool_calls == []
    assert "from cache" in update["reasoning"].tool_results[0].content


@pytest.mark.asyncio
async def test_model_without_tool_support_falls_back_to_plain_call(tools):
    model = GenericFakeChatModel(messages=iter([decision("reply")]))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_observed_state())

    assert update["reasoning"].decision == "reply"


@pytest.mark.asyncio
async def test_memory_context_is_included(tools, memory_manager):
    await memory_manager.vector_store.store_memory("agent-1", "Likes gardening", MemoryType.REFLECTION)
    await memory_manager.store_message(
        "agent-1",
        ConversationMessage(role="user", content="Do you garden?"),
        {"human_profile_id": "human-1"},
    )
    scope = make_scope(data_scope=DataScopeConfig(memories=MemoriesScope(user_id="agent-1", limit=3)))
    model = scripted_model(decision("reply", {"content": "I do"}))

    await ReasonNode(model, memory_manager, tools, WorkflowConfig()).execute(make_state(scope, step=WorkflowStep.REASON))

    user_prompt = model.prompts[0][1].content
    assert "RELEVANT MEMORIES:" in user_prompt
    assert "- Likes gardening" in user_prompt
    assert "RECENT CONVERSATION:" in user_prompt
    assert "User: Do you garden?" in user_prompt


def _planned_state(tools_plan):
    state = _observed_state()
    state["reasoning"] = WorkflowReasoning(
        observation="obs",
        decision=tools_plan[0].tool,
        confidence=0.85,
        plan=tools_plan,
        plan_index=0,
    )
    state["loop"] = state["loop"].model_copy(update={
        "iteration": 2,
        "continue_reason": LoopContinueReason.NEW_INFO,
    })
    state["metadata"]["next_plan_step"] = {"index": 1}
    return state


@pytest.mark.asyncio
async def test_planned_action_step_skips_the_model(tools):
    plan = [
        PlanStep(step=1, tool="create_post", args={"content": "hi"}),
        PlanStep(step=2, tool="like", args={"postId": "post-1"}, description="like it"),
    ]
    model = scripted_model()

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_planned_state(plan))

    reasoning = update["reasoning"]
    assert reasoning.decision == "like"
    assert reasoning.arguments == {"postId": "post-1"}
    assert reasoning.plan_index == 1
    assert reasoning.confidence == 0.85
    assert reasoning.thinking_process == "Following multi-step plan."
    assert model.prompts == []


@pytest.mark.asyncio
async def test_planned_data_step_reasons_again(tools):
    plan = [PlanStep(step=1, tool="create_post"), PlanStep(step=2, tool="get_post")]
    model = scripted_model(decision("reply"))

    update = await ReasonNode(model, None, tools, WorkflowConfig()).execute(_planned_state(plan))

    assert update["reasoning"].decision == "reply"
    assert len(model.prompts) == 1
