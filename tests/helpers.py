"""Builders shared by the test modules."""

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage, BaseMessage
from pydantic import Field

from agent_runtime.domain.models.scope import (
    Actor,
    DataScopeConfig,
    EventKind,
    PostsScope,
    Scope,
    Subject,
    Trigger,
    TriggerType,
)
from agent_runtime.domain.models.workflow_state import LoopState, WorkflowState, WorkflowStep
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.tool.tool_registry import ToolCategory, ToolDefinition

POSTS = [
    {"id": "post-1", "author_id": "human-1", "community_id": "c-1", "content": "Hello there"},
    {"id": "post-2", "author_id": "agent-1", "community_id": "c-1", "content": "Morning, everyone"},
    {"id": "post-3", "author_id": "human-2", "community_id": "c-2", "content": "Battle tonight"},
]


class ScriptedChatModel(GenericFakeChatModel):
    """Replays canned responses and records every prompt it receives"""

    bound_tools: List[Any] = Field(default_factory=list)
    prompts: List[List[BaseMessage]] = Field(default_factory=list)

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.prompts.append(list(messages))
        return super()._generate(messages, stop=stop, run_manager=run_manager, **kwargs)


def scripted_model(*responses) -> ScriptedChatModel:
    return ScriptedChatModel(messages=iter(responses))


def decision(
    action: str,
    args: Optional[Dict[str, Any]] = None,
    confidence: float = 0.9,
    plan: Optional[List[Dict[str, Any]]] = None,
    reasoning: str = "It fits the situation."
) -> str:
    payload: Dict[str, Any] = {
        "action": action,
        "args": args or {},
        "reasoning": reasoning,
        "confidence": confidence,
    }
    if plan is not None:
        payload["plan"] = plan
    return "Here is my decision.\n```json\n" + json.dumps(payload) + "\n```"


def tool_call_message(*calls) -> AIMessage:
    """AIMessage requesting tools; each call is (name, args)"""
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"call_{i}"}
            for i, (name, args) in enumerate(calls)
        ],
    )


def make_tool(name: str, category: ToolCategory = ToolCategory.ACTION, handler=None, calls=None) -> ToolDefinition:
    async def run(args, context):
        if calls is not None:
            calls.append((name, dict(args)))
        if handler is not None:
            return await handler(args, context)
        return {"id": f"{name}-{uuid.uuid4().hex[:8]}"}

    return ToolDefinition(
        name=name,
        category=category,
        description=f"{name} tool",
        parameters={"type": "object", "properties": {}},
        handler=run,
    )


def make_scope(
    actor_id: str = "agent-1",
    subject: Optional[Subject] = None,
    data_scope: Optional[DataScopeConfig] = None,
    is_response: bool = False,
    conversation_id: Optional[str] = None
) -> Scope:
    return Scope(
        trigger=Trigger(
            type=TriggerType.EVENT,
            event=EventKind.CHAT,
            timestamp=datetime(2024, 5, 1, 12, 0, 0),
            is_response=is_response,
        ),
        actor=Actor(id=actor_id, profile={"name": "Nova", "personality": "curious"}),
        subject=subject or Subject(
            id="post-1",
            type="post",
            data={"content": "Hello there", "human_profile_id": "human-1"},
        ),
        data_scope=data_scope or DataScopeConfig(posts=PostsScope(filter="all", limit=5)),
        conversation_id=conversation_id,
    )


def make_state(scope: Optional[Scope] = None, config: Optional[WorkflowConfig] = None, **overrides) -> WorkflowState:
    config = config or WorkflowConfig()
    state: WorkflowState = {
        "scope": scope or make_scope(),
        "actor_identity": {},
        "actor_morale": 50,
        "actor_coherence": 50,
        "actor_heat": 0,
        "actor_rage": 0,
        "actor_community_id": None,
        "step": WorkflowStep.OBSERVE,
        "observation": None,
        "reasoning": None,
        "action": None,
        "result": None,
        "loop": LoopState(
            iteration=1,
            max_iterations=config.max_iterations,
            heat_cost_per_iteration=config.heat_cost_per_iteration,
        ),
        "start_time": datetime.utcnow(),
        "executed_actions": [],
        "errors": [],
        "metadata": {"trace_id": "trace-test", "tool_cache": {}, "next_plan_step": None},
    }
    state.update(overrides)
    return state


class RateLimitError(Exception):
    status_code = 429


class FailingEmbeddings(Embeddings):
    """Raises the given error for every request and counts the attempts"""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        self.calls += 1
        raise self.error
