from typing import Dict, Any, List, Optional, Tuple
import asyncio
import json
import re
import time
import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.models.memory import ConversationContext
from agent_runtime.domain.models.workflow_state import (
    LoopContinueReason,
    PlanStep,
    ToolCallRecord,
    ToolCallResult,
    WorkflowReasoning,
    WorkflowState,
    WorkflowStep,
)
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.nodes.base_node import WorkflowNode, build_tool_context
from agent_runtime.domain.tool.tool_registry import ToolCategory, ToolExecutionContext, ToolRegistry

logger = structlog.get_logger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

FALLBACK_DECISION = "ignore"
FALLBACK_CONFIDENCE = 0.3
TOOL_RESULT_PREVIEW = 1800

DECISION_FORMAT = "\n".join([
    "Respond with your decision as JSON:",
    "```json",
    "{",
    '  "action": "tool_name",',
    '  "args": { "param": "value" },',
    '  "reasoning": "explain your decision",',
    '  "confidence": 0.8,',
    '  "plan": [{"step": 1, "tool": "tool_name", "args": {}, "description": "what this does"}]',
    "}",
    "```",
    "Only include a plan when the goal needs several actions in sequence.",
])


def message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _clamp_confidence(value: Any, default: float = 0.5) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, confidence))


def _parse_plan(raw: Any) -> List[PlanStep]:
    if not isinstance(raw, list):
        return []
    plan = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("tool"):
            continue
        plan.append(PlanStep(
            step=entry.get("step") if isinstance(entry.get("step"), int) else index + 1,
            tool=str(entry["tool"]),
            args=entry.get("args") if isinstance(entry.get("args"), dict) else {},
            description=str(entry.get("description") or ""),
        ))
    return plan


def parse_decision(content: str) -> Dict[str, Any]:
    """Extract the decision JSON from model output.

    A fenced ```json block wins over a bare object. Anything unparseable
    becomes a low-confidence "ignore".
    """

    match = _FENCED_JSON.search(content)
    text = match.group(1).strip() if match else None
    if text is None:
        match = _JSON_OBJECT.search(content)
        text = match.group(0) if match else None

    parsed = None
    if text:
        try:
            parsed = json.loads(text, strict=False)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse decision JSON", error=str(e), preview=content[:200])

    if not isinstance(parsed, dict):
        logger.warning("Falling back to ignore decision", preview=content[:200])
        return {
            "action": FALLBACK_DECISION,
            "args": {"reason": "Could not parse decision"},
            "reasoning": content[:200],
            "confidence": FALLBACK_CONFIDENCE,
            "plan": [],
            "alternatives": [],
            "factors": {},
            "thinking": "",
        }

    factors = parsed.get("factors") if isinstance(parsed.get("factors"), dict) else {}
    return {
        "action": str(parsed.get("action") or FALLBACK_DECISION),
        "args": parsed.get("args") if isinstance(parsed.get("args"), dict) else {},
        "reasoning": str(parsed.get("reasoning") or ""),
        "confidence": _clamp_confidence(parsed.get("confidence", 0.5)),
        "plan": _parse_plan(parsed.get("plan")),
        "alternatives": [str(a) for a in parsed.get("alternatives") or [] if a],
        "factors": {
            str(k): float(v) for k, v in factors.items()
            if isinstance(v, (int, float)) and not isinstance(v, bool)
        },
        "thinking": str(parsed.get("thinking") or ""),
    }


def tool_cache_key(name: str, arguments: Dict[str, Any]) -> str:
    return f"{name}:{json.dumps(arguments, sort_keys=True, default=str)}"


class ReasonNode(WorkflowNode):
    """Decides the next action with a chat model, optionally calling data tools first"""

    step = WorkflowStep.REASON

    def __init__(
        self,
        model: BaseChatModel,
        memory_manager: Optional[MemoryManager],
        tools: ToolRegistry,
        config: WorkflowConfig
    ):
        super().__init__("reason", "Choose an action from the observation and memories")
        self.model = model
        self.memory_manager = memory_manager
        self.tools = tools
        self.config = config

    async def execute(self, state: WorkflowState) -> Dict[str, Any]:
        start_time = time.perf_counter()

        planned = self._planned_step(state)
        if planned is not None:
            return planned

        context = await self._memory_context(state)
        messages: List[BaseMessage] = [
            SystemMessage(content=self._system_prompt(state)),
            HumanMessage(content=self._user_prompt(state, context)),
        ]

        response = await self._first_call(messages)
        requested = list(getattr(response, "tool_calls", None) or [])
        thinking = message_text(response)

        tool_calls: List[ToolCallRecord] = []
        tool_results: List[ToolCallResult] = []
        metadata = dict(state["metadata"])

        if requested:
            limit = self.config.max_tool_calls_per_reasoning
            if len(requested) > limit:
                logger.warning("Dropping tool calls over the limit", requested=len(requested), limit=limit)
            tool_calls = [
                ToolCallRecord(id=call.get("id") or f"call_{i}", name=call["name"], arguments=call.get("args") or {})
                for i, call in enumerate(requested[:limit])
            ]
            cache = dict(metadata.get("tool_cache") or {})
            tool_results = await self._run_tools(tool_calls, cache, build_tool_context(state))
            metadata["tool_cache"] = cache

            messages.append(HumanMessage(content=self._tool_results_prompt(tool_results)))
            final = await self.model.ainvoke(messages)
            content = message_text(final)
        else:
            content = thinking

        decision = parse_decision(content)

        reasoning = WorkflowReasoning(
            observation=state["observation"].context_summary if state.get("observation") else "No observation",
            thinking_process=decision["thinking"] or thinking or "No reasoning",
            tool_calls=tool_calls,
            tool_results=tool_results,
            decision=decision["action"],
            confidence=decision["confidence"],
            alternative_options=decision["alternatives"],
            factors=decision["factors"],
            explanation=decision["reasoning"],
            arguments=decision["args"],
            plan=decision["plan"],
            plan_index=0,
        )

        metadata["tool_call_count"] = len(tool_calls)
        metadata["reasoning_time"] = (time.perf_counter() - start_time) * 1000

        logger.info(
            "Reasoning complete",
            actor_id=state["scope"].actor.id,
            decision=reasoning.decision,
            confidence=reasoning.confidence,
            tool_calls=len(tool_calls),
            plan_length=len(reasoning.plan)
        )

        return {"step": WorkflowStep.ACT, "reasoning": reasoning, "metadata": metadata}

    def _planned_step(self, state: WorkflowState) -> Optional[Dict[str, Any]]:
        """Emit the next step of the current plan without calling the model"""

        loop = state["loop"]
        next_step = state["metadata"].get("next_plan_step")
        previous = state.get("reasoning")
        if loop.continue_reason != LoopContinueReason.NEW_INFO or not next_step or previous is None:
            return None

        index = next_step["index"]
        if index >= len(previous.plan):
            return None
        planned = previous.plan[index]

        tool = self.tools.get_tool(planned.tool)
        if tool is None or tool.category != ToolCategory.ACTION:
            logger.info("Planned step is not an action tool, reasoning again", tool_name=planned.tool)
            return None

        reasoning = WorkflowReasoning(
            observation=state["observation"].context_summary if state.get("observation") else "No observation",
            thinking_process="Following multi-step plan.",
            decision=planned.tool,
            confidence=previous.confidence,
            explanation=f"Executing planned step {index + 1}/{len(previous.plan)}: {planned.description or planned.tool}",
            arguments=planned.args,
            plan=previous.plan,
            plan_index=index,
        )
        return {"step": WorkflowStep.ACT, "reasoning": reasoning}

    async def _memory_context(self, state: WorkflowState) -> Optional[ConversationContext]:
        scope = state["scope"]
        if self.memory_manager is None or scope.data_scope.memories is None:
            return None

        observation = state.get("observation")
        query = observation.context_summary if observation else None
        return await self.memory_manager.get_conversation_context(
            scope.actor.id,
            query=query,
            limit=scope.data_scope.memories.limit or 5,
            conversation_id=scope.conversation_id,
            human_profile_id=None if scope.conversation_id else scope.human_profile_id,
        )

    async def _first_call(self, messages: List[BaseMessage]) -> BaseMessage:
        if self.config.enable_tool_calling and self.config.max_tool_calls_per_reasoning > 0:
            schemas = self.tools.as_llm_tools(categories=[ToolCategory.DATA])
            if schemas:
                try:
                    bound = self.model.bind_tools(schemas)
                except NotImplementedError:
                    logger.warning("Model does not support tool calling", model=type(self.model).__name__)
                else:
                    return await bound.ainvoke(messages)

        return await self.model.ainvoke(messages)

    async def _run_tools(
        self,
        calls: List[ToolCallRecord],
        cache: Dict[str, Any],
        context: ToolExecutionContext
    ) -> List[ToolCallResult]:

        async def run(call: ToolCallRecord) -> Tuple[ToolCallRecord, Dict[str, Any]]:
            # Side effects belong to Act; only DATA tools may run while reasoning
            tool = self.tools.get_tool(call.name)
            if tool is None or tool.category != ToolCategory.DATA:
                logger.warning("Refusing non-data tool call during reasoning", tool_name=call.name)
                return call, {"success": False, "data": None, "error": f"Not a data tool: {call.name}"}

            key = tool_cache_key(call.name, call.arguments)
            if key in cache:
                logger.debug("Using cached tool result", tool_name=call.name)
                return call, cache[key]
            result = await self.tools.execute_tool(
                call.name, call.arguments, context, timeout_ms=self.config.tool_execution_timeout
            )
            payload = result.model_dump(mode="json")
            if result.success:
                cache[key] = payload
            return call, payload

        outcomes = await asyncio.gather(*(run(call) for call in calls))

        results = []
        for call, payload in outcomes:
            if payload["success"]:
                content = json.dumps(payload.get("data"), default=str)
                if len(content) > TOOL_RESULT_PREVIEW:
                    content = content[:TOOL_RESULT_PREVIEW] + "...<truncated>"
            else:
                content = payload.get("error") or "Tool failed"
            results.append(ToolCallResult(tool_call_id=call.id, name=call.name, success=payload["success"], content=content))
        return results

    def _system_prompt(self, state: WorkflowState) -> str:
        actor = state["scope"].actor
        profile = actor.profile
        identity = state.get("actor_identity") or {}

        lines = [
            f"You are {profile.get('name') or actor.id}, an {actor.type} in a simulated social world.",
        ]
        if profile.get("personality"):
            lines.append(f"Personality: {profile['personality']}")
        if identity:
            lines.append("Identity: " + ", ".join(f"{axis}={value:+.2f}" for axis, value in sorted(identity.items())))
        if state.get("actor_rage"):
            lines.append(f"Rage: {state['actor_rage']}/100. Higher rage makes you blunt and confrontational.")

        action_tools = [tool.name for tool in self.tools.get_tools_by_category(ToolCategory.ACTION)]
        if action_tools:
            lines.append("Available action tools: " + ", ".join(action_tools))
        lines.append("Choose actions that do what you decided, not actions that only talk about it.")
        return "\n".join(lines)

    def _user_prompt(self, state: WorkflowState, context: Optional[ConversationContext]) -> str:
        observation = state.get("observation")
        loop = state["loop"]

        lines = [
            "CURRENT SITUATION:",
            observation.context_summary if observation else "You have no observation data.",
            "",
            "YOUR STATUS:",
            f"  - Morale: {state.get('actor_morale')}/100",
            f"  - Coherence: {state.get('actor_coherence')}/100",
            f"  - Heat: {state.get('actor_heat')}/100",
            f"  - Loop iteration: {loop.iteration}/{loop.max_iterations}",
        ]

        if loop.continue_reason in (LoopContinueReason.TOOL_FAILURE, LoopContinueReason.LOW_CONFIDENCE):
            previous = state.get("result")
            lines.append(f"  - Previous attempt: {loop.continue_reason.value}"
                         + (f" ({previous.error})" if previous and previous.error else ""))

        if context is not None:
            if context.memories:
                lines.extend(["", "RELEVANT MEMORIES:"])
                lines.extend(f"- {memory}" for memory in context.memories[:3])
            if context.messages:
                lines.extend(["", "RECENT CONVERSATION:"])
                lines.extend(
                    f"{'Assistant' if m.role == 'assistant' else 'User'}: {m.content}"
                    for m in context.messages[-5:]
                )

        lines.extend(["", "If you need more context, call data tools. Otherwise decide.", DECISION_FORMAT])
        return "\n".join(lines)

    def _tool_results_prompt(self, results: List[ToolCallResult]) -> str:
        blocks = [
            f"Tool {result.name} {'result' if result.success else 'failed'}:\n{result.content}"
            for result in results
        ]
        return "\n\n".join(blocks + ["Based on the information gathered, what should you do?", DECISION_FORMAT])
