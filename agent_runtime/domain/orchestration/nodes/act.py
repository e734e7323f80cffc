from typing import Dict, Any, Optional
import time
import uuid
import structlog

from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.models.memory import ConversationMessage
from agent_runtime.domain.models.scope import Subject
from agent_runtime.domain.models.workflow_state import WorkflowAction, WorkflowResult, WorkflowState, WorkflowStep
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.nodes.base_node import WorkflowNode, build_tool_context
from agent_runtime.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)

DEFAULT_HEAT_COST = 5

HEAT_COSTS: Dict[str, int] = {
    # Communication
    "send_message": 5,
    "reply": 5,
    "create_post": 8,
    "comment": 5,
    "like": 1,
    # Social
    "follow": 2,
    # Community
    "join_community": 10,
    "leave_community": 5,
    # Battles
    "join_battle": 15,
    # Economy
    "buy_item": 3,
    "consume_item": 1,
    "do_work": 10,
    # Governance
    "vote_on_proposal": 5,
    "create_proposal": 10,
    # Special
    "decline": 3,
    "ignore": 0,
}

_TARGET_KEYS = (
    "userId", "user_id", "postId", "post_id",
    "battleId", "battle_id", "communityId", "community_id",
)


def heat_cost_for(action_type: str) -> int:
    return HEAT_COSTS.get(action_type, DEFAULT_HEAT_COST)


def extract_target(args: Dict[str, Any], subject: Optional[Subject]) -> Optional[str]:
    for key in _TARGET_KEYS:
        value = args.get(key)
        if value:
            return str(value)
    return subject.id if subject else None


class ActNode(WorkflowNode):
    """Executes the reasoned decision as an ACTION tool"""

    step = WorkflowStep.ACT

    def __init__(
        self,
        tools: ToolRegistry,
        config: WorkflowConfig,
        memory_manager: Optional[MemoryManager] = None
    ):
        super().__init__("act", "Execute the chosen action")
        self.tools = tools
        self.config = config
        self.memory_manager = memory_manager

    async def execute(self, state: WorkflowState) -> Dict[str, Any]:
        start_time = time.perf_counter()
        reasoning = state.get("reasoning")
        if reasoning is None:
            return self.fail(state, "No reasoning available")

        scope = state["scope"]
        args = dict(reasoning.arguments)
        content = args.get("content") or args.get("message")
        remaining = max(0, len(reasoning.plan) - reasoning.plan_index - 1)

        action = WorkflowAction(
            type=reasoning.decision,
            target=extract_target(args, scope.subject),
            content=str(content) if content is not None else None,
            metadata={
                "args": args,
                "plan": [step.model_dump() for step in reasoning.plan],
                "plan_index": reasoning.plan_index,
                "confidence": reasoning.confidence,
            },
        )

        if not self.config.enable_tool_calling:
            logger.info("Tool calling disabled, recording dry run", action_type=action.type)
            action.goal_achieved = remaining == 0
            action.metadata["dry_run"] = True
            result = WorkflowResult(success=True, execution_time=(time.perf_counter() - start_time) * 1000)
            return {"step": WorkflowStep.LOOP_CHECK, "action": action, "result": result}

        tool_result = await self.tools.execute_tool(
            action.type, args, build_tool_context(state), timeout_ms=self.config.tool_execution_timeout
        )

        if not tool_result.success:
            logger.warning(
                "Action failed",
                action_type=action.type,
                error=tool_result.error,
                retryable=tool_result.retryable
            )
            action.goal_achieved = False
            result = WorkflowResult(
                success=False,
                error=tool_result.error,
                retryable=tool_result.retryable,
                execution_time=(time.perf_counter() - start_time) * 1000,
            )
            return {"step": WorkflowStep.LOOP_CHECK, "action": action, "result": result}

        payload = tool_result.data if isinstance(tool_result.data, dict) else {}
        action_id = str(payload.get("action_id") or payload.get("id") or uuid.uuid4())

        try:
            coherence_impact = float(payload.get("coherence_impact", 0.0))
        except (TypeError, ValueError):
            coherence_impact = 0.0

        action.goal_achieved = remaining == 0
        action.metadata.update({
            "action_id": action_id,
            "loop_iteration": state["loop"].iteration,
            "remaining_plan_steps": remaining,
        })

        result = WorkflowResult(
            success=True,
            action_id=action_id,
            heat_cost=heat_cost_for(action.type),
            coherence_impact=coherence_impact,
            execution_time=(time.perf_counter() - start_time) * 1000,
        )

        await self._log_exchange(state, action, action_id)

        logger.info(
            "Action executed",
            action_type=action.type,
            action_id=action_id,
            heat_cost=result.heat_cost,
            goal_achieved=action.goal_achieved
        )

        metadata = dict(state["metadata"])
        metadata["last_action_result"] = tool_result.data

        return {
            "step": WorkflowStep.LOOP_CHECK,
            "action": action,
            "result": result,
            "executed_actions": list(state["executed_actions"]) + [action_id],
            "metadata": metadata,
        }

    async def _log_exchange(self, state: WorkflowState, action: WorkflowAction, action_id: str) -> None:
        if self.memory_manager is None:
            return

        scope = state["scope"]
        text = action.content or f"{action.type}" + (f" {action.target}" if action.target else "")
        try:
            await self.memory_manager.store_message(
                scope.actor.id,
                ConversationMessage(role="assistant", content=text),
                {
                    "conversation_id": scope.conversation_id,
                    "human_profile_id": scope.human_profile_id,
                    "action_type": action.type,
                    "action_id": action_id,
                },
            )
        except Exception as e:
            logger.warning("Failed to log action to memory", action_id=action_id, error=str(e))
