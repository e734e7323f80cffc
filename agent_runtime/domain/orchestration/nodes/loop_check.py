from typing import Dict, Any, Optional, Tuple
import structlog

from agent_runtime.domain.models.workflow_state import (
    LoopContinueReason,
    LoopHistory,
    WorkflowState,
    WorkflowStep,
)
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.nodes.base_node import WorkflowNode

logger = structlog.get_logger(__name__)

HEAT_COOLDOWN_THRESHOLD = 80
HEAT_CEILING = 100
LOW_CONFIDENCE_THRESHOLD = 0.4


class LoopCheckNode(WorkflowNode):
    """Decides whether the run goes around again or completes"""

    step = WorkflowStep.LOOP_CHECK

    def __init__(self, config: WorkflowConfig):
        super().__init__("loop_check", "Decide continuation after an action")
        self.config = config

    def evaluate(self, state: WorkflowState) -> Tuple[bool, LoopContinueReason]:
        """(continue?, reason), checked in priority order"""

        loop = state["loop"]
        action = state.get("action")
        result = state.get("result")
        reasoning = state.get("reasoning")
        goal_achieved = bool(action and action.goal_achieved)
        stop_reason = LoopContinueReason.GOAL_ACHIEVED if goal_achieved else LoopContinueReason.GOAL_NOT_MET

        if not self.config.enable_looping:
            return False, stop_reason

        if loop.iteration >= loop.max_iterations:
            logger.info("Max iterations reached", max_iterations=loop.max_iterations)
            return False, stop_reason

        heat = state.get("actor_heat") or 0
        if heat >= HEAT_COOLDOWN_THRESHOLD or heat + loop.heat_cost_per_iteration > HEAT_CEILING:
            logger.info("Heat too high to continue", heat=heat, cost=loop.heat_cost_per_iteration)
            return False, stop_reason

        if goal_achieved:
            return False, LoopContinueReason.GOAL_ACHIEVED

        if result is not None and not result.success:
            if result.retryable:
                return True, LoopContinueReason.TOOL_FAILURE
            return False, LoopContinueReason.TOOL_FAILURE

        if self._next_plan_index(state) is not None:
            return True, LoopContinueReason.NEW_INFO

        if reasoning is not None and reasoning.confidence < LOW_CONFIDENCE_THRESHOLD:
            return True, LoopContinueReason.LOW_CONFIDENCE

        if state["scope"].trigger.is_response and action is not None and action.type == "decline":
            return True, LoopContinueReason.USER_PERSISTENCE

        return False, LoopContinueReason.GOAL_NOT_MET

    @staticmethod
    def _next_plan_index(state: WorkflowState) -> Optional[int]:
        reasoning = state.get("reasoning")
        if reasoning is None or not reasoning.plan:
            return None
        next_index = reasoning.plan_index + 1
        return next_index if next_index < len(reasoning.plan) else None

    async def execute(self, state: WorkflowState) -> Dict[str, Any]:
        loop = state["loop"]
        should_continue, reason = self.evaluate(state)

        history = list(loop.history) + [LoopHistory(
            iteration=loop.iteration,
            observation=state.get("observation"),
            reasoning=state.get("reasoning"),
            action=state.get("action"),
            result=state.get("result"),
        )]

        metadata = dict(state["metadata"])
        metadata["last_loop_reason"] = reason.value

        logger.info(
            "Loop check",
            iteration=loop.iteration,
            max_iterations=loop.max_iterations,
            should_continue=should_continue,
            reason=reason.value
        )

        if should_continue:
            next_index = self._next_plan_index(state) if reason == LoopContinueReason.NEW_INFO else None
            metadata["next_plan_step"] = {"index": next_index} if next_index is not None else None
            return {
                "step": WorkflowStep.OBSERVE,
                "loop": loop.model_copy(update={
                    "iteration": loop.iteration + 1,
                    "history": history,
                    "should_continue": True,
                    "continue_reason": reason,
                }),
                "metadata": metadata,
            }

        action = state.get("action")
        metadata["next_plan_step"] = None
        metadata["completion_reason"] = reason.value
        metadata["total_iterations"] = loop.iteration
        metadata["final_goal_achieved"] = bool(action and action.goal_achieved)

        return {
            "step": WorkflowStep.COMPLETE,
            "loop": loop.model_copy(update={
                "history": history,
                "should_continue": False,
                "continue_reason": reason,
            }),
            "metadata": metadata,
        }
