from abc import ABC, abstractmethod
from typing import Dict, Any, List
from datetime import datetime

from agent_runtime.domain.models.workflow_state import WorkflowError, WorkflowState, WorkflowStep
from agent_runtime.domain.tool.tool_registry import ToolExecutionContext


class WorkflowNode(ABC):
    """Base class for the Observe / Reason / Act / Loop-check nodes.

    A node reads the current state and returns a partial update that always
    names the next step.
    """

    step: WorkflowStep

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self.created_at = datetime.utcnow()

    @abstractmethod
    async def execute(self, state: WorkflowState) -> Dict[str, Any]:
        """Return the partial state update for this step"""
        pass

    def fail(self, state: WorkflowState, message: str) -> Dict[str, Any]:
        """Partial update that records an error and ends the run"""

        errors: List[WorkflowError] = list(state.get("errors") or [])
        errors.append(WorkflowError(step=self.step.value, error=message))
        return {"step": WorkflowStep.COMPLETE, "errors": errors}

    def get_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "step": self.step.value,
            "description": self.description,
            "created_at": self.created_at.isoformat()
        }


def build_tool_context(state: WorkflowState) -> ToolExecutionContext:
    """Tool context for the run, with the ids placeholder arguments resolve to"""

    scope = state["scope"]
    subject = scope.subject
    return ToolExecutionContext(
        agent_id=scope.actor.id,
        trigger_id=scope.trigger.label,
        conversation_id=scope.conversation_id,
        trace_id=state["metadata"].get("trace_id"),
        metadata={
            "subject_id": subject.id if subject else None,
            "subject_type": subject.type if subject else None,
            "post_id": subject.id if subject and subject.type == "post" else None,
            "user_id": scope.human_profile_id,
        },
    )
