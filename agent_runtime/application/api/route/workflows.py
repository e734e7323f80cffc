from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
import structlog

from agent_runtime.domain.models.scope import Scope
from agent_runtime.domain.orchestration.core.orchestrator import WorkflowOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])


class WorkflowRunResponse(BaseModel):
    """Summary of one workflow run"""
    success: bool
    duration: float
    executed_actions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    iterations: int
    completion_reason: Optional[str] = None
    heat_cost: int = 0
    trace_id: Optional[str] = None
    decision: Optional[str] = None
    confidence: Optional[float] = None
    history: List[Dict[str, Any]] = Field(default_factory=list)


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


@router.post("/execute", response_model=WorkflowRunResponse)
async def execute_workflow_endpoint(
    scope: Scope,
    orchestrator: Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
):
    result = await orchestrator.execute(scope)
    state = result.state
    reasoning = state.get("reasoning")

    return WorkflowRunResponse(
        success=result.success,
        duration=result.duration,
        executed_actions=result.executed_actions,
        errors=result.errors,
        iterations=result.iterations,
        completion_reason=result.completion_reason,
        heat_cost=result.heat_cost,
        trace_id=state["metadata"].get("trace_id"),
        decision=reasoning.decision if reasoning else None,
        confidence=reasoning.confidence if reasoning else None,
        history=[
            {
                "iteration": entry.iteration,
                "action": entry.action.type if entry.action else None,
                "success": entry.result.success if entry.result else None,
                "error": entry.result.error if entry.result else None,
            }
            for entry in state["loop"].history
        ],
    )
