from typing import TypedDict, Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from agent_runtime.domain.models.scope import Scope


class WorkflowStep(str, Enum):
    """Position in the Observe > Reason > Act > Loop state machine"""
    OBSERVE = "observe"
    REASON = "reason"
    ACT = "act"
    LOOP_CHECK = "loop_check"
    COMPLETE = "complete"


class LoopContinueReason(str, Enum):
    """Why the loop continued (or stopped)"""
    GOAL_ACHIEVED = "goal_achieved"
    GOAL_NOT_MET = "goal_not_met"
    NEW_INFO = "new_info"
    TOOL_FAILURE = "tool_failure"
    LOW_CONFIDENCE = "low_confidence"
    USER_PERSISTENCE = "user_persistence"


class WorkflowObservation(BaseModel):
    """Output of the Observe node"""
    posts: List[Dict[str, Any]] = Field(default_factory=list)
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    memories: List[Dict[str, Any]] = Field(default_factory=list)
    relationships: Dict[str, Any] = Field(default_factory=dict)
    communities: List[Dict[str, Any]] = Field(default_factory=list)
    battle_data: List[Dict[str, Any]] = Field(default_factory=list)
    context_summary: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ToolCallRecord(BaseModel):
    """Tool call requested by the model"""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    """Outcome of a requested tool call, failures included"""
    tool_call_id: str
    name: str
    success: bool
    content: str


class PlanStep(BaseModel):
    step: int
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class WorkflowReasoning(BaseModel):
    """Output of the Reason node"""
    observation: str
    thinking_process: str = ""
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    tool_results: List[ToolCallResult] = Field(default_factory=list)
    decision: str
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    alternative_options: List[str] = Field(default_factory=list)
    factors: Dict[str, float] = Field(default_factory=dict)
    explanation: str = ""
    arguments: Dict[str, Any] = Field(default_factory=dict)
    plan: List[PlanStep] = Field(default_factory=list)
    plan_index: int = Field(0, ge=0, description="Index in plan of the step this decision executes")


class WorkflowAction(BaseModel):
    """Concrete action chosen by the Act node"""
    type: str
    target: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    goal_achieved: Optional[bool] = None


class WorkflowResult(BaseModel):
    """Outcome of executing an action"""
    success: bool
    action_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = True
    heat_cost: int = 0
    coherence_impact: float = 0.0
    execution_time: float = Field(0.0, description="Milliseconds")


class LoopHistory(BaseModel):
    """Snapshot of one completed iteration"""
    iteration: int
    observation: Optional[WorkflowObservation] = None
    reasoning: Optional[WorkflowReasoning] = None
    action: Optional[WorkflowAction] = None
    result: Optional[WorkflowResult] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class LoopState(BaseModel):
    iteration: int = Field(1, ge=1)
    max_iterations: int = Field(3, ge=1)
    history: List[LoopHistory] = Field(default_factory=list)
    should_continue: bool = True
    continue_reason: Optional[LoopContinueReason] = None
    heat_cost_per_iteration: int = 5


class WorkflowError(BaseModel):
    step: str
    error: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class WorkflowState(TypedDict):
    """State threaded through the workflow graph"""
    scope: Scope
    actor_identity: Dict[str, float]
    actor_morale: Optional[float]
    actor_coherence: Optional[float]
    actor_heat: Optional[float]
    actor_rage: Optional[float]
    actor_community_id: Optional[str]
    step: WorkflowStep
    observation: Optional[WorkflowObservation]
    reasoning: Optional[WorkflowReasoning]
    action: Optional[WorkflowAction]
    result: Optional[WorkflowResult]
    loop: LoopState
    start_time: datetime
    executed_actions: List[str]
    errors: List[WorkflowError]
    metadata: Dict[str, Any]


class ExecutionResult(BaseModel):
    """What callers get back from a run"""
    success: bool
    state: Dict[str, Any]
    duration: float = Field(description="Milliseconds")
    executed_actions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    iterations: int = 1
    completion_reason: Optional[str] = None
    heat_cost: int = 0
