from .scope import (
    Actor,
    BattleDataScope,
    CommunitiesScope,
    DataScopeConfig,
    EventKind,
    MemoriesScope,
    MessagesScope,
    PostsScope,
    RelationshipsScope,
    ScheduleKind,
    Scope,
    SocialGraphScope,
    Subject,
    Trigger,
    TriggerType,
)
from .workflow_state import (
    ExecutionResult,
    LoopContinueReason,
    LoopHistory,
    LoopState,
    PlanStep,
    ToolCallRecord,
    ToolCallResult,
    WorkflowAction,
    WorkflowError,
    WorkflowObservation,
    WorkflowReasoning,
    WorkflowResult,
    WorkflowState,
    WorkflowStep,
)
from .memory import (
    ConversationContext,
    ConversationMessage,
    MemoryRecord,
    MemorySummary,
    MemoryType,
    SchemaCapabilities,
)
