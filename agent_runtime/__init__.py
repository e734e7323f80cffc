# Agent workflow runtime
#
#   Observe -> Reason -> Act -> Loop-check
#      ^                            |
#      +----------------------------+
#
# domain/          scope, state, nodes, orchestrator, memory, tools
# infrastructure/  settings, logging, tracing, embeddings, storage
# application/     HTTP surface

from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.core.orchestrator import (
    WorkflowOrchestrator,
    create_orchestrator,
    execute_workflow,
)
from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.memory.vector_store import VectorStore

__all__ = [
    "MemoryManager",
    "VectorStore",
    "WorkflowConfig",
    "WorkflowOrchestrator",
    "create_orchestrator",
    "execute_workflow",
]
