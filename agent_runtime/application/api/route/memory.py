from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.models.memory import ConversationContext, MemorySummary

router = APIRouter(prefix="/api/v1/agents", tags=["memory"])


class CleanupResponse(BaseModel):
    agent_id: str
    days_old: int
    deleted: int


class OptimizeResponse(BaseModel):
    agent_id: str
    updated: int


def get_memory_manager(request: Request) -> MemoryManager:
    return request.app.state.memory_manager


@router.get("/{agent_id}/conversation", response_model=ConversationContext)
async def get_conversation(
    agent_id: str,
    memory_manager: Annotated[MemoryManager, Depends(get_memory_manager)],
    query: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=50)] = 5,
    conversation_id: Optional[str] = None,
    human_profile_id: Optional[str] = None
):
    return await memory_manager.get_conversation_context(
        agent_id,
        query=query,
        limit=limit,
        conversation_id=conversation_id,
        human_profile_id=human_profile_id,
    )


@router.get("/{agent_id}/memories/summary", response_model=MemorySummary)
async def get_memory_summary(
    agent_id: str,
    memory_manager: Annotated[MemoryManager, Depends(get_memory_manager)]
):
    return await memory_manager.get_memory_summary(agent_id)


@router.post("/{agent_id}/memories/cleanup", response_model=CleanupResponse)
async def cleanup_memories(
    agent_id: str,
    memory_manager: Annotated[MemoryManager, Depends(get_memory_manager)],
    days_old: Annotated[int, Query(ge=0)] = 7
):
    deleted = await memory_manager.clear_old_memories(agent_id, days_old)
    return CleanupResponse(agent_id=agent_id, days_old=days_old, deleted=deleted)


@router.post("/{agent_id}/memories/optimize", response_model=OptimizeResponse)
async def optimize_memories(
    agent_id: str,
    memory_manager: Annotated[MemoryManager, Depends(get_memory_manager)]
):
    updated = await memory_manager.optimize_memory_importance(agent_id)
    return OptimizeResponse(agent_id=agent_id, updated=updated)
