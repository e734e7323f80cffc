from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class MemoryType(str, Enum):
    OBSERVATION = "observation"
    ACTION = "action"
    REFLECTION = "reflection"
    INTERACTION = "interaction"
    GOAL = "goal"
    LEARNED = "learned"


# Conversation-scoped by definition; never shared across human profiles
CONVERSATION_MEMORY_TYPES = frozenset({MemoryType.INTERACTION, MemoryType.OBSERVATION})


class MemoryRecord(BaseModel):
    """Long-term memory owned by one actor"""
    id: str
    user_id: str
    content: str
    type: MemoryType
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    importance: float = Field(0.5, ge=0.0, le=1.0)
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConversationContext(BaseModel):
    """Bounded context bundle handed to reasoning"""
    agent_id: str
    messages: List[ConversationMessage] = Field(default_factory=list)
    memories: List[str] = Field(default_factory=list)
    relevant_context: Dict[str, Any] = Field(default_factory=dict)


class MemorySummary(BaseModel):
    total: int
    by_type: Dict[str, int]


class SchemaCapabilities(BaseModel):
    """Optional memory-table columns the backing store supports"""
    has_importance: bool = False
    has_access_count: bool = False
    has_last_accessed: bool = False

    @classmethod
    def from_columns(cls, columns) -> "SchemaCapabilities":
        names = set(columns)
        return cls(
            has_importance="importance" in names,
            has_access_count="access_count" in names,
            has_last_accessed="last_accessed_at" in names,
        )
