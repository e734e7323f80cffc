from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from datetime import datetime

from agent_runtime.domain.models.memory import SchemaCapabilities


class MemoryBackend(ABC):
    """Row-oriented persistence for the memory table and the conversation log.

    Rows are plain dicts keyed by column name: id, user_id, content, type,
    embedding, metadata, created_at and, where supported, importance,
    access_count, last_accessed_at.
    """

    async def initialize(self) -> None:
        """Open connections; called once at application startup"""
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def probe_capabilities(self) -> SchemaCapabilities:
        """Report which optional memory columns exist"""
        pass

    @abstractmethod
    async def insert_memory(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a memory row and return it as stored"""
        pass

    @abstractmethod
    async def match_memories(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: float
    ) -> List[Dict[str, Any]]:
        """Rows at or above the similarity threshold, best match first"""
        pass

    @abstractmethod
    async def recent_memories(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        """Newest rows first"""
        pass

    @abstractmethod
    async def fetch_memory(self, memory_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def update_memory(self, memory_id: str, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete_memories_before(self, user_id: str, cutoff: datetime) -> int:
        """Delete rows created before the cutoff and return how many went"""
        pass

    @abstractmethod
    async def page_memories(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """Newest first, offset paginated"""
        pass

    @abstractmethod
    async def fetch_conversation_log(
        self,
        agent_id: str,
        sender_id: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Most recent conversation-log rows, oldest first.

        Rows carry sender_type ("agent" or "user"), content and created_at.
        """
        pass
