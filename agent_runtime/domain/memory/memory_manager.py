from typing import Dict, List, Any, Optional, Set
import asyncio
import math
from collections import defaultdict
from datetime import datetime
import structlog

from agent_runtime.domain.memory.vector_store import VectorStore
from agent_runtime.domain.models.memory import (
    CONVERSATION_MEMORY_TYPES,
    ConversationContext,
    ConversationMessage,
    MemoryRecord,
    MemorySummary,
    MemoryType,
)
from agent_runtime.infrastructure.observability.logging import workflow_logger

logger = structlog.get_logger(__name__)

MAX_CACHED_MESSAGES = 100
CONTEXT_MESSAGES = 10
HYDRATION_LIMIT = 50
SUMMARY_LIMIT = 1000
OPTIMIZE_PAGE_SIZE = 100


def _metadata_value(metadata: Dict[str, Any], key: str) -> Optional[Any]:
    # Rows written by older producers use camelCase keys
    camel = key.split("_")[0] + "".join(part.title() for part in key.split("_")[1:])
    value = metadata.get(key)
    return value if value is not None else metadata.get(camel)


class MemoryManager:
    """Short-term conversation cache plus a facade over the vector store.

    The cache is keyed by agent and conversation (or human profile, or
    "global"), guarded per key, and can always be dropped: on first read an
    empty key is hydrated from the persisted conversation log.
    """

    def __init__(self, vector_store: VectorStore):
        self.vector_store = vector_store
        self.conversations: Dict[str, List[ConversationMessage]] = defaultdict(list)
        self._hydrated: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def conversation_key(
        agent_id: str,
        conversation_id: Optional[str] = None,
        human_profile_id: Optional[str] = None
    ) -> str:
        if conversation_id:
            return f"{agent_id}:{conversation_id}"
        if human_profile_id:
            return f"{agent_id}:{human_profile_id}"
        return f"{agent_id}:global"

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def store_message(
        self,
        agent_id: str,
        message: ConversationMessage,
        context: Optional[Dict[str, Any]] = None
    ) -> MemoryRecord:
        """Append to the conversation cache and persist as a memory"""

        context = dict(context or {})
        conversation_id = context.get("conversation_id")
        human_profile_id = context.get("human_profile_id")
        key = self.conversation_key(agent_id, conversation_id, human_profile_id)

        async with self._lock_for(key):
            history = self.conversations[key]
            history.append(message)
            if len(history) > MAX_CACHED_MESSAGES:
                self.conversations[key] = history[-MAX_CACHED_MESSAGES:]

        memory_type = MemoryType.INTERACTION if message.role == "assistant" else MemoryType.OBSERVATION
        metadata = {
            "role": message.role,
            "timestamp": message.timestamp.isoformat(),
            **context,
            "conversation_id": conversation_id,
            "human_profile_id": human_profile_id,
        }

        try:
            record = await self.vector_store.store_memory(agent_id, message.content, memory_type, metadata)
        except Exception as e:
            logger.error("Error storing message", agent_id=agent_id, key=key, error=str(e))
            raise

        workflow_logger.log_memory_operation(agent_id, "store_message", {"key": key, "type": memory_type.value})
        return record

    async def get_conversation_context(
        self,
        agent_id: str,
        query: Optional[str] = None,
        limit: int = 5,
        conversation_id: Optional[str] = None,
        human_profile_id: Optional[str] = None
    ) -> ConversationContext:
        """Bounded context bundle: recent messages plus filtered memories"""

        key = self.conversation_key(agent_id, conversation_id, human_profile_id)
        await self._hydrate(agent_id, key, human_profile_id)

        async with self._lock_for(key):
            messages = list(self.conversations.get(key, []))

        # Privacy filtering happens on the returned set, so fetch extra
        search_limit = max(limit * 5, 15) if human_profile_id else limit
        if query:
            memories = await self.vector_store.retrieve_memories(agent_id, query, search_limit)
        else:
            memories = await self.vector_store.get_recent_memories(agent_id, search_limit)

        if human_profile_id:
            memories = [m for m in memories if self._visible_to(m, human_profile_id)]
        elif conversation_id:
            memories = [
                m for m in memories
                if _metadata_value(m.metadata, "conversation_id") == conversation_id
            ]

        memories = memories[:limit]

        for memory in memories:
            await self.vector_store.record_memory_access(memory.id)

        return ConversationContext(
            agent_id=agent_id,
            messages=messages[-CONTEXT_MESSAGES:],
            memories=[m.content for m in memories],
            relevant_context=self._build_context(memories),
        )

    @staticmethod
    def _visible_to(memory: MemoryRecord, human_profile_id: str) -> bool:
        owner = _metadata_value(memory.metadata, "human_profile_id")
        if owner:
            return owner == human_profile_id
        if memory.type in CONVERSATION_MEMORY_TYPES:
            return False
        if memory.metadata.get("visibility") == "private":
            return False
        return True

    @staticmethod
    def _build_context(memories: List[MemoryRecord]) -> Dict[str, Any]:
        grouped: Dict[str, List[str]] = {}
        for memory in memories:
            category = memory.metadata.get("category")
            if category:
                grouped.setdefault(str(category), []).append(memory.content)

        return {
            "total_memories": len(memories),
            "recent_interactions": sum(1 for m in memories if m.type == MemoryType.INTERACTION),
            "observations": sum(1 for m in memories if m.type == MemoryType.OBSERVATION),
            "reflections": sum(1 for m in memories if m.type == MemoryType.REFLECTION),
            "metadata": grouped,
        }

    async def _hydrate(self, agent_id: str, key: str, human_profile_id: Optional[str]) -> None:
        """Load the persisted conversation log into an empty cache key, once"""

        async with self._lock_for(key):
            if key in self._hydrated or self.conversations.get(key):
                return

            try:
                rows = await self.vector_store.backend.fetch_conversation_log(
                    agent_id, sender_id=human_profile_id, limit=HYDRATION_LIMIT
                )
            except Exception as e:
                logger.warning("Failed to hydrate conversation history", agent_id=agent_id, key=key, error=str(e))
                return

            self.conversations[key] = [
                ConversationMessage(
                    role="assistant" if row.get("sender_type") == "agent" else "user",
                    content=row.get("content") or "",
                    timestamp=row.get("created_at") or datetime.utcnow(),
                )
                for row in rows
            ]
            self._hydrated.add(key)

        logger.debug("Hydrated conversation history", agent_id=agent_id, key=key, messages=len(rows))

    async def clear_conversation_cache(
        self,
        agent_id: str,
        conversation_id: Optional[str] = None,
        human_profile_id: Optional[str] = None
    ) -> None:
        key = self.conversation_key(agent_id, conversation_id, human_profile_id)
        async with self._lock_for(key):
            self.conversations.pop(key, None)
            self._hydrated.discard(key)

    async def clear_old_memories(self, agent_id: str, days_old: int = 7) -> int:
        deleted = await self.vector_store.delete_old_memories(agent_id, days_old)
        workflow_logger.log_memory_operation(agent_id, "clear_old_memories", {"days_old": days_old, "deleted": deleted})
        return deleted

    async def get_memory_summary(self, agent_id: str) -> MemorySummary:
        memories = await self.vector_store.get_all_memories(agent_id, 0, SUMMARY_LIMIT)

        by_type = {memory_type.value: 0 for memory_type in MemoryType}
        for memory in memories:
            by_type[memory.type.value] += 1

        return MemorySummary(total=len(memories), by_type=by_type)

    async def optimize_memory_importance(self, agent_id: str) -> int:
        """Recompute importance from recency and access count; returns memories updated"""

        updated = 0
        page = 0
        now = datetime.utcnow()

        try:
            while True:
                memories = await self.vector_store.get_all_memories(agent_id, page, OPTIMIZE_PAGE_SIZE)
                for memory in memories:
                    age_days = max((now - memory.created_at).total_seconds(), 0) / 86400
                    recency_score = math.exp(-age_days / 30)
                    access_score = math.log(memory.access_count + 1) / 10
                    await self.vector_store.update_memory_importance(memory.id, (recency_score + access_score) / 2)
                    updated += 1

                if len(memories) < OPTIMIZE_PAGE_SIZE:
                    break
                page += 1
        except Exception as e:
            logger.error("Error optimizing memory importance", agent_id=agent_id, error=str(e))

        workflow_logger.log_memory_operation(agent_id, "optimize_memory_importance", {"updated": updated})
        return updated
