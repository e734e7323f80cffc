from typing import Dict, List, Any, Optional
import asyncio
from datetime import datetime, timedelta
import structlog

from agent_runtime.domain.models.memory import MemoryRecord, MemoryType, SchemaCapabilities
from agent_runtime.infrastructure.embeddings.embedding_provider import EmbeddingProvider, EmbeddingStatus
from agent_runtime.infrastructure.storage.base_backend import MemoryBackend

logger = structlog.get_logger(__name__)


class VectorStore:
    """Embedded long-term memories with semantic search and recency fallback.

    Embedding is best effort: a record whose embedding failed is stored
    without one, and a query whose embedding failed is answered by recency.
    Optional columns are written only when the backend reports them; the
    probe runs once per store instance.
    """

    def __init__(
        self,
        backend: MemoryBackend,
        embedding_provider: EmbeddingProvider,
        similarity_threshold: float = 0.5
    ):
        self.backend = backend
        self.embedding_provider = embedding_provider
        self.similarity_threshold = similarity_threshold
        self._capabilities: Optional[SchemaCapabilities] = None
        self._capabilities_lock = asyncio.Lock()

    async def capabilities(self) -> SchemaCapabilities:
        if self._capabilities is not None:
            return self._capabilities

        async with self._capabilities_lock:
            if self._capabilities is None:
                try:
                    self._capabilities = await self.backend.probe_capabilities()
                except Exception as e:
                    # Treat the schema as minimal; do not cache so a later call can retry
                    logger.warning("Schema capability probe failed", error=str(e))
                    return SchemaCapabilities()
                logger.info("Memory schema capabilities", **self._capabilities.model_dump())
            return self._capabilities

    async def store_memory(
        self,
        user_id: str,
        content: str,
        type: MemoryType,
        metadata: Optional[Dict[str, Any]] = None,
        importance: float = 0.5
    ) -> MemoryRecord:
        """Embed and persist one memory"""

        embedding = await self.embedding_provider.embed(content)
        if embedding.status == EmbeddingStatus.RATE_LIMITED:
            logger.warning("Storing memory without embedding (rate limited)", user_id=user_id)
        elif not embedding.ok:
            logger.warning("Storing memory without embedding", user_id=user_id, error=embedding.error)

        capabilities = await self.capabilities()
        now = datetime.utcnow()

        row: Dict[str, Any] = {
            "user_id": user_id,
            "content": content,
            "type": MemoryType(type).value,
            "metadata": metadata or {},
            "created_at": now,
        }
        if embedding.ok:
            row["embedding"] = embedding.vector
        if capabilities.has_importance:
            row["importance"] = max(0.0, min(1.0, importance))
        if capabilities.has_access_count:
            row["access_count"] = 0
        if capabilities.has_last_accessed:
            row["last_accessed_at"] = now

        try:
            stored = await self.backend.insert_memory(row)
        except Exception as e:
            logger.error("Failed to store memory", user_id=user_id, error=str(e))
            raise

        return self._to_record(stored)

    async def retrieve_memories(
        self,
        user_id: str,
        query: str,
        limit: int = 5,
        threshold: Optional[float] = None
    ) -> List[MemoryRecord]:
        """Semantic retrieval, degrading to recency when the query cannot be embedded"""

        embedding = await self.embedding_provider.embed(query)
        if not embedding.ok:
            if embedding.status == EmbeddingStatus.RATE_LIMITED:
                logger.warning("Query embedding rate limited, using recent memories", user_id=user_id)
            else:
                logger.error("Query embedding failed, using recent memories", user_id=user_id, error=embedding.error)
            return await self.get_recent_memories(user_id, limit)

        return await self.semantic_search(user_id, embedding.vector, limit, threshold)

    async def semantic_search(
        self,
        user_id: str,
        embedding: List[float],
        limit: int = 5,
        threshold: Optional[float] = None
    ) -> List[MemoryRecord]:
        threshold = self.similarity_threshold if threshold is None else threshold

        try:
            rows = await self.backend.match_memories(user_id, embedding, limit, threshold)
        except Exception as e:
            logger.error("Semantic search failed", user_id=user_id, error=str(e))
            raise

        return [self._to_record(row) for row in rows]

    async def get_recent_memories(self, user_id: str, limit: int = 10) -> List[MemoryRecord]:
        try:
            rows = await self.backend.recent_memories(user_id, limit)
        except Exception as e:
            logger.error("Failed to load recent memories", user_id=user_id, error=str(e))
            raise

        return [self._to_record(row) for row in rows]

    async def update_memory_importance(self, memory_id: str, importance: float) -> None:
        capabilities = await self.capabilities()
        if not capabilities.has_importance:
            logger.debug("Importance column unavailable, skipping update", memory_id=memory_id)
            return

        await self.backend.update_memory(memory_id, {"importance": max(0.0, min(1.0, importance))})

    async def record_memory_access(self, memory_id: str) -> None:
        capabilities = await self.capabilities()
        if not capabilities.has_access_count and not capabilities.has_last_accessed:
            return

        try:
            values: Dict[str, Any] = {}
            if capabilities.has_access_count:
                row = await self.backend.fetch_memory(memory_id)
                if row is None:
                    return
                values["access_count"] = (row.get("access_count") or 0) + 1
            if capabilities.has_last_accessed:
                values["last_accessed_at"] = datetime.utcnow()

            await self.backend.update_memory(memory_id, values)
        except Exception as e:
            logger.warning("Failed to record memory access", memory_id=memory_id, error=str(e))

    async def delete_old_memories(self, user_id: str, days_old: int = 30) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days_old)

        try:
            deleted = await self.backend.delete_memories_before(user_id, cutoff)
        except Exception as e:
            logger.error("Failed to delete old memories", user_id=user_id, error=str(e))
            raise

        logger.info("Deleted old memories", user_id=user_id, days_old=days_old, deleted=deleted)
        return deleted

    async def get_all_memories(self, user_id: str, page: int = 0, page_size: int = 50) -> List[MemoryRecord]:
        try:
            rows = await self.backend.page_memories(user_id, page * page_size, page_size)
        except Exception as e:
            logger.error("Failed to page memories", user_id=user_id, page=page, error=str(e))
            raise

        return [self._to_record(row) for row in rows]

    def _to_record(self, row: Dict[str, Any]) -> MemoryRecord:
        importance = row.get("importance")
        return MemoryRecord(
            id=str(row["id"]),
            user_id=row["user_id"],
            content=row["content"],
            type=MemoryType(row["type"]),
            embedding=row.get("embedding") or None,
            metadata=row.get("metadata") or {},
            created_at=row.get("created_at") or datetime.utcnow(),
            importance=0.5 if importance is None else max(0.0, min(1.0, float(importance))),
            access_count=row.get("access_count") or 0,
            last_accessed_at=row.get("last_accessed_at"),
        )
