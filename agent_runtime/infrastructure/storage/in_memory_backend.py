from typing import Dict, Any, Iterable, List, Optional
import asyncio
import copy
import math
import uuid
from datetime import datetime

from agent_runtime.domain.models.memory import SchemaCapabilities
from agent_runtime.infrastructure.storage.base_backend import MemoryBackend

OPTIONAL_COLUMNS = ("importance", "access_count", "last_accessed_at")


def cosine_similarity(a: List[float], b: List[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryBackend(MemoryBackend):
    """Process-local backend for development and tests"""

    def __init__(self, optional_columns: Iterable[str] = OPTIONAL_COLUMNS):
        self.columns = set(optional_columns) & set(OPTIONAL_COLUMNS)
        self.memories: Dict[str, Dict[str, Any]] = {}
        self.conversation_log: List[Dict[str, Any]] = []
        self.probe_count = 0
        self._lock = asyncio.Lock()

    async def probe_capabilities(self) -> SchemaCapabilities:
        self.probe_count += 1
        return SchemaCapabilities.from_columns(self.columns)

    async def insert_memory(self, row: Dict[str, Any]) -> Dict[str, Any]:
        unknown = {key for key in row if key in OPTIONAL_COLUMNS} - self.columns
        if unknown:
            raise KeyError(f"Unknown columns: {sorted(unknown)}")

        async with self._lock:
            stored = copy.deepcopy(row)
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", datetime.utcnow())
            self.memories[stored["id"]] = stored
            return copy.deepcopy(stored)

    async def match_memories(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: float
    ) -> List[Dict[str, Any]]:
        async with self._lock:
            scored = []
            for row in self.memories.values():
                if row["user_id"] != user_id or not row.get("embedding"):
                    continue
                similarity = cosine_similarity(row["embedding"], embedding)
                if similarity >= threshold:
                    match = copy.deepcopy(row)
                    match["similarity"] = similarity
                    scored.append(match)

            scored.sort(key=lambda r: r["similarity"], reverse=True)
            return scored[:limit]

    async def recent_memories(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.page_memories(user_id, 0, limit)

    async def fetch_memory(self, memory_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            row = self.memories.get(memory_id)
            return copy.deepcopy(row) if row else None

    async def update_memory(self, memory_id: str, values: Dict[str, Any]) -> None:
        unknown = {key for key in values if key in OPTIONAL_COLUMNS} - self.columns
        if unknown:
            raise KeyError(f"Unknown columns: {sorted(unknown)}")

        async with self._lock:
            if memory_id in self.memories:
                self.memories[memory_id].update(values)

    async def delete_memories_before(self, user_id: str, cutoff: datetime) -> int:
        async with self._lock:
            expired = [
                memory_id for memory_id, row in self.memories.items()
                if row["user_id"] == user_id and row["created_at"] < cutoff
            ]
            for memory_id in expired:
                del self.memories[memory_id]
            return len(expired)

    async def page_memories(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        async with self._lock:
            rows = [row for row in self.memories.values() if row["user_id"] == user_id]
            rows.sort(key=lambda r: r["created_at"], reverse=True)
            return [copy.deepcopy(row) for row in rows[offset:offset + limit]]

    async def fetch_conversation_log(
        self,
        agent_id: str,
        sender_id: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        async with self._lock:
            rows = [
                row for row in self.conversation_log
                if row["agent_id"] == agent_id and (sender_id is None or row.get("sender_id") == sender_id)
            ]
            rows.sort(key=lambda r: r["created_at"])
            return [dict(row) for row in rows[-limit:]] if limit > 0 else []

    def add_conversation_row(
        self,
        agent_id: str,
        sender_type: str,
        content: str,
        sender_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> None:
        """Append to the conversation log, as the chat surface would"""
        self.conversation_log.append({
            "agent_id": agent_id,
            "sender_id": sender_id,
            "sender_type": sender_type,
            "content": content,
            "created_at": created_at or datetime.utcnow(),
        })
