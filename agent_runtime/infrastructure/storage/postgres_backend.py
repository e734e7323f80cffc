from typing import Dict, Any, List, Optional
import json
import re
from datetime import datetime
import asyncpg
import structlog

from agent_runtime.domain.models.memory import SchemaCapabilities
from agent_runtime.infrastructure.storage.base_backend import MemoryBackend

logger = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _vector_literal(embedding: List[float]) -> str:
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


def _parse_vector(value: Any) -> Optional[List[float]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [float(v) for v in json.loads(value)]
    return [float(v) for v in value]


class PostgresMemoryBackend(MemoryBackend):
    """Memory persistence in PostgreSQL with pgvector.

    Schema (see create_schema):
    - memory table: id uuid, user_id, content, type, embedding vector,
      metadata jsonb, created_at, plus the optional importance, access_count
      and last_accessed_at columns; indexed by (user_id, created_at)
    - conversation log: agent_id, sender_id, sender_type, content, created_at

    Optional columns are discovered from information_schema, so older tables
    without them keep working.
    """

    def __init__(
        self,
        database_url: str,
        memory_table: str = "agent_memories",
        conversation_table: str = "agent_chat_messages",
        dimensions: int = 1536
    ):
        for name in (memory_table, conversation_table):
            if not _IDENTIFIER.match(name):
                raise ValueError(f"Invalid table name: {name}")

        self.database_url = database_url
        self.memory_table = memory_table
        self.conversation_table = conversation_table
        self.dimensions = dimensions
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    def _require_pool(self) -> None:
        if self.pool is None:
            raise RuntimeError("Backend not initialized")

    async def create_schema(self) -> None:
        self._require_pool()

        statements = [
            "CREATE EXTENSION IF NOT EXISTS vector",
            f"""
            CREATE TABLE IF NOT EXISTS {self.memory_table} (
                id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
                user_id text NOT NULL,
                content text NOT NULL,
                type text NOT NULL,
                embedding vector({self.dimensions}),
                metadata jsonb NOT NULL DEFAULT '{{}}'::jsonb,
                created_at timestamp NOT NULL DEFAULT now(),
                importance double precision DEFAULT 0.5,
                access_count integer DEFAULT 0,
                last_accessed_at timestamp
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {self.memory_table}_user_created_idx "
            f"ON {self.memory_table} (user_id, created_at DESC)",
            f"""
            CREATE TABLE IF NOT EXISTS {self.conversation_table} (
                id bigserial PRIMARY KEY,
                agent_id text NOT NULL,
                sender_id text,
                sender_type text NOT NULL,
                content text NOT NULL,
                created_at timestamp NOT NULL DEFAULT now()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {self.conversation_table}_agent_created_idx "
            f"ON {self.conversation_table} (agent_id, sender_id, created_at)",
        ]

        async with self.pool.acquire() as conn:
            for statement in statements:
                await conn.execute(statement)

    async def probe_capabilities(self) -> SchemaCapabilities:
        self._require_pool()

        query = """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = $1
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, self.memory_table)

        return SchemaCapabilities.from_columns(row["column_name"] for row in rows)

    def _to_row(self, record: asyncpg.Record) -> Dict[str, Any]:
        row = dict(record)
        row["id"] = str(row["id"])
        row["embedding"] = _parse_vector(row.get("embedding"))
        metadata = row.get("metadata")
        row["metadata"] = json.loads(metadata) if isinstance(metadata, str) else (metadata or {})
        return row

    async def insert_memory(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self._require_pool()

        columns = []
        placeholders = []
        values = []
        for column, value in row.items():
            if not _IDENTIFIER.match(column):
                raise ValueError(f"Invalid column name: {column}")
            values.append(value)
            position = len(values)
            if column == "embedding":
                values[-1] = _vector_literal(value)
                placeholders.append(f"${position}::vector")
            elif column == "metadata":
                values[-1] = json.dumps(value)
                placeholders.append(f"${position}::jsonb")
            else:
                placeholders.append(f"${position}")
            columns.append(column)

        query = (
            f"INSERT INTO {self.memory_table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )

        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(query, *values)

        return self._to_row(record)

    async def match_memories(
        self,
        user_id: str,
        embedding: List[float],
        limit: int,
        threshold: float
    ) -> List[Dict[str, Any]]:
        self._require_pool()

        query = f"""
            SELECT *, 1 - (embedding <=> $2::vector) AS similarity
            FROM {self.memory_table}
            WHERE user_id = $1
              AND embedding IS NOT NULL
              AND 1 - (embedding <=> $2::vector) >= $3
            ORDER BY embedding <=> $2::vector
            LIMIT $4
        """

        async with self.pool.acquire() as conn:
            records = await conn.fetch(query, user_id, _vector_literal(embedding), threshold, limit)

        return [self._to_row(record) for record in records]

    async def recent_memories(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        return await self.page_memories(user_id, 0, limit)

    async def fetch_memory(self, memory_id: str) -> Optional[Dict[str, Any]]:
        self._require_pool()

        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(
                f"SELECT * FROM {self.memory_table} WHERE id = $1::uuid", memory_id
            )

        return self._to_row(record) if record else None

    async def update_memory(self, memory_id: str, values: Dict[str, Any]) -> None:
        self._require_pool()

        if not values:
            return

        assignments = []
        params: List[Any] = [memory_id]
        for column, value in values.items():
            if not _IDENTIFIER.match(column):
                raise ValueError(f"Invalid column name: {column}")
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        query = f"UPDATE {self.memory_table} SET {', '.join(assignments)} WHERE id = $1::uuid"

        async with self.pool.acquire() as conn:
            await conn.execute(query, *params)

    async def delete_memories_before(self, user_id: str, cutoff: datetime) -> int:
        self._require_pool()

        query = f"DELETE FROM {self.memory_table} WHERE user_id = $1 AND created_at < $2"

        async with self.pool.acquire() as conn:
            status = await conn.execute(query, user_id, cutoff)

        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(status.split()[-1]) if status else 0

    async def page_memories(self, user_id: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        self._require_pool()

        query = f"""
            SELECT *
            FROM {self.memory_table}
            WHERE user_id = $1
            ORDER BY created_at DESC
            OFFSET $2
            LIMIT $3
        """

        async with self.pool.acquire() as conn:
            records = await conn.fetch(query, user_id, offset, limit)

        return [self._to_row(record) for record in records]

    async def fetch_conversation_log(
        self,
        agent_id: str,
        sender_id: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        self._require_pool()

        query = f"""
            SELECT sender_type, sender_id, content, created_at
            FROM {self.conversation_table}
            WHERE agent_id = $1 AND ($2::text IS NULL OR sender_id = $2)
            ORDER BY created_at DESC
            LIMIT $3
        """

        async with self.pool.acquire() as conn:
            records = await conn.fetch(query, agent_id, sender_id, limit)

        return [dict(record) for record in reversed(records)]
