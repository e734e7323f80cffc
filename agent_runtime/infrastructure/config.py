"""
Runtime settings loaded from environment variables.
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from agent_runtime.domain.orchestration.config import WorkflowConfig


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_str(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    service_name: str = "agent-runtime"


class LangfuseSettings(BaseModel):
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    host: str = "https://cloud.langfuse.com"

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self.secret_key)


class StorageSettings(BaseModel):
    database_url: Optional[str] = None
    memory_table: str = "agent_memories"
    conversation_table: str = "agent_chat_messages"
    similarity_threshold: float = Field(0.5, ge=0.0, le=1.0)


class ModelSettings(BaseModel):
    llm_model: str = "openai:gpt-4o-mini"
    embedding_model: str = "openai:text-embedding-3-small"
    embedding_max_retries: int = Field(2, ge=0)
    embedding_dimensions: int = Field(1536, gt=0)


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class CollaboratorSettings(BaseModel):
    """Import paths ("module:attribute") of the world data source and tool registry"""
    world_source: Optional[str] = None
    tool_source: Optional[str] = None


class Settings(BaseModel):
    """All runtime settings"""
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    langfuse: LangfuseSettings = Field(default_factory=LangfuseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    llm: ModelSettings = Field(default_factory=ModelSettings)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    collaborators: CollaboratorSettings = Field(default_factory=CollaboratorSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            server=ServerSettings(
                host=os.getenv("API_HOST", "0.0.0.0"),
                port=int(os.getenv("API_PORT", "8000")),
            ),
            logging=LoggingSettings(
                level=os.getenv("LOG_LEVEL", "INFO"),
                format=os.getenv("LOG_FORMAT", "json"),
                service_name=os.getenv("SERVICE_NAME", "agent-runtime"),
            ),
            langfuse=LangfuseSettings(
                public_key=_env_str("LANGFUSE_PUBLIC_KEY"),
                secret_key=_env_str("LANGFUSE_SECRET_KEY"),
                host=os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com"),
            ),
            storage=StorageSettings(
                database_url=_env_str("DATABASE_URL"),
                memory_table=os.getenv("MEMORY_TABLE", "agent_memories"),
                conversation_table=os.getenv("CONVERSATION_TABLE", "agent_chat_messages"),
                similarity_threshold=float(os.getenv("SIMILARITY_THRESHOLD", "0.5")),
            ),
            llm=ModelSettings(
                llm_model=os.getenv("LLM_MODEL", "openai:gpt-4o-mini"),
                embedding_model=os.getenv("EMBEDDING_MODEL", "openai:text-embedding-3-small"),
                embedding_max_retries=int(os.getenv("EMBEDDING_MAX_RETRIES", "2")),
                embedding_dimensions=int(os.getenv("EMBEDDING_DIMENSIONS", "1536")),
            ),
            workflow=WorkflowConfig(
                max_iterations=int(os.getenv("WORKFLOW_MAX_ITERATIONS", "3")),
                heat_cost_per_iteration=int(os.getenv("WORKFLOW_HEAT_COST_PER_ITERATION", "5")),
                enable_looping=_env_bool("WORKFLOW_ENABLE_LOOPING", True),
                enable_tool_calling=_env_bool("WORKFLOW_ENABLE_TOOL_CALLING", True),
                tool_execution_timeout=int(os.getenv("WORKFLOW_TOOL_EXECUTION_TIMEOUT", "30000")),
                max_tool_calls_per_reasoning=int(os.getenv("WORKFLOW_MAX_TOOL_CALLS_PER_REASONING", "5")),
            ),
            collaborators=CollaboratorSettings(
                world_source=_env_str("WORLD_SOURCE"),
                tool_source=_env_str("TOOL_SOURCE"),
            ),
        )
