from contextlib import asynccontextmanager
from typing import Any, Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog
import uvicorn
from uvicorn.importer import import_from_string
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain.chat_models import init_chat_model
from langchain.embeddings import init_embeddings

from agent_runtime.application.api.route import memory, workflows
from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.memory.vector_store import VectorStore
from agent_runtime.domain.orchestration.core.orchestrator import WorkflowOrchestrator, create_orchestrator
from agent_runtime.domain.tool.tool_registry import ToolRegistry
from agent_runtime.domain.world.world_data_source import WorldDataSource
from agent_runtime.infrastructure.config import Settings
from agent_runtime.infrastructure.embeddings.embedding_provider import EmbeddingProvider
from agent_runtime.infrastructure.observability.langfuse_tracing import WorkflowTracer
from agent_runtime.infrastructure.observability.logging import setup_logging
from agent_runtime.infrastructure.storage.base_backend import MemoryBackend
from agent_runtime.infrastructure.storage.in_memory_backend import InMemoryBackend
from agent_runtime.infrastructure.storage.postgres_backend import PostgresMemoryBackend

logger = structlog.get_logger(__name__)


def create_app(orchestrator: WorkflowOrchestrator, memory_manager: MemoryManager) -> FastAPI:
    """HTTP surface over an already wired orchestrator and memory manager"""

    backend = memory_manager.vector_store.backend

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await backend.initialize()
        logger.info("Agent runtime API started", tracing=orchestrator.tracer.enabled)
        try:
            yield
        finally:
            orchestrator.tracer.flush()
            await backend.close()
            logger.info("Agent runtime API shutdown")

    app = FastAPI(title="Agent Runtime", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.orchestrator = orchestrator
    app.state.memory_manager = memory_manager

    app.include_router(workflows.router)
    app.include_router(memory.router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "tracing": orchestrator.tracer.enabled,
            "max_iterations": orchestrator.config.max_iterations,
        }

    return app


def build_backend(settings: Settings) -> MemoryBackend:
    if settings.storage.database_url:
        return PostgresMemoryBackend(
            settings.storage.database_url,
            memory_table=settings.storage.memory_table,
            conversation_table=settings.storage.conversation_table,
            dimensions=settings.llm.embedding_dimensions,
        )
    logger.warning("DATABASE_URL not set, memories are kept in process only")
    return InMemoryBackend()


def load_collaborator(path: str) -> Any:
    """Resolve "module:attribute"; classes and factories are called to build the instance"""

    target = import_from_string(path)
    return target() if callable(target) else target


def _resolve(given: Any, path: Optional[str], name: str, env_var: str) -> Any:
    if given is not None:
        return given
    if not path:
        raise ValueError(f"No {name} configured: pass {name}= or set {env_var}")
    logger.info("Loading collaborator", name=name, path=path)
    return load_collaborator(path)


def build_app(
    settings: Optional[Settings] = None,
    *,
    world: Optional[WorldDataSource] = None,
    tools: Optional[ToolRegistry] = None,
    model: Optional[BaseChatModel] = None,
    embeddings: Optional[Embeddings] = None
) -> FastAPI:
    """Wire services from settings; world data and tools must be supplied or configured"""

    settings = settings or Settings.from_env()

    world = _resolve(world, settings.collaborators.world_source, "world", "WORLD_SOURCE")
    tools = _resolve(tools, settings.collaborators.tool_source, "tools", "TOOL_SOURCE")

    tracer = WorkflowTracer.from_settings(settings.langfuse)
    if tools.tracer is None:
        tools.tracer = tracer

    embedding_provider = EmbeddingProvider(
        embeddings or init_embeddings(settings.llm.embedding_model),
        max_retries=settings.llm.embedding_max_retries,
    )
    vector_store = VectorStore(
        build_backend(settings),
        embedding_provider,
        similarity_threshold=settings.storage.similarity_threshold,
    )
    memory_manager = MemoryManager(vector_store)

    orchestrator = create_orchestrator(
        settings.workflow,
        world=world,
        model=model or init_chat_model(settings.llm.llm_model),
        tools=tools,
        memory_manager=memory_manager,
        tracer=tracer,
    )
    return create_app(orchestrator, memory_manager)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.logging.level, settings.logging.format, settings.logging.service_name)
    uvicorn.run(build_app(settings), host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
