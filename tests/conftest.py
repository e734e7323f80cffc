"""
Shared fixtures: an in-process world, tool registry, and memory stack.
Nothing here touches the network or a database.
"""
from typing import Any, Dict, List, Tuple

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.memory.vector_store import VectorStore
from agent_runtime.domain.orchestration.core.orchestrator import create_orchestrator
from agent_runtime.domain.tool.tool_registry import ToolCategory, ToolRegistry
from agent_runtime.domain.world.world_data_source import ActorVitals, StaticWorldDataSource
from agent_runtime.infrastructure.embeddings.embedding_provider import EmbeddingProvider
from agent_runtime.infrastructure.observability.logging import MetricsCollector
from agent_runtime.infrastructure.storage.in_memory_backend import InMemoryBackend

from helpers import POSTS, make_tool


@pytest.fixture
def world() -> StaticWorldDataSource:
    return StaticWorldDataSource(
        actors={
            "agent-1": ActorVitals(morale=70, coherence=60, heat=10, community_id="c-1"),
            "agent-hot": ActorVitals(heat=85),
        },
        posts=POSTS,
        relationships={"agent-1": {"following": ["human-2"]}},
        communities=[
            {"id": "c-1", "name": "Builders", "member_ids": ["agent-1"]},
            {"id": "c-2", "name": "Raiders", "member_ids": ["human-2"]},
        ],
        battles=[
            {"id": "b-1", "participant_ids": ["agent-1"], "attacker_community_id": "c-2", "defender_community_id": "c-1"},
            {"id": "b-2", "participant_ids": ["human-2"], "attacker_community_id": "c-2", "defender_community_id": "c-3"},
        ],
    )


@pytest.fixture
def tool_calls() -> List[Tuple[str, Dict[str, Any]]]:
    return []


@pytest.fixture
def tools(tool_calls) -> ToolRegistry:
    async def get_post(args, context):
        post = next((p for p in POSTS if p["id"] == args.get("post_id")), None)
        if post is None:
            raise LookupError(f"Post not found: {args.get('post_id')}")
        return post

    registry = ToolRegistry()
    for name in ("reply", "like", "create_post", "decline", "ignore"):
        registry.register_tool(make_tool(name, calls=tool_calls))
    registry.register_tool(make_tool("get_post", ToolCategory.DATA, handler=get_post, calls=tool_calls))
    return registry


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def embedding_provider() -> EmbeddingProvider:
    return EmbeddingProvider(DeterministicFakeEmbedding(size=16), max_retries=0)


@pytest.fixture
def vector_store(backend, embedding_provider) -> VectorStore:
    return VectorStore(backend, embedding_provider, similarity_threshold=0.5)


@pytest.fixture
def memory_manager(vector_store) -> MemoryManager:
    return MemoryManager(vector_store)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def build_orchestrator(world, tools, memory_manager, metrics):
    def build(model, config=None, **overrides):
        collaborators = {
            "world": world,
            "model": model,
            "tools": tools,
            "memory_manager": memory_manager,
            "metrics": metrics,
        }
        collaborators.update(overrides)
        return create_orchestrator(config, **collaborators)

    return build
