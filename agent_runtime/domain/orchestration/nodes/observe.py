from typing import Dict, Any, List, Tuple
import asyncio
import time
import structlog

from agent_runtime.domain.models.scope import Scope
from agent_runtime.domain.models.workflow_state import WorkflowObservation, WorkflowState, WorkflowStep
from agent_runtime.domain.orchestration.nodes.base_node import WorkflowNode
from agent_runtime.domain.world.world_data_source import WorldDataSource

logger = structlog.get_logger(__name__)


def _truncate(text: str, length: int = 100) -> str:
    return text if len(text) <= length else text[:length] + "..."


class ObserveNode(WorkflowNode):
    """Gathers the actor's vitals and the world data its scope allows"""

    step = WorkflowStep.OBSERVE

    def __init__(self, world: WorldDataSource, fetch_timeout: float = 10.0):
        super().__init__("observe", "Gather actor state and scoped world data")
        self.world = world
        self.fetch_timeout = fetch_timeout

    async def execute(self, state: WorkflowState) -> Dict[str, Any]:
        start_time = time.perf_counter()
        scope: Scope = state["scope"]
        actor_id = scope.actor.id

        vitals = await asyncio.wait_for(self.world.fetch_actor_vitals(actor_id), timeout=self.fetch_timeout)
        if vitals is None:
            return self.fail(state, f"Actor not found: {actor_id}")

        fetched = await self._gather(scope)
        observation = WorkflowObservation(**fetched)
        observation.context_summary = self._summarize(scope, observation)

        logger.info(
            "Observation complete",
            actor_id=actor_id,
            categories=sorted(fetched),
            morale=vitals.morale,
            heat=vitals.heat
        )

        metadata = dict(state["metadata"])
        metadata["energy"] = vitals.energy
        metadata["observe_time"] = (time.perf_counter() - start_time) * 1000

        return {
            "step": WorkflowStep.REASON,
            "observation": observation,
            "actor_identity": vitals.identity,
            "actor_morale": vitals.morale,
            "actor_coherence": vitals.coherence,
            "actor_heat": vitals.heat,
            "actor_rage": vitals.rage,
            "actor_community_id": vitals.community_id,
            "metadata": metadata,
        }

    async def _gather(self, scope: Scope) -> Dict[str, Any]:
        """Fetch every enabled category concurrently, each within the fetch timeout"""

        data_scope = scope.data_scope
        actor_id = scope.actor.id
        pending: List[Tuple[str, Any, int]] = []

        if data_scope.posts:
            posts = self.world.fetch_posts(actor_id, data_scope.posts, scope.social_graph)
            pending.append(("posts", posts, data_scope.posts.limit))
        if data_scope.messages:
            pending.append(("messages", self.world.fetch_messages(actor_id, data_scope.messages), data_scope.messages.limit))
        if data_scope.memories:
            pending.append(("memories", self.world.fetch_memories(actor_id, data_scope.memories), data_scope.memories.limit))
        if data_scope.relationships:
            relationships = self.world.fetch_relationships(actor_id, data_scope.relationships, scope.social_graph)
            pending.append(("relationships", relationships, -1))
        if data_scope.communities:
            pending.append(("communities", self.world.fetch_communities(actor_id, data_scope.communities), data_scope.communities.limit))
        if data_scope.battle_data:
            pending.append(("battle_data", self.world.fetch_battle_data(actor_id, data_scope.battle_data), data_scope.battle_data.limit))

        tasks = [
            asyncio.ensure_future(asyncio.wait_for(call, timeout=self.fetch_timeout))
            for _, call, _ in pending
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # One failed category fails the node; stop the other fetches too
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        fetched: Dict[str, Any] = {}
        for (category, _, limit), result in zip(pending, results):
            # Sources may ignore the limit; enforce it here
            fetched[category] = result if limit < 0 else list(result)[:limit]
        return fetched

    def _summarize(self, scope: Scope, observation: WorkflowObservation) -> str:
        trigger = scope.trigger
        subject = scope.subject

        lines = [
            f"TRIGGER: {trigger.label}",
            f"TIME: {trigger.timestamp.isoformat()}",
            f"ACTOR: {scope.actor.id}",
        ]

        if subject:
            lines.append(f"SUBJECT: {subject.type} {subject.id}")
            content = subject.data.get("content") or subject.data.get("message")
            if isinstance(content, str) and content:
                lines.append(f'CONTENT: "{_truncate(content)}"')
            if scope.human_profile_id:
                lines.append(f"FROM USER: {scope.human_profile_id}")
        else:
            lines.append("SUBJECT: none")

        for category in scope.data_scope.enabled_categories():
            value = getattr(observation, category)
            lines.append(f"{category.upper()}: {len(value)}")

        return "\n".join(lines)
