from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Set, Tuple
from pydantic import BaseModel, Field

from agent_runtime.domain.models.scope import (
    BattleDataScope,
    CommunitiesScope,
    MemoriesScope,
    MessagesScope,
    PostsScope,
    RelationshipsScope,
    SocialGraphScope,
)

DEFAULT_IDENTITY = {
    "order_chaos": 0.0,
    "self_community": 0.0,
    "logic_emotion": 0.0,
    "power_harmony": 0.0,
    "tradition_innovation": 0.0,
}


class ActorVitals(BaseModel):
    """Actor state snapshot copied into the workflow state by Observe"""
    identity: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_IDENTITY))
    morale: float = 50
    coherence: float = 50
    heat: float = 0
    rage: float = 0
    energy: float = 50
    community_id: Optional[str] = None


class WorldDataSource(ABC):
    """Read access to the simulated world for the Observe node"""

    @abstractmethod
    async def fetch_actor_vitals(self, actor_id: str) -> Optional[ActorVitals]:
        """None when the actor does not exist"""
        pass

    @abstractmethod
    async def fetch_posts(
        self,
        actor_id: str,
        scope: PostsScope,
        social_graph: Optional[SocialGraphScope] = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_messages(self, actor_id: str, scope: MessagesScope) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_memories(self, actor_id: str, scope: MemoriesScope) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_relationships(
        self,
        actor_id: str,
        scope: RelationshipsScope,
        social_graph: Optional[SocialGraphScope] = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def fetch_communities(self, actor_id: str, scope: CommunitiesScope) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def fetch_battle_data(self, actor_id: str, scope: BattleDataScope) -> List[Dict[str, Any]]:
        pass


class StaticWorldDataSource(WorldDataSource):
    """World snapshot held in process, for local runs and tests.

    Filters are applied the way the live world applies them, but limits are
    left to the caller.
    """

    def __init__(
        self,
        actors: Optional[Dict[str, ActorVitals]] = None,
        posts: Optional[List[Dict[str, Any]]] = None,
        messages: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        memories: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        relationships: Optional[Dict[str, Dict[str, Any]]] = None,
        communities: Optional[List[Dict[str, Any]]] = None,
        battles: Optional[List[Dict[str, Any]]] = None
    ):
        self.actors = actors or {}
        self.posts = posts or []
        self.messages = messages or {}
        self.memories = memories or {}
        self.relationships = relationships or {}
        self.communities = communities or []
        self.battles = battles or []

    async def fetch_actor_vitals(self, actor_id: str) -> Optional[ActorVitals]:
        return self.actors.get(actor_id)

    async def fetch_posts(
        self,
        actor_id: str,
        scope: PostsScope,
        social_graph: Optional[SocialGraphScope] = None
    ) -> List[Dict[str, Any]]:
        if scope.filter == "personal":
            posts = [p for p in self.posts if p.get("author_id") == actor_id]
        elif scope.filter == "community":
            community_id = self._community_of(actor_id)
            posts = [p for p in self.posts if community_id and p.get("community_id") == community_id]
        elif scope.filter == "following":
            following = set(self.relationships.get(actor_id, {}).get("following", []))
            posts = [p for p in self.posts if p.get("author_id") in following]
        else:
            posts = list(self.posts)

        graph = self._graph_reach(actor_id, social_graph)
        if graph is None:
            return posts
        authors, communities = graph
        return [p for p in posts if p.get("author_id") in authors or p.get("community_id") in communities]

    def _community_of(self, actor_id: str) -> Optional[str]:
        return self.actors[actor_id].community_id if actor_id in self.actors else None

    def _graph_reach(
        self,
        actor_id: str,
        social_graph: Optional[SocialGraphScope]
    ) -> Optional[Tuple[Set[str], Set[str]]]:
        """Authors and communities the social graph reaches; None when it sets no bounds"""

        if social_graph is None:
            return None

        relations = self.relationships.get(actor_id, {})
        authors: Set[str] = set()
        if social_graph.following:
            authors.update(relations.get("following", []))
        if social_graph.followers:
            authors.update(relations.get("followers", []))

        communities: Set[str] = set(social_graph.community_ids)
        own = next((c for c in self.communities if c.get("id") == self._community_of(actor_id)), None)
        if own is not None:
            if social_graph.allied_communities:
                communities.update(own.get("ally_ids", []))
            if social_graph.enemy_communities:
                communities.update(own.get("enemy_ids", []))

        bounded = (
            social_graph.following
            or social_graph.followers
            or social_graph.community_ids
            or social_graph.allied_communities
            or social_graph.enemy_communities
        )
        return (authors, communities) if bounded else None

    async def fetch_messages(self, actor_id: str, scope: MessagesScope) -> List[Dict[str, Any]]:
        return list(self.messages.get(scope.conversation_id, []))

    async def fetch_memories(self, actor_id: str, scope: MemoriesScope) -> List[Dict[str, Any]]:
        return list(self.memories.get(scope.user_id, []))

    async def fetch_relationships(
        self,
        actor_id: str,
        scope: RelationshipsScope,
        social_graph: Optional[SocialGraphScope] = None
    ) -> Dict[str, Any]:
        relations = dict(self.relationships.get(scope.user_id, {}))
        if social_graph is not None and (social_graph.following or social_graph.followers):
            if not social_graph.following:
                relations.pop("following", None)
            if not social_graph.followers:
                relations.pop("followers", None)
        return relations

    async def fetch_communities(self, actor_id: str, scope: CommunitiesScope) -> List[Dict[str, Any]]:
        if scope.filter == "joined":
            return [c for c in self.communities if actor_id in c.get("member_ids", [])]
        if scope.filter == "suggested":
            return [c for c in self.communities if actor_id not in c.get("member_ids", [])]
        return list(self.communities)

    async def fetch_battle_data(self, actor_id: str, scope: BattleDataScope) -> List[Dict[str, Any]]:
        if scope.filter == "involved":
            return [b for b in self.battles if actor_id in b.get("participant_ids", [])]
        if scope.filter == "community":
            community_id = self._community_of(actor_id)
            return [
                b for b in self.battles
                if community_id and community_id in (b.get("attacker_community_id"), b.get("defender_community_id"))
            ]
        return list(self.battles)
