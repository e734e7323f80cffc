from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum


class TriggerType(str, Enum):
    """What started a workflow run"""
    EVENT = "event"
    SCHEDULE = "schedule"


class EventKind(str, Enum):
    """Event triggers"""
    CHAT = "chat"
    COMMENT = "comment"
    MENTION = "mention"
    POST = "post"
    LAW_PROPOSAL = "law_proposal"
    BATTLE = "battle"
    RELATIONSHIP_CHANGE = "relationship_change"


class ScheduleKind(str, Enum):
    """Scheduled triggers"""
    AGENT_CYCLE = "agent_cycle"
    RELATIONSHIP_SYNC = "relationship_sync"
    MEMORY_CLEANUP = "memory_cleanup"
    TOKEN_RESET = "token_reset"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Trigger(FrozenModel):
    """Trigger that started the run"""
    type: TriggerType
    event: Optional[EventKind] = None
    schedule: Optional[ScheduleKind] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    is_response: bool = Field(False, description="Response to a previous action of this actor")

    @property
    def label(self) -> str:
        kind = self.event or self.schedule
        return f"{self.type.value}:{kind.value if kind else 'unknown'}"


class Actor(FrozenModel):
    """Actor performing the workflow"""
    id: str
    type: Literal["agent", "user"] = "agent"
    profile: Dict[str, Any] = Field(default_factory=dict)


class Subject(FrozenModel):
    """Target of the trigger"""
    id: str
    type: Literal["post", "comment", "community", "user", "proposal", "battle", "message"]
    data: Dict[str, Any] = Field(default_factory=dict)


class PostsScope(FrozenModel):
    filter: Literal["all", "following", "community", "personal"] = "all"
    limit: int = Field(10, ge=0)


class MessagesScope(FrozenModel):
    conversation_id: str
    limit: int = Field(20, ge=0)


class MemoriesScope(FrozenModel):
    user_id: str
    relevant: bool = True
    limit: int = Field(5, ge=0)


class RelationshipsScope(FrozenModel):
    user_id: str


class CommunitiesScope(FrozenModel):
    filter: Literal["joined", "suggested", "all"] = "joined"
    limit: int = Field(5, ge=0)


class BattleDataScope(FrozenModel):
    filter: Literal["involved", "community", "recent"] = "involved"
    limit: int = Field(5, ge=0)


class DataScopeConfig(FrozenModel):
    """World data categories visible to the run, with their limits"""
    posts: Optional[PostsScope] = None
    messages: Optional[MessagesScope] = None
    memories: Optional[MemoriesScope] = None
    relationships: Optional[RelationshipsScope] = None
    communities: Optional[CommunitiesScope] = None
    battle_data: Optional[BattleDataScope] = None

    def enabled_categories(self) -> List[str]:
        return [name for name in type(self).model_fields if getattr(self, name) is not None]


class SocialGraphScope(FrozenModel):
    following: bool = False
    followers: bool = False
    community_ids: List[str] = Field(default_factory=list)
    allied_communities: bool = False
    enemy_communities: bool = False


class Scope(FrozenModel):
    """Immutable description of who triggered a run and what it may see"""
    trigger: Trigger
    actor: Actor
    subject: Optional[Subject] = None
    data_scope: DataScopeConfig = Field(default_factory=DataScopeConfig)
    social_graph: Optional[SocialGraphScope] = None
    conversation_id: Optional[str] = None
    context_data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def human_profile_id(self) -> Optional[str]:
        """Human counterpart of the exchange, if the subject names one"""
        if not self.subject:
            return None
        data = self.subject.data
        for key in ("human_profile_id", "sender_id", "mentioner_id", "commenter_id"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    def summary(self) -> str:
        enabled = ", ".join(self.data_scope.enabled_categories()) or "none"
        subject = f"{self.subject.type} {self.subject.id}" if self.subject else "none"
        return "\n".join([
            f"Trigger: {self.trigger.label}",
            f"Actor: {self.actor.type} {self.actor.id}",
            f"Subject: {subject}",
            f"Data Scope: {enabled}",
        ])
