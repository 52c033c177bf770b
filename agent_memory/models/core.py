"""
Core data models for the workspace agent memory.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import to_iso


@dataclass(frozen=True)
class EntityRef:
    """A named thing a memory refers to (page, task, goal, topic)."""
    id: str
    type: str
    name: str


@dataclass
class MemoryRecord:
    """An immutable observation ingested into the workspace memory.

    Records are created once and never updated. The embedding used for ranking
    lives only in the graph projection and is never carried on this object.
    """
    id: str
    workspace_id: str
    space_id: Optional[str]
    creator_id: Optional[str]
    source: Optional[str]
    summary: str
    content: Any
    tags: List[str]
    timestamp: datetime
    score: Optional[float] = None  # Cosine similarity, set only by semantic queries

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'workspaceId': self.workspace_id,
            'spaceId': self.space_id,
            'creatorId': self.creator_id,
            'source': self.source,
            'summary': self.summary,
            'content': self.content,
            'tags': list(self.tags),
            'timestamp': to_iso(self.timestamp),
        }
        if self.score is not None:
            data['score'] = self.score
        return data


@dataclass
class MemoryFilters:
    """Filters shared by every read path.

    All filters are AND-ed; `tags` and `sources` match when ANY listed value
    matches; `from_time`/`to_time` are inclusive.
    """
    workspace_id: str
    space_id: Optional[str] = None
    creator_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    from_time: Optional[datetime] = None
    to_time: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass
class GraphNode:
    """Entity node of the co-occurrence graph."""
    id: str
    label: str
    type: str
    count: int
    last_seen: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'type': self.type,
            'count': self.count,
            'lastSeen': to_iso(self.last_seen) if self.last_seen else None,
        }


@dataclass
class GraphEdge:
    """Undirected co-occurrence edge; `source` < `target` and weight counts shared memories."""
    source: str
    target: str
    weight: int

    def to_dict(self) -> Dict[str, Any]:
        return {'source': self.source, 'target': self.target, 'weight': self.weight}


@dataclass
class MemoryGraph:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'nodes': [node.to_dict() for node in self.nodes], 'edges': [edge.to_dict() for edge in self.edges]}


@dataclass
class EntitySummary:
    """Entity with its reference count and most recent reference time."""
    id: str
    name: str
    type: str
    count: int
    last_seen: Optional[datetime] = None


@dataclass
class EntityDetails:
    entity: Optional[EntitySummary]
    memories: List[MemoryRecord]


@dataclass
class EntityLink:
    entity_id: str
    entity_name: Optional[str]


@dataclass
class EntityLinks:
    """Entity links keyed by task id and goal id."""
    task_links: Dict[str, List[EntityLink]] = field(default_factory=dict)
    goal_links: Dict[str, List[EntityLink]] = field(default_factory=dict)


@dataclass
class DayCount:
    day: str  # YYYY-MM-DD
    count: int
