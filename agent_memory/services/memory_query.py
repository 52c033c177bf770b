"""
Read paths over the memory stores.

Candidates come from the graph projection (filters, ordering, embeddings,
entity references) and are joined back to the relational store by id for
their content. Every graph read opens its own session and closes it before
returning.
"""

import math
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import date
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models.core import (DayCount, EntityDetails, EntityLink, EntityLinks, EntitySummary, GraphEdge, GraphNode,
                           MemoryFilters, MemoryGraph, MemoryRecord)
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import MemoryConfig, config
from ..utils.database_client import DatabaseClient, DatabaseError, MemoryRow
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.timestamp_utils import day_key, ensure_utc, from_millis, local_day_window, recent_days_window
from .graph_store import GraphStore, close_session

logger = get_logger(__name__)

ENTITY_LINK_SOURCE = 'entity-link'
DAILY_LIMIT = 50


class MemoryQueryError(Exception):
    """Custom exception for memory read errors."""
    pass


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0 for empty, mismatched or zero-norm vectors
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def record_from_row(row: MemoryRow, score: Optional[float] = None) -> MemoryRecord:
    return MemoryRecord(id=row.id,
                        workspace_id=row.workspace_id,
                        space_id=row.space_id,
                        creator_id=row.creator_id,
                        source=row.source,
                        summary=row.summary,
                        content=row.content,
                        tags=[str(tag) for tag in row.tags or []],
                        timestamp=ensure_utc(row.created_at),
                        score=score)


def aggregate_entities(references: Iterable[Dict[str, Any]]) -> List[EntitySummary]:
    """
    Count distinct referencing memories per entity.

    Args:
        references: Rows with memory_id, timestamp_ms, entity_id, entity_name, entity_type

    Returns:
        Entity summaries ordered by count, then most recent reference, then id
    """
    memories: Dict[str, set] = defaultdict(set)
    last_seen: Dict[str, int] = {}
    attributes: Dict[str, Dict[str, Any]] = {}

    for ref in references:
        entity_id = ref['entity_id']
        memories[entity_id].add(ref['memory_id'])
        last_seen[entity_id] = max(last_seen.get(entity_id, ref['timestamp_ms']), ref['timestamp_ms'])
        attributes[entity_id] = ref

    summaries = [
        EntitySummary(id=entity_id,
                      name=attributes[entity_id].get('entity_name') or entity_id,
                      type=attributes[entity_id].get('entity_type') or '',
                      count=len(memory_ids),
                      last_seen=from_millis(last_seen[entity_id])) for entity_id, memory_ids in memories.items()
    ]
    summaries.sort(key=lambda s: s.id)
    summaries.sort(key=lambda s: (s.count, s.last_seen), reverse=True)
    return summaries


def co_occurrence_edges(references: Iterable[Dict[str, Any]], min_weight: int = 1, max_edges: int = 64) -> List[GraphEdge]:
    """
    Build undirected co-occurrence edges from (memory, entity) references.

    Each pair is emitted once with source < target; the weight is the number of
    memories referring to both entities.
    """
    by_memory: Dict[str, set] = defaultdict(set)
    for ref in references:
        by_memory[ref['memory_id']].add(ref['entity_id'])

    weights: Counter = Counter()
    for entity_ids in by_memory.values():
        for source, target in combinations(sorted(entity_ids), 2):
            weights[(source, target)] += 1

    edges = [
        GraphEdge(source=source, target=target, weight=weight) for (source, target), weight in weights.items()
        if weight >= min_weight
    ]
    edges.sort(key=lambda e: (-e.weight, e.source, e.target))
    return edges[:max(max_edges, 0)]


class MemoryQueryEngine:
    """Filtered listing, semantic ranking, daily views and entity graph reads."""

    def __init__(self,
                 database: Optional[DatabaseClient] = None,
                 graph: Optional[GraphStore] = None,
                 embedder: Optional[BedrockEmbed] = None,
                 memory_config: Optional[MemoryConfig] = None):
        """Initialize the query engine; missing collaborators are built from the global config."""
        self.database = database or DatabaseClient(config.database)
        self.graph = graph or GraphStore(NeptuneClient(config.neptune))
        self.embedder = embedder or BedrockEmbed(config.bedrock_embed)
        self.memory_config = memory_config or config.memory

        logger.info('Initialized MemoryQueryEngine')

    def _match_memories(self, filters: MemoryFilters, fetch_limit: int, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        session = self.graph.session()
        try:
            return session.match_memories(filters, fetch_limit, entity_id=entity_id)
        except NeptuneError as e:
            logger.error(f'Error fetching memory candidates: {e}')
            raise MemoryQueryError(f'Memory candidate fetch failed: {e}')
        finally:
            close_session(session)

    def _match_references(self, filters: MemoryFilters, entity_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        session = self.graph.session()
        try:
            return session.match_references(filters, entity_ids=entity_ids)
        except NeptuneError as e:
            logger.error(f'Error fetching entity references: {e}')
            raise MemoryQueryError(f'Entity reference fetch failed: {e}')
        finally:
            close_session(session)

    def _hydrate(self, candidates: List[Dict[str, Any]], limit: int, query_text: Optional[str] = None) -> List[MemoryRecord]:
        """Join candidates to their relational rows, optionally rerank by similarity, and truncate."""
        if not candidates:
            return []

        try:
            rows = self.database.get_memories(candidate['id'] for candidate in candidates)
        except DatabaseError as e:
            raise MemoryQueryError(f'Memory content fetch failed: {e}')

        joined = [candidate for candidate in candidates if candidate['id'] in rows]
        missing = len(candidates) - len(joined)
        if missing > 0:
            logger.debug(f'{missing} graph candidates had no relational row')
        candidates = joined

        if not query_text or not query_text.strip():
            return [record_from_row(rows[candidate['id']]) for candidate in candidates[:limit]]

        try:
            query_embedding = self.embedder.embed_query(query_text)
        except BedrockEmbedError as e:
            raise MemoryQueryError(f'Query embedding failed: {e}')

        scored = [(cosine_similarity(query_embedding, candidate['embedding']), candidate) for candidate in candidates]
        # sorted() is stable, so equal scores keep newest-first order
        scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
        return [record_from_row(rows[candidate['id']], score=score) for score, candidate in scored[:limit]]

    def query(self, filters: MemoryFilters, query_text: Optional[str] = None) -> List[MemoryRecord]:
        """
        Query memories, optionally ranked by semantic similarity to a text.

        Args:
            filters: Memory filters; limit defaults to the configured query limit
            query_text: Optional text to rank against

        Returns:
            Records newest first, or by descending similarity when query_text is given

        Raises:
            MemoryQueryError: If a store or the embedding service fails
        """
        limit = filters.limit or self.memory_config.default_query_limit
        candidates = self._match_memories(filters, max(limit * 5, 50))
        records = self._hydrate(candidates, limit, query_text)
        logger.debug(f'Query returned {len(records)} of {len(candidates)} candidates')
        return records

    def list_memories(self, filters: MemoryFilters) -> List[MemoryRecord]:
        """
        List memories straight from the relational store, newest first.

        Tag filters are applied after the fetch, so a tag-filtered listing scans
        every row matching the other filters.
        """
        limit = filters.limit or self.memory_config.default_query_limit
        try:
            rows = self.database.list_memories(workspace_id=filters.workspace_id,
                                               space_id=filters.space_id,
                                               creator_id=filters.creator_id,
                                               sources=filters.sources,
                                               since=filters.from_time,
                                               until=filters.to_time,
                                               limit=None if filters.tags else limit)
        except DatabaseError as e:
            raise MemoryQueryError(f'Memory listing failed: {e}')

        if filters.tags:
            wanted = {str(tag) for tag in filters.tags}
            rows = [row for row in rows if wanted.intersection(row.tags or [])]

        return [record_from_row(row) for row in rows[:limit]]

    def get_daily_memories(self, filters: MemoryFilters, day: Optional[date] = None) -> List[MemoryRecord]:
        """Memories of one local calendar day (default today), newest first."""
        start, end = local_day_window(day)
        return self.query(replace(filters, from_time=start, to_time=end, limit=filters.limit or DAILY_LIMIT))

    def list_memory_days(self, filters: MemoryFilters) -> List[DayCount]:
        """
        Count memories per UTC calendar day over the last N days.

        Args:
            filters: Memory filters; limit is the number of days (default 14)

        Returns:
            Day buckets, most recent first, at most N entries
        """
        days = filters.limit or self.memory_config.default_day_window
        start, _ = recent_days_window(days)

        session = self.graph.session()
        try:
            timestamps = session.match_timestamps(replace(filters, from_time=start, limit=None))
        except NeptuneError as e:
            raise MemoryQueryError(f'Memory day listing failed: {e}')
        finally:
            close_session(session)

        counts = Counter(day_key(from_millis(ts)) for ts in timestamps)
        return [DayCount(day=key, count=counts[key]) for key in sorted(counts, reverse=True)[:days]]

    def get_memory_graph(self, filters: MemoryFilters, max_nodes: int = 24, max_edges: int = 64, min_weight: int = 1) -> MemoryGraph:
        """
        Build the entity co-occurrence graph of the matching memories.

        Args:
            filters: Memory filters
            max_nodes: Most referenced entities to keep
            max_edges: Heaviest edges to keep
            min_weight: Minimum shared-memory count for an edge

        Returns:
            MemoryGraph with nodes ordered by reference count and edges by weight
        """
        session = self.graph.session()
        try:
            entities = aggregate_entities(session.match_references(filters))[:max(max_nodes, 0)]
            if not entities:
                return MemoryGraph()

            node_ids = [entity.id for entity in entities]
            edge_refs = session.match_references(filters, entity_ids=node_ids)
        except NeptuneError as e:
            logger.error(f'Error building memory graph: {e}')
            raise MemoryQueryError(f'Memory graph failed: {e}')
        finally:
            close_session(session)

        nodes = [
            GraphNode(id=entity.id, label=entity.name, type=entity.type, count=entity.count, last_seen=entity.last_seen)
            for entity in entities
        ]
        edges = co_occurrence_edges(edge_refs, min_weight=min_weight, max_edges=max_edges)
        logger.debug(f'Memory graph built with {len(nodes)} nodes and {len(edges)} edges')
        return MemoryGraph(nodes=nodes, edges=edges)

    def get_entity_memories(self, filters: MemoryFilters, entity_id: str, limit: int = 20) -> List[MemoryRecord]:
        """Memories referring to one entity, newest first."""
        candidates = self._match_memories(filters, max(limit * 4, 40), entity_id=entity_id)
        return self._hydrate(candidates, limit)

    def get_entity_details(self, filters: MemoryFilters, entity_id: str, limit: int = 20) -> EntityDetails:
        """
        Entity summary together with its memories.

        The entity is None when no matching memory refers to it; its memories are
        still fetched.
        """
        summaries = aggregate_entities(self._match_references(filters, entity_ids=[entity_id]))
        entity = summaries[0] if summaries else None
        return EntityDetails(entity=entity, memories=self.get_entity_memories(filters, entity_id, limit))

    def get_entity_links(self,
                         filters: MemoryFilters,
                         task_ids: Optional[List[str]] = None,
                         goal_ids: Optional[List[str]] = None,
                         limit: int = 6) -> EntityLinks:
        """
        Index entity-link memories by task and goal.

        Args:
            filters: Memory filters (workspace, space, creator and time bounds apply)
            task_ids: Tasks to resolve
            goal_ids: Goals to resolve
            limit: Maximum links per task or goal

        Returns:
            EntityLinks with the most recent link per distinct entity, newest first
        """
        task_ids = [task_id for task_id in task_ids or [] if task_id]
        goal_ids = [goal_id for goal_id in goal_ids or [] if goal_id]
        if not task_ids and not goal_ids:
            return EntityLinks()

        try:
            rows = self.database.list_memories(workspace_id=filters.workspace_id,
                                               space_id=filters.space_id,
                                               creator_id=filters.creator_id,
                                               sources=[ENTITY_LINK_SOURCE],
                                               since=filters.from_time,
                                               until=filters.to_time)
        except DatabaseError as e:
            raise MemoryQueryError(f'Entity link scan failed: {e}')

        task_targets = set(task_ids)
        goal_targets = set(goal_ids)
        task_links: Dict[str, Dict[str, EntityLink]] = {task_id: {} for task_id in task_ids}
        goal_links: Dict[str, Dict[str, EntityLink]] = {goal_id: {} for goal_id in goal_ids}

        # Rows arrive newest first, so the first link seen per entity wins
        for row in rows:
            content = row.content if isinstance(row.content, dict) else {}
            entity_id = content.get('entityId')
            if not entity_id:
                continue
            link = EntityLink(entity_id=str(entity_id), entity_name=content.get('entityName'))

            task_id = content.get('taskId')
            if isinstance(task_id, str) and task_id in task_targets and len(task_links[task_id]) < limit:
                task_links[task_id].setdefault(link.entity_id, link)

            goal_id = content.get('goalId')
            if isinstance(goal_id, str) and goal_id in goal_targets and len(goal_links[goal_id]) < limit:
                goal_links[goal_id].setdefault(link.entity_id, link)

        return EntityLinks(task_links={key: list(links.values()) for key, links in task_links.items()},
                           goal_links={key: list(links.values()) for key, links in goal_links.items()})

    def list_top_entities(self, filters: MemoryFilters, limit: int = 10) -> List[EntitySummary]:
        """Most referenced entities among the matching memories."""
        return aggregate_entities(self._match_references(filters))[:max(limit, 0)]
