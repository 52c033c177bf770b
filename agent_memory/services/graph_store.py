"""
Graph projection of memories on Amazon Neptune (openCypher).

Each memory is a `Memory` node carrying its filterable attributes and its
embedding; entities are `Entity` nodes linked by `REFERS_TO` edges. Content is
never stored in the graph.

Neptune openCypher has no list-valued properties, so tags and embeddings are
stored as JSON strings. Tags are additionally stored as a delimited index
string ('|a|b|') so that ANY-of tag filters can run as CONTAINS predicates.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import EntityRef, MemoryFilters
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneSession
from ..utils.timestamp_utils import to_millis

logger = get_logger(__name__)

TAG_DELIMITER = '|'
TAG_ESCAPE = '\\'


def escape_tag(tag: str) -> str:
    """Encode a tag so that it never contains the delimiter.

    The escape character is doubled and the delimiter becomes `\\p`, so an
    escaped tag can only match a whole element of the index.
    """
    return tag.replace(TAG_ESCAPE, TAG_ESCAPE * 2).replace(TAG_DELIMITER, TAG_ESCAPE + 'p')


def tag_index(tags: List[str]) -> str:
    """Delimited string of escaped tags used for CONTAINS matching."""
    return TAG_DELIMITER + TAG_DELIMITER.join(escape_tag(tag) for tag in tags) + TAG_DELIMITER


def _decode_list(value: Any) -> List[Any]:
    if value is None or value == '':
        return []
    if isinstance(value, list):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def build_filter_clause(filters: MemoryFilters, alias: str = 'm') -> Tuple[str, Dict[str, Any]]:
    """
    Translate memory filters into an openCypher WHERE clause.

    Args:
        filters: Memory filters (AND-ed; tags and sources ANY-of; time bounds inclusive)
        alias: Variable bound to the Memory node

    Returns:
        Tuple of (where clause without the WHERE keyword, parameters)
    """
    conditions = [f'{alias}.workspace_id = $workspace_id']
    params: Dict[str, Any] = {'workspace_id': filters.workspace_id}

    if filters.space_id:
        conditions.append(f'{alias}.space_id = $space_id')
        params['space_id'] = filters.space_id
    if filters.creator_id:
        conditions.append(f'{alias}.creator_id = $creator_id')
        params['creator_id'] = filters.creator_id
    if filters.sources:
        conditions.append(f'{alias}.source IN $sources')
        params['sources'] = list(filters.sources)
    if filters.tags:
        tag_conditions = []
        for i, tag in enumerate(filters.tags):
            tag_conditions.append(f'{alias}.tag_index CONTAINS $tag{i}')
            params[f'tag{i}'] = tag_index([str(tag)])
        conditions.append('(' + ' OR '.join(tag_conditions) + ')')
    if filters.from_time:
        conditions.append(f'{alias}.timestamp_ms >= $from_ms')
        params['from_ms'] = to_millis(filters.from_time)
    if filters.to_time:
        conditions.append(f'{alias}.timestamp_ms <= $to_ms')
        params['to_ms'] = to_millis(filters.to_time)

    return ' AND '.join(conditions), params


class GraphSession:
    """Domain operations over one Neptune session.

    Sessions are short-lived: open one per logical operation and close it in a
    `finally` block.
    """

    def __init__(self, session: NeptuneSession):
        self.session = session

    def merge_memory(self, node: Dict[str, Any]) -> None:
        """
        Upsert a Memory node keyed by id.

        Args:
            node: Memory attributes (id, workspace_id, space_id, creator_id, source,
                summary, tags, timestamp, timestamp_ms, embedding, embedding_model)
        """
        tags = [str(tag) for tag in node.get('tags') or []]
        params = {
            'id': node['id'],
            'workspace_id': node['workspace_id'],
            'space_id': node.get('space_id'),
            'creator_id': node.get('creator_id'),
            'source': node.get('source'),
            'summary': node.get('summary') or '',
            'tags': json.dumps(tags),
            'tag_index': tag_index(tags),
            'timestamp': node['timestamp'],
            'timestamp_ms': int(node['timestamp_ms']),
            'embedding': json.dumps(list(node.get('embedding') or [])),
            'embedding_model': node.get('embedding_model'),
        }
        query = ('MERGE (m:Memory {id: $id}) '
                 'SET m.workspace_id = $workspace_id, m.space_id = $space_id, m.creator_id = $creator_id, '
                 'm.source = $source, m.summary = $summary, m.tags = $tags, m.tag_index = $tag_index, '
                 'm.timestamp = $timestamp, m.timestamp_ms = $timestamp_ms, '
                 'm.embedding = $embedding, m.embedding_model = $embedding_model')
        self.session.run(query, params)

    def merge_entity_reference(self, memory_id: str, entity: EntityRef) -> None:
        """Upsert an Entity node (type and name overwritten) and its REFERS_TO edge."""
        query = ('MATCH (m:Memory {id: $memory_id}) '
                 'MERGE (e:Entity {id: $entity_id}) '
                 'SET e.type = $entity_type, e.name = $entity_name '
                 'MERGE (m)-[:REFERS_TO]->(e)')
        self.session.run(query, {
            'memory_id': memory_id,
            'entity_id': entity.id,
            'entity_type': entity.type,
            'entity_name': entity.name,
        })

    def match_memories(self, filters: MemoryFilters, fetch_limit: int, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetch candidate memories, newest first (ties broken by id descending).

        Args:
            filters: Memory filters
            fetch_limit: Maximum candidates to return
            entity_id: Restrict to memories referring to this entity

        Returns:
            Rows with id, timestamp_ms and the decoded embedding
        """
        where, params = build_filter_clause(filters)
        if entity_id:
            match = 'MATCH (m:Memory)-[:REFERS_TO]->(e:Entity {id: $entity_id})'
            params['entity_id'] = entity_id
        else:
            match = 'MATCH (m:Memory)'

        query = (f'{match} WHERE {where} '
                 'RETURN DISTINCT m.id AS id, m.timestamp_ms AS timestamp_ms, m.embedding AS embedding '
                 f'ORDER BY timestamp_ms DESC, id DESC LIMIT {int(fetch_limit)}')
        rows = self.session.run(query, params)
        return [{
            'id': row['id'],
            'timestamp_ms': int(row.get('timestamp_ms') or 0),
            'embedding': [float(value) for value in _decode_list(row.get('embedding'))],
        } for row in rows]

    def match_timestamps(self, filters: MemoryFilters) -> List[int]:
        """Epoch-millisecond timestamps of every memory matching the filters."""
        where, params = build_filter_clause(filters)
        rows = self.session.run(f'MATCH (m:Memory) WHERE {where} RETURN m.timestamp_ms AS timestamp_ms', params)
        return [int(row['timestamp_ms']) for row in rows if row.get('timestamp_ms') is not None]

    def match_references(self, filters: MemoryFilters, entity_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Fetch (memory, entity) reference pairs for memories matching the filters.

        Args:
            filters: Memory filters
            entity_ids: Restrict to these entities

        Returns:
            Rows with memory_id, timestamp_ms, entity_id, entity_name and entity_type
        """
        where, params = build_filter_clause(filters)
        if entity_ids is not None:
            where += ' AND e.id IN $entity_ids'
            params['entity_ids'] = list(entity_ids)

        query = (f'MATCH (m:Memory)-[:REFERS_TO]->(e:Entity) WHERE {where} '
                 'RETURN m.id AS memory_id, m.timestamp_ms AS timestamp_ms, '
                 'e.id AS entity_id, e.name AS entity_name, e.type AS entity_type')
        rows = self.session.run(query, params)
        return [{
            'memory_id': row['memory_id'],
            'timestamp_ms': int(row.get('timestamp_ms') or 0),
            'entity_id': row['entity_id'],
            'entity_name': row.get('entity_name'),
            'entity_type': row.get('entity_type'),
        } for row in rows]

    def close(self) -> None:
        self.session.close()


class GraphStore:
    """Factory for graph sessions over a Neptune client."""

    def __init__(self, neptune: NeptuneClient):
        self.neptune = neptune

    def session(self) -> GraphSession:
        return GraphSession(self.neptune.session())


def close_session(session: GraphSession) -> None:
    """Close a graph session, logging instead of raising on failure."""
    try:
        session.close()
    except Exception as e:
        logger.warning(f'Failed to close graph session: {e}')
