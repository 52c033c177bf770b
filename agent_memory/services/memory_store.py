"""
Memory ingestion into the relational store and the graph projection.

Writes happen in a fixed order: canonical relational row, then the embedding,
then the graph node and its entity references. The stores are not
transactional with each other; a failure after the relational insert leaves a
row without a graph node and is reported as MemoryProjectionError.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..models.core import EntityRef, MemoryRecord
from ..models.workspace import ActivitySession, User, Workspace, resolve_agent_settings
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import MemoryConfig, config
from ..utils.database_client import DatabaseClient, DatabaseError, MemoryRow
from ..utils.json_utils import content_to_text, normalize_json_value
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.timestamp_utils import ensure_utc, new_memory_id, to_iso, to_millis, utc_now
from .graph_store import GraphStore, close_session

logger = get_logger(__name__)

SUMMARY_FALLBACK = 'Memory'
ELLIPSIS = '...'


class MemoryStoreError(Exception):
    """Custom exception for memory ingestion errors."""
    pass


class MemoryProjectionError(MemoryStoreError):
    """The canonical row was written but the embedding or graph projection failed."""

    def __init__(self, memory_id: str, message: str):
        super().__init__(message)
        self.memory_id = memory_id


def derive_summary(summary: Optional[str], content_text: str, max_length: int = 160) -> str:
    """
    Resolve the summary of a memory.

    Args:
        summary: Caller-supplied summary (wins when non-blank)
        content_text: Flattened content
        max_length: Longest derived summary, ellipsis included

    Returns:
        Non-empty summary string
    """
    if summary and summary.strip():
        return summary
    if not content_text.strip():
        return SUMMARY_FALLBACK
    if len(content_text) > max_length:
        return content_text[:max_length - len(ELLIPSIS)] + ELLIPSIS
    return content_text


def normalize_tags(tags: Optional[List[Any]]) -> List[str]:
    """Stringify tags, dropping None and duplicates while keeping first-seen order."""
    return list(dict.fromkeys(str(tag) for tag in tags or [] if tag is not None))


def _to_entity_ref(entity: Union[EntityRef, Dict[str, Any]]) -> Optional[EntityRef]:
    if isinstance(entity, EntityRef):
        return entity
    if isinstance(entity, dict) and entity.get('id'):
        return EntityRef(id=str(entity['id']), type=str(entity.get('type') or ''), name=str(entity.get('name') or ''))
    return None


class MemoryStore:
    """Ingests memories into the relational store and the Neptune graph projection."""

    def __init__(self,
                 database: Optional[DatabaseClient] = None,
                 graph: Optional[GraphStore] = None,
                 embedder: Optional[BedrockEmbed] = None,
                 memory_config: Optional[MemoryConfig] = None):
        """Initialize the memory store; missing collaborators are built from the global config."""
        self.database = database or DatabaseClient(config.database)
        self.graph = graph or GraphStore(NeptuneClient(config.neptune))
        self.embedder = embedder or BedrockEmbed(config.bedrock_embed)
        self.memory_config = memory_config or config.memory

        logger.info('Initialized MemoryStore')

    def ingest(self,
               workspace_id: str,
               space_id: Optional[str] = None,
               creator_id: Optional[str] = None,
               source: Optional[str] = None,
               content: Any = None,
               summary: Optional[str] = None,
               tags: Optional[List[Any]] = None,
               timestamp: Optional[datetime] = None,
               entities: Optional[List[Union[EntityRef, Dict[str, Any]]]] = None) -> MemoryRecord:
        """
        Ingest one memory.

        Args:
            workspace_id: Owning workspace (required)
            space_id: Optional space
            creator_id: Optional creating user
            source: Short event category, e.g. 'page.created'
            content: Arbitrary payload; strings holding JSON are stored parsed
            summary: Optional summary; derived from content when absent
            tags: Optional tags (normalized to strings)
            timestamp: Creation time (defaults to now)
            entities: Entity references to attach

        Returns:
            The ingested MemoryRecord, with the content as supplied

        Raises:
            MemoryStoreError: If input is invalid or the relational insert fails
            MemoryProjectionError: If the embedding or graph write fails after the insert
        """
        if not workspace_id:
            raise MemoryStoreError('workspace_id is required')

        content_text = content_to_text(content)
        summary = derive_summary(summary, content_text, self.memory_config.summary_max_length)
        tags = normalize_tags(tags)
        timestamp = ensure_utc(timestamp) if timestamp else utc_now()
        memory_id = new_memory_id()

        try:
            self.database.insert_memory(
                MemoryRow(id=memory_id,
                          workspace_id=workspace_id,
                          space_id=space_id,
                          creator_id=creator_id,
                          source=source,
                          summary=summary,
                          content=normalize_json_value(content),
                          tags=list(tags),
                          created_at=timestamp,
                          updated_at=timestamp))
        except DatabaseError as e:
            raise MemoryStoreError(f'Memory insert failed: {e}')

        refs = [ref for ref in (_to_entity_ref(entity) for entity in entities or []) if ref is not None]

        try:
            embedding = self.embedder.embed_document(summary or content_text)
            self._project(memory_id, workspace_id, space_id, creator_id, source, summary, tags, timestamp, embedding, refs)
        except (BedrockEmbedError, NeptuneError) as e:
            logger.error(f'Memory {memory_id} stored without graph projection: {e}')
            raise MemoryProjectionError(memory_id, f'Memory projection failed for {memory_id}: {e}')

        logger.debug(f'Ingested memory {memory_id} (source={source}, entities={len(refs)})')
        return MemoryRecord(id=memory_id,
                            workspace_id=workspace_id,
                            space_id=space_id,
                            creator_id=creator_id,
                            source=source,
                            summary=summary,
                            content=content,
                            tags=tags,
                            timestamp=timestamp)

    def _project(self, memory_id: str, workspace_id: str, space_id: Optional[str], creator_id: Optional[str],
                 source: Optional[str], summary: str, tags: List[str], timestamp: datetime, embedding: List[float],
                 entities: List[EntityRef]) -> None:
        session = self.graph.session()
        try:
            session.merge_memory({
                'id': memory_id,
                'workspace_id': workspace_id,
                'space_id': space_id,
                'creator_id': creator_id,
                'source': source,
                'summary': summary,
                'tags': tags,
                'timestamp': to_iso(timestamp),
                'timestamp_ms': to_millis(timestamp),
                'embedding': embedding,
                'embedding_model': getattr(self.embedder, 'model_id', None),
            })
            for entity in entities:
                session.merge_entity_reference(memory_id, entity)
        finally:
            close_session(session)

    def record_activity(self, workspace: Workspace, user: User, activity: ActivitySession) -> Optional[MemoryRecord]:
        """
        Record a UI activity session as a memory.

        Args:
            workspace: Workspace the activity happened in
            user: Acting user
            activity: Reported activity session

        Returns:
            The ingested record, or None when tracking is disabled or the session is too short
        """
        settings = resolve_agent_settings(workspace.settings)
        if not settings.enabled or not settings.enable_activity_tracking or not user.tracks_activity:
            logger.debug(f'Activity tracking disabled for user {user.id} in workspace {workspace.id}')
            return None

        if activity.duration_ms < self.memory_config.min_activity_ms:
            logger.debug(f'Ignoring activity session of {activity.duration_ms}ms for user {user.id}')
            return None

        label = activity.title or activity.page_id or activity.project_id or 'activity'
        summary = f'Viewed {label}' if activity.page_id or activity.project_id else f'Active session: {label}'

        tags = ['activity', 'view', 'user', f'user:{user.id}']
        if activity.page_id:
            tags.extend(['page', f'page:{activity.page_id}'])
        if activity.project_id:
            tags.extend(['project', f'project:{activity.project_id}'])

        if activity.page_id:
            source = 'page.view'
        elif activity.project_id:
            source = 'project.view'
        else:
            source = 'activity.view'

        content = {
            'pageId': activity.page_id,
            'projectId': activity.project_id,
            'title': activity.title,
            'route': activity.route,
            'durationMs': activity.duration_ms,
            'startedAt': to_iso(activity.started_at) if activity.started_at else None,
            'endedAt': to_iso(activity.ended_at) if activity.ended_at else None,
        }

        return self.ingest(workspace_id=workspace.id,
                           space_id=activity.space_id,
                           creator_id=user.id,
                           source=source,
                           summary=summary,
                           tags=tags,
                           timestamp=activity.ended_at,
                           content=content)
