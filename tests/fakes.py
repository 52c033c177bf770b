"""In-memory stand-ins for the graph store, embedding client and LLM client."""

from typing import Any, Dict, List, Optional

from agent_memory.models.core import EntityRef, MemoryFilters
from agent_memory.utils.bedrock_embed import BedrockEmbedError
from agent_memory.utils.bedrock_llm import BedrockLLMError
from agent_memory.utils.neptune_client import NeptuneError
from agent_memory.utils.timestamp_utils import to_millis


def node_matches(node: Dict[str, Any], filters: MemoryFilters) -> bool:
    if node['workspace_id'] != filters.workspace_id:
        return False
    if filters.space_id and node.get('space_id') != filters.space_id:
        return False
    if filters.creator_id and node.get('creator_id') != filters.creator_id:
        return False
    if filters.sources and node.get('source') not in filters.sources:
        return False
    if filters.tags and not set(map(str, filters.tags)).intersection(node.get('tags') or []):
        return False
    if filters.from_time and node['timestamp_ms'] < to_millis(filters.from_time):
        return False
    if filters.to_time and node['timestamp_ms'] > to_millis(filters.to_time):
        return False
    return True


class FakeGraphSession:

    def __init__(self, store: 'FakeGraphStore'):
        self.store = store
        self.closed = False

    def _check(self, operation: str):
        if self.store.fail_on == operation:
            raise NeptuneError(f'{operation} failed')

    def merge_memory(self, node: Dict[str, Any]) -> None:
        self._check('merge_memory')
        self.store.nodes[node['id']] = dict(node, tags=list(node.get('tags') or []))

    def merge_entity_reference(self, memory_id: str, entity: EntityRef) -> None:
        self._check('merge_entity_reference')
        self.store.entities[entity.id] = entity
        self.store.references.add((memory_id, entity.id))

    def match_memories(self, filters: MemoryFilters, fetch_limit: int, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self._check('match_memories')
        self.store.fetch_limits.append(fetch_limit)
        nodes = [node for node in self.store.nodes.values() if node_matches(node, filters)]
        if entity_id:
            nodes = [node for node in nodes if (node['id'], entity_id) in self.store.references]
        nodes.sort(key=lambda node: (node['timestamp_ms'], node['id']), reverse=True)
        return [{
            'id': node['id'],
            'timestamp_ms': node['timestamp_ms'],
            'embedding': list(node.get('embedding') or []),
        } for node in nodes[:fetch_limit]]

    def match_timestamps(self, filters: MemoryFilters) -> List[int]:
        self._check('match_timestamps')
        return [node['timestamp_ms'] for node in self.store.nodes.values() if node_matches(node, filters)]

    def match_references(self, filters: MemoryFilters, entity_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        self._check('match_references')
        rows = []
        for memory_id, entity_id in sorted(self.store.references):
            node = self.store.nodes.get(memory_id)
            if node is None or not node_matches(node, filters):
                continue
            if entity_ids is not None and entity_id not in entity_ids:
                continue
            entity = self.store.entities[entity_id]
            rows.append({
                'memory_id': memory_id,
                'timestamp_ms': node['timestamp_ms'],
                'entity_id': entity_id,
                'entity_name': entity.name,
                'entity_type': entity.type,
            })
        return rows

    def close(self) -> None:
        self.closed = True
        self.store.closed += 1


class FakeGraphStore:
    """Graph projection kept in dictionaries; counts sessions opened and closed."""

    def __init__(self):
        self.nodes: Dict[str, Dict[str, Any]] = {}
        self.entities: Dict[str, EntityRef] = {}
        self.references = set()
        self.fetch_limits: List[int] = []
        self.fail_on: Optional[str] = None
        self.opened = 0
        self.closed = 0

    def session(self) -> FakeGraphSession:
        self.opened += 1
        return FakeGraphSession(self)


class FakeEmbedder:
    """Returns fixed vectors per text; unknown texts get `default`."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Optional[List[float]] = None):
        self.model_id = 'fake-embed-v1'
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.calls: List[str] = []
        self.fail = False

    def _embed(self, text: str) -> List[float]:
        if self.fail:
            raise BedrockEmbedError('embedding service unavailable')
        if not text or not text.strip():
            return []
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))

    def embed_document(self, text: str) -> List[float]:
        return self._embed(text)

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)


class FakeLLM:
    """Returns a canned response, or raises when `error` is set."""

    def __init__(self, response: str = '{}', error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []
        self.attempts: List[Optional[int]] = []

    def generate_text(self, prompt: str, system_prompt: str, temperature: Optional[float] = None,
                      attempts: Optional[int] = None) -> str:
        self.prompts.append(prompt)
        self.attempts.append(attempts)
        if self.error is not None:
            raise self.error
        return self.response


def failing_llm() -> FakeLLM:
    return FakeLLM(error=BedrockLLMError('model unavailable'))


def make_record(source: str, when, text: Optional[str] = None, tags=(), summary: str = 'summary', record_id: Optional[str] = None):
    """MemoryRecord for pure signal-analysis tests."""
    from agent_memory.models.core import MemoryRecord

    make_record.counter += 1
    return MemoryRecord(id=record_id or f'mem_{make_record.counter:04d}',
                        workspace_id='ws-1',
                        space_id='space-1',
                        creator_id='user-1',
                        source=source,
                        summary=summary,
                        content={'text': text} if text is not None else {},
                        tags=list(tags),
                        timestamp=when)


make_record.counter = 0
