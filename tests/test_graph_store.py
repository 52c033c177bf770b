import json
from datetime import datetime, timezone

from agent_memory.models.core import EntityRef, MemoryFilters
from agent_memory.services.graph_store import GraphSession, build_filter_clause, tag_index


class DummySession:
    """Records openCypher statements and replays canned result rows."""

    def __init__(self, results=None):
        self.calls = []
        self.results = results or []
        self.closed = False

    def run(self, query, parameters=None):
        self.calls.append((query, parameters or {}))
        return self.results

    def close(self):
        self.closed = True


def test_tag_index():
    assert tag_index(['a', 'b']) == '|a|b|'
    assert tag_index([]) == '||'


def test_filter_clause_workspace_only():
    where, params = build_filter_clause(MemoryFilters(workspace_id='ws-1'))

    assert where == 'm.workspace_id = $workspace_id'
    assert params == {'workspace_id': 'ws-1'}


def test_filter_clause_all_filters():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    end = datetime(2026, 1, 2, tzinfo=timezone.utc)
    filters = MemoryFilters(workspace_id='ws-1',
                            space_id='s-1',
                            creator_id='u-1',
                            sources=['page.created'],
                            tags=['x', 'y'],
                            from_time=start,
                            to_time=end)

    where, params = build_filter_clause(filters)

    assert 'm.space_id = $space_id' in where
    assert 'm.creator_id = $creator_id' in where
    assert 'm.source IN $sources' in where
    assert '(m.tag_index CONTAINS $tag0 OR m.tag_index CONTAINS $tag1)' in where
    assert 'm.timestamp_ms >= $from_ms' in where
    assert 'm.timestamp_ms <= $to_ms' in where
    assert params['tag0'] == '|x|'
    assert params['tag1'] == '|y|'
    assert params['sources'] == ['page.created']
    assert params['from_ms'] == 1767225600000
    assert params['to_ms'] == 1767312000000


def test_merge_memory_encodes_lists():
    session = DummySession()

    GraphSession(session).merge_memory({
        'id': 'mem_1',
        'workspace_id': 'ws-1',
        'tags': ['a', 'b'],
        'timestamp': '2026-01-01T00:00:00+00:00',
        'timestamp_ms': 1767225600000,
        'embedding': [0.5, 0.25],
        'embedding_model': 'titan',
    })

    [(query, params)] = session.calls
    assert query.startswith('MERGE (m:Memory {id: $id})')
    assert params['tags'] == '["a", "b"]'
    assert params['tag_index'] == '|a|b|'
    assert json.loads(params['embedding']) == [0.5, 0.25]
    assert params['summary'] == ''
    assert params['space_id'] is None


def test_merge_entity_reference():
    session = DummySession()

    GraphSession(session).merge_entity_reference('mem_1', EntityRef(id='e-1', type='topic', name='Alpha'))

    [(query, params)] = session.calls
    assert 'MERGE (e:Entity {id: $entity_id})' in query
    assert 'MERGE (m)-[:REFERS_TO]->(e)' in query
    assert params == {'memory_id': 'mem_1', 'entity_id': 'e-1', 'entity_type': 'topic', 'entity_name': 'Alpha'}


def test_match_memories_decodes_rows():
    session = DummySession([
        {'id': 'mem_2', 'timestamp_ms': 2000, 'embedding': '[1, 0.5]'},
        {'id': 'mem_1', 'timestamp_ms': 1000, 'embedding': None},
    ])

    rows = GraphSession(session).match_memories(MemoryFilters(workspace_id='ws-1'), 50)

    query, params = session.calls[0]
    assert query.startswith('MATCH (m:Memory) WHERE')
    assert query.endswith('ORDER BY timestamp_ms DESC, id DESC LIMIT 50')
    assert 'RETURN DISTINCT' in query
    assert rows == [
        {'id': 'mem_2', 'timestamp_ms': 2000, 'embedding': [1.0, 0.5]},
        {'id': 'mem_1', 'timestamp_ms': 1000, 'embedding': []},
    ]


def test_match_memories_for_entity():
    session = DummySession()

    GraphSession(session).match_memories(MemoryFilters(workspace_id='ws-1'), 40, entity_id='e-1')

    query, params = session.calls[0]
    assert 'MATCH (m:Memory)-[:REFERS_TO]->(e:Entity {id: $entity_id})' in query
    assert params['entity_id'] == 'e-1'


def test_match_references_restricted_to_entities():
    session = DummySession([{
        'memory_id': 'mem_1',
        'timestamp_ms': '1000',
        'entity_id': 'e-1',
        'entity_name': 'Alpha',
        'entity_type': 'topic',
    }])

    rows = GraphSession(session).match_references(MemoryFilters(workspace_id='ws-1'), entity_ids=['e-1'])

    query, params = session.calls[0]
    assert 'AND e.id IN $entity_ids' in query
    assert params['entity_ids'] == ['e-1']
    assert rows[0]['timestamp_ms'] == 1000


def test_match_timestamps_skips_missing_values():
    session = DummySession([{'timestamp_ms': 5}, {'timestamp_ms': None}])

    assert GraphSession(session).match_timestamps(MemoryFilters(workspace_id='ws-1')) == [5]


def test_close():
    session = DummySession()

    GraphSession(session).close()

    assert session.closed


def test_tag_containing_delimiter_matches_only_itself():
    stored = tag_index(['team|alpha', 'back\\slash'])
    _, params = build_filter_clause(MemoryFilters(workspace_id='ws-1', tags=['alpha', 'team', 'team|alpha']))

    assert params['tag0'] not in stored
    assert params['tag1'] not in stored
    assert params['tag2'] in stored
    assert '|back\\\\slash|' in stored
