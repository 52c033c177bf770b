"""
Profile snapshots persisted as memories.

There is no profile table: each distillation ingests a new `agent-profile`
memory tagged `user:<id>`, and the latest one is the previous snapshot for the
next run.
"""

from typing import Any, Dict, Optional

from ..models.core import MemoryFilters, MemoryRecord
from ..models.profile import ProfileModel, SignalStats
from ..models.workspace import Space, User
from ..utils.logging_config import get_logger
from .memory_query import MemoryQueryEngine
from .memory_store import MemoryStore

logger = get_logger(__name__)

PROFILE_SOURCE = 'agent-profile'


def user_tag(user_id: str) -> str:
    return f'user:{user_id}'


class ProfileStore:
    """Reads and writes profile snapshots through the memory engine."""

    def __init__(self, query_engine: MemoryQueryEngine, memory_store: MemoryStore):
        self.query_engine = query_engine
        self.memory_store = memory_store

    def latest(self, workspace_id: str, space_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Most recent persisted profile of a user in a space.

        Args:
            workspace_id: Workspace id
            space_id: Space id
            user_id: User id

        Returns:
            The stored profile dictionary (camelCase), or None
        """
        # Activity memories also carry user:<id>, so the source narrows the lookup to profiles
        records = self.query_engine.query(
            MemoryFilters(workspace_id=workspace_id,
                          space_id=space_id,
                          tags=[user_tag(user_id)],
                          sources=[PROFILE_SOURCE],
                          limit=1))
        if not records:
            return None

        content = records[0].content
        profile = content.get('profile') if isinstance(content, dict) else None
        return profile if isinstance(profile, dict) else None

    def save(self, space: Space, user: User, profile: ProfileModel, stats: SignalStats) -> MemoryRecord:
        """Persist a profile snapshot as a new memory."""
        record = self.memory_store.ingest(workspace_id=space.workspace_id,
                                          space_id=space.id,
                                          source=PROFILE_SOURCE,
                                          summary=f'User profile updated for {user.display_name}',
                                          content={
                                              'profile': profile.to_dict(),
                                              'userId': user.id,
                                              'userName': user.name,
                                              'userEmail': user.email,
                                              'signalStats': stats.to_dict(),
                                          },
                                          tags=['agent', 'user-profile', user_tag(user.id)])
        logger.info(f'Saved profile {record.id} for user {user.id} in space {space.id}')
        return record
