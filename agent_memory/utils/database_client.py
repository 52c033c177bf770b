"""
Relational store client (SQLModel/SQLAlchemy) holding the canonical copy of every memory.

The graph projection omits memory content, so every read path that returns
records joins back here by id.
"""

import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import Column, DateTime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import JSON, Field, Session, SQLModel, col, create_engine, select

from .config import DatabaseConfig
from .logging_config import get_logger
from .timestamp_utils import ensure_utc

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for relational store errors."""
    pass


class MemoryRow(SQLModel, table=True):
    """Canonical memory row. Insert-only."""

    __tablename__ = 'agent_memories'

    id: str = Field(primary_key=True)
    workspace_id: str = Field(index=True)
    space_id: Optional[str] = Field(default=None, index=True)
    creator_id: Optional[str] = Field(default=None, index=True)
    source: Optional[str] = Field(default=None, index=True)
    summary: str = ''
    content: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), index=True, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


def _build_engine(url: str, echo: bool):
    if url.startswith('sqlite'):
        if url.startswith('sqlite:///'):
            db_dir = os.path.dirname(url.replace('sqlite:///', ''))
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        kwargs: Dict[str, Any] = {'connect_args': {'check_same_thread': False}}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection, otherwise every session sees a fresh empty database
            kwargs['poolclass'] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


class DatabaseClient:
    """Relational store client with error handling."""

    def __init__(self, config: DatabaseConfig):
        """
        Initialize the relational store client and create tables if missing.

        Args:
            config: DatabaseConfig instance with connection parameters
        """
        self.config = config
        self.engine = _build_engine(config.url, config.echo)
        self.create_tables()

        logger.info(f'Initialized database client for {self.engine.url.render_as_string(hide_password=True)}')

    def create_tables(self) -> None:
        """Create all tables defined by SQLModel metadata (idempotent)."""
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f'Error creating tables: {e}')
            raise DatabaseError(f'Failed to create tables: {e}')

    def insert_memory(self, row: MemoryRow) -> None:
        """
        Insert a canonical memory row.

        Args:
            row: MemoryRow to insert

        Raises:
            DatabaseError: If the insert fails
        """
        row_id = row.id  # Attributes expire on commit
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
            logger.debug(f'Inserted memory row: {row_id}')
        except SQLAlchemyError as e:
            logger.error(f'Error inserting memory {row_id}: {e}')
            raise DatabaseError(f'Failed to insert memory: {e}')

    def get_memories(self, ids: Iterable[str]) -> Dict[str, MemoryRow]:
        """
        Fetch memory rows by id.

        Args:
            ids: Memory ids

        Returns:
            Mapping of id to row (missing ids are absent)
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return {}

        try:
            with Session(self.engine) as session:
                rows = session.exec(select(MemoryRow).where(col(MemoryRow.id).in_(ids))).all()
        except SQLAlchemyError as e:
            logger.error(f'Error fetching memories by id: {e}')
            raise DatabaseError(f'Failed to fetch memories: {e}')

        return {row.id: row for row in rows}

    def list_memories(self,
                      workspace_id: str,
                      space_id: Optional[str] = None,
                      creator_id: Optional[str] = None,
                      sources: Optional[List[str]] = None,
                      since: Optional[datetime] = None,
                      until: Optional[datetime] = None,
                      limit: Optional[int] = None) -> List[MemoryRow]:
        """
        List memory rows matching filters, newest first.

        Args:
            workspace_id: Workspace scope
            space_id: Optional space scope
            creator_id: Optional creator scope
            sources: Optional allow-list of sources (ANY-of)
            since: Inclusive lower bound on creation time
            until: Inclusive upper bound on creation time
            limit: Maximum rows to return

        Returns:
            List of MemoryRow ordered by created_at descending, ties by id descending
        """
        statement = select(MemoryRow).where(MemoryRow.workspace_id == workspace_id)
        if space_id:
            statement = statement.where(MemoryRow.space_id == space_id)
        if creator_id:
            statement = statement.where(MemoryRow.creator_id == creator_id)
        if sources:
            statement = statement.where(col(MemoryRow.source).in_(sources))
        if since:
            statement = statement.where(col(MemoryRow.created_at) >= ensure_utc(since))
        if until:
            statement = statement.where(col(MemoryRow.created_at) <= ensure_utc(until))
        statement = statement.order_by(col(MemoryRow.created_at).desc(), col(MemoryRow.id).desc())
        if limit:
            statement = statement.limit(limit)

        try:
            with Session(self.engine) as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            logger.error(f'Error listing memories: {e}')
            raise DatabaseError(f'Failed to list memories: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the relational store.

        Returns:
            True if the store answers queries, False otherwise
        """
        try:
            with Session(self.engine) as session:
                session.exec(select(MemoryRow.id).limit(1)).all()
            return True
        except SQLAlchemyError as e:
            logger.error(f'Database health check failed: {e}')
            return False
