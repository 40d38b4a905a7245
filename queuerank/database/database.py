import json
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from queuerank.config import Config
from queuerank.constants import SongStatus
from queuerank.database.models import Base, Event, SongRequest
from queuerank.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url or Config.get_async_database_url()
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self) -> async_sessionmaker:
        """Session factory handed to services and operations"""
        if self.async_session is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context will be committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Event operations
    async def create_event(self, name: str, settings: Optional[Dict[str, Any]] = None) -> Event:
        """Create an event with the given settings blob"""
        async with self.transaction() as session:
            event = Event(name=name, settings=json.dumps(settings or {}))
            session.add(event)
            await session.flush()
            return event

    async def get_event_by_id(self, event_id: str) -> Optional[Event]:
        """Get an event by ID"""
        async with self.get_session() as session:
            return await session.get(Event, event_id)

    # Song request operations
    async def add_song_request(self, event_id: str, title: str, artist: str,
                               status: str = SongStatus.PENDING,
                               created_at: Optional[datetime] = None) -> SongRequest:
        """Add a song request to an event's queue"""
        async with self.transaction() as session:
            song = SongRequest(
                event_id=event_id,
                title=title,
                artist=artist,
                status=status
            )
            if created_at is not None:
                song.created_at = created_at
            session.add(song)
            await session.flush()
            return song

    async def get_song_request(self, song_id: str) -> Optional[SongRequest]:
        """Get a song request by ID"""
        async with self.get_session() as session:
            return await session.get(SongRequest, song_id)
