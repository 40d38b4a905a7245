"""
Base service class for the ranked-choice engine.

Provides async database session management with all-or-nothing transactions.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.utils.ranking_exceptions import StorageError

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for all services with async database session management."""
    
    def __init__(self, session_factory):
        """
        Initialize base service with session factory.
        
        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory
    
    @asynccontextmanager
    async def get_session(self, operation: str = "database operation") -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for async database operations.
        
        Database failures roll back the whole scope and surface as StorageError.
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Storage failure during {operation}: {e}", exc_info=True)
            raise StorageError(operation, str(e)) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
