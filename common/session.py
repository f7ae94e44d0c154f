"""
Session management for ledger operations with context managers.
Provides transaction safety with automatic commit/rollback.
"""

import logging
from contextlib import contextmanager
from typing import Generator
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine


logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages database sessions with automatic transaction handling.

    Every billing operation that writes to the ledger runs inside one
    session_scope(), so a failure anywhere rolls the whole operation back.
    """

    def __init__(self, engine: Engine):
        """
        Initialize session manager.

        Args:
            engine: SQLAlchemy engine
        """
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)
        logger.debug("Session manager initialized")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        Yields:
            Session: SQLAlchemy session

        Example:
            with sessions.session_scope() as session:
                allocation = session.query(TenantAllocation).filter_by(id=1).first()
                # Auto-commit on success, auto-rollback on exception
        """
        session = self.Session()
        try:
            yield session
            session.commit()

        except Exception as e:
            session.rollback()
            logger.warning(f"Session rolled back: {e}")
            raise

        finally:
            session.close()
