"""
Database engine factory for the billing ledger.
Handles connection pooling and retry logic on startup.
"""

import time
import logging
from sqlalchemy import create_engine, exc
from sqlalchemy.exc import OperationalError
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)


def create_engine_from_url(
    db_url: str,
    retries: int = 3,
    retry_delay: int = 5,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False
) -> Engine:
    """
    Create SQLAlchemy engine with retry logic.

    Supports:
    - PostgreSQL (postgresql+psycopg2), the production ledger
    - SQLite, used for local runs and tests (in-memory databases share one connection)

    Args:
        db_url: SQLAlchemy connection URL
        retries: Number of connection retry attempts (default: 3)
        retry_delay: Delay between retries in seconds (default: 5)
        pool_size: Connection pool size (ignored for SQLite)
        max_overflow: Pool overflow (ignored for SQLite)
        pool_timeout: Seconds to wait for a pooled connection (ignored for SQLite)
        pool_recycle: Recycle connections after this many seconds (ignored for SQLite)
        echo: Log SQL statements

    Returns:
        Engine: SQLAlchemy engine

    Raises:
        OperationalError: If connection fails after retries
    """
    url = make_url(db_url)

    if url.get_backend_name() == 'sqlite':
        engine_kwargs = {'connect_args': {'check_same_thread': False}}
        if url.database in (None, '', ':memory:'):
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs = {
            'pool_size': pool_size,
            'max_overflow': max_overflow,
            'pool_timeout': pool_timeout,
            'pool_recycle': pool_recycle,
            'pool_pre_ping': True,
        }

    attempt = 0
    while attempt < retries:
        try:
            engine = create_engine(db_url, echo=echo, **engine_kwargs)

            # Test connection
            with engine.connect():
                logger.debug(f"Connection test successful for {url.get_backend_name()}")

            logger.info(
                f"SQLAlchemy engine created: {url.get_backend_name()} "
                f"(host={url.host}, database={url.database})"
            )
            return engine

        except OperationalError as oe:
            attempt += 1
            logger.error(f"Connection attempt {attempt}/{retries} failed: {oe}")

            if attempt >= retries:
                logger.critical(f"Max retries ({retries}) reached. Could not create SQLAlchemy engine.")
                raise

            logger.info(f"Retrying in {retry_delay} seconds...")
            time.sleep(retry_delay)

        except exc.SQLAlchemyError as e:
            logger.error(f"SQLAlchemy error occurred: {e}")
            raise

    raise OperationalError("Failed to create database engine", None, None)


def init_db(engine: Engine):
    """Create every ledger and scheduler table that does not exist yet."""
    from common.models import Base
    import scheduler.models  # noqa: F401  (registers scheduler tables on Base)

    Base.metadata.create_all(engine)
    logger.info("Database tables ensured")
