"""Database operations for the journal local store."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shared.config import get_database_url
from shared.db_models import Base, LocalRecord
from shared.exceptions import LocalStorageError
from shared.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class DatabaseOperations(KeyValueStorage):
    """SQL-backed key-value storage. Each write commits in its own transaction."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_database_url()
        self.engine = create_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def get(self, key: str) -> Optional[str]:
        """
        Read the value stored under a key.

        Args:
            key: Record key

        Returns:
            The stored value or None if the key is absent

        Raises:
            LocalStorageError: If the database read fails
        """
        try:
            with self.get_session() as session:
                record = session.get(LocalRecord, key)
                return record.value if record else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read local record {key}: {e}", exc_info=True)
            raise LocalStorageError(f"Failed to read {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        """
        Insert or replace the value stored under a key.

        Args:
            key: Record key
            value: Serialized collection

        Raises:
            LocalStorageError: If the write fails; nothing is committed
        """
        try:
            with self.get_session() as session:
                record = session.get(LocalRecord, key)
                if record:
                    record.value = value
                    record.updated_at = datetime.utcnow()
                else:
                    session.add(LocalRecord(key=key, value=value))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write local record {key}: {e}", exc_info=True)
            raise LocalStorageError(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> None:
        """
        Delete the record stored under a key.

        Args:
            key: Record key

        Raises:
            LocalStorageError: If the delete fails
        """
        try:
            with self.get_session() as session:
                session.query(LocalRecord).filter(LocalRecord.key == key).delete()
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete local record {key}: {e}", exc_info=True)
            raise LocalStorageError(f"Failed to delete {key}: {e}") from e
