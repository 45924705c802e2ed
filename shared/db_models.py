"""SQLAlchemy database models for the journal local store."""

from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


class LocalRecord(Base):
    """Model for local_records table.

    One row per logical record (an owner's entries, tombstones or reports),
    holding the whole collection as a JSON document.
    """
    __tablename__ = 'local_records'

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
