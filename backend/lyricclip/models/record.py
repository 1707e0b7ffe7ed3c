"""Generic keyed record model backing the record store."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON

from lyricclip.db.database import Base


class Record(Base):
    """A JSON document stored under (table, id)."""

    __tablename__ = "records"

    table_name = Column(String(64), primary_key=True)
    record_id = Column(String(255), primary_key=True)
    payload = Column(JSON, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Record(table={self.table_name}, id={self.record_id})>"
