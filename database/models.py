"""Database models - key-value persistence for topic mappings and message links."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class KvEntry(Base):
    """
    One JSON document per key.

    Keys used by the relay:
        topics:<superGroupId>   thread <-> user chat bindings
        mapping:<superGroupId>  message links (oldest first)
    """
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_kv_entries_updated", "updated_at"),
    )

    def __repr__(self):
        return f"<KvEntry(key={self.key}, updated_at={self.updated_at})>"
