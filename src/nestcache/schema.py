"""
Cache Schema
============

Two relations back the cache:

- ``cache_entries``: one row per root key holding the codec's bytes and an
  optional expiry timestamp (Unix epoch seconds).
- ``cache_tags``: many-to-many association between tags and keys, replaced
  wholesale on every tagged write.

Both tables are created with ``create_all`` (create-if-absent), so the layout
is stable across restarts and across processes sharing the same file.
"""

from sqlalchemy import Column, Float, Index, LargeBinary, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CacheEntry(Base):
    """SQLAlchemy model for a cache entry."""

    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    value = Column(LargeBinary, nullable=False)
    # NULL means the entry never expires
    expires_at = Column(Float, nullable=True)

    __table_args__ = (
        # SWEEP / DETAILS: range scans on expiry
        Index("idx_entries_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"CacheEntry(key={self.key!r}, expires_at={self.expires_at!r})"


class TagIndex(Base):
    """SQLAlchemy model for a (tag, key) association."""

    __tablename__ = "cache_tags"

    tag = Column(String, primary_key=True)
    key = Column(String, primary_key=True)

    __table_args__ = (
        # Tag replacement and removal look rows up by key
        Index("idx_tags_key", "key"),
    )

    def __repr__(self):
        return f"TagIndex(tag={self.tag!r}, key={self.key!r})"
