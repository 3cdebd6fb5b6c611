"""
ProjectSync Tables — SQLAlchemy models backing the default store and identity provider.

Tables:
1. store_documents — schemaless JSON documents grouped by collection
2. user_accounts   — identities for the local identity provider
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from projectsync.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredDocument(Base):
    """
    One document of a collection. ``seq`` is the insertion order and breaks
    ties when two documents share the same ordering value.
    """

    __tablename__ = "store_documents"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(100), nullable=False, index=True)
    doc_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_store_documents_collection_doc"),
        Index("ix_store_documents_collection_seq", "collection", "seq"),
    )

    def __repr__(self) -> str:
        return f"<StoredDocument(collection='{self.collection}', doc_id='{self.doc_id}')>"


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    password_hash = Column(String(255), nullable=True)
    provider = Column(String(20), default="password", nullable=False)
    display_name = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "provider IN ('password', 'google')",
            name="ck_user_accounts_provider",
        ),
    )

    def __repr__(self) -> str:
        return f"<UserAccount(uid='{self.uid}', email='{self.email}', provider='{self.provider}')>"
