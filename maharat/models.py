from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from maharat.db import Base


class Role(str, Enum):
    TEACHER = 'teacher'
    STUDENT = 'student'


class IndexState(str, Enum):
    BUILDING = 'building'
    READY = 'ready'


class Collection(str, Enum):
    USERS = 'users'
    LESSONS = 'lessons'
    STUDENT_PROGRESS = 'studentProgress'
    PLATFORM_SETTINGS = 'platformSettings'
    MESSAGES = 'messages'
    SETTINGS = 'settings'


class DocumentRecord(Base):
    __tablename__ = 'documents'
    __table_args__ = (
        UniqueConstraint('collection', 'doc_id', name='uq_documents_collection_doc_id'),
        Index('ix_documents_collection_seq', 'collection', 'seq'),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(80), index=True)
    doc_id: Mapped[str] = mapped_column(String(64), index=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StoreIndex(Base):
    __tablename__ = 'store_indexes'
    __table_args__ = (
        UniqueConstraint('name', name='uq_store_indexes_name'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    collection: Mapped[str] = mapped_column(String(80), index=True)
    state: Mapped[str] = mapped_column(String(20), default=IndexState.BUILDING.value, index=True)
    build_started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    ready_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class IdentityAccount(Base):
    __tablename__ = 'identity_accounts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    uid: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
