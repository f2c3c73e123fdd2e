"""
Data models for the drive backend.

Users, sessions, folders and files are independent tables keyed by id.
Folders and files carry an owner foreign key; folders point at their parent
folder and files at their containing folder. A NULL parent/folder reference
means the owner's implicit root, which has no row of its own.
"""
import uuid
from datetime import datetime, UTC

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
)

from database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes even for timezone=True columns; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class User(Base):
    """
    Account identity.

    - email: unique, stored lower-cased.
    - password_hash: bcrypt hash; the only mutable field besides is_active.
    - is_active: soft state; users are never hard-deleted, inactive users
      cannot authenticate.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "createdAt": _isoformat(self.created_at),
        }


class AuthSession(Base):
    """
    Bearer session. The token itself is never stored, only its SHA-256 digest,
    so the table cannot be replayed if leaked. A user may hold several
    sessions at once.
    """
    __tablename__ = "sessions"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class Folder(Base):
    """Node of a user's folder tree; parent_id NULL means the implicit root."""
    __tablename__ = "folders"

    id = Column(String(32), primary_key=True, default=_new_id)
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(32), ForeignKey("folders.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Directory listings filter on (owner, parent)
    __table_args__ = (
        Index("ix_folders_owner_parent", "owner_id", "parent_id"),
    )

    def to_dict(self) -> dict:
        # _id mirrors id for clients that key folders and files by _id
        return {
            "id": self.id,
            "_id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "createdAt": _isoformat(self.created_at),
        }


class File(Base):
    """
    Uploaded file metadata. storage_key is the opaque blob handle; it is only
    written after the blob write has completed, so every row has a full blob.
    """
    __tablename__ = "files"

    id = Column(String(32), primary_key=True, default=_new_id)
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    folder_id = Column(String(32), ForeignKey("folders.id"), nullable=True)
    name = Column(String(255), nullable=False)
    size = Column(BigInteger, nullable=False)
    content_type = Column(String(255), nullable=False)
    storage_key = Column(String(512), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_files_owner_folder", "owner_id", "folder_id"),
    )

    def to_dict(self) -> dict:
        # storage_key stays internal
        return {
            "id": self.id,
            "_id": self.id,
            "name": self.name,
            "folderId": self.folder_id,
            "size": self.size,
            "type": self.content_type,
            "createdAt": _isoformat(self.created_at),
        }
