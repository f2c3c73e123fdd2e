"""
File store: uploads, listings, downloads and deletes of user files.

Upload order is blob first, metadata second. The metadata row is only added
once the blob write has finished, and if that commit fails the blob is
deleted again, so callers never see a row without a complete blob.
Concurrent uploads are capped per user with a semaphore; a caller that
cannot get a slot within UPLOAD_SLOT_TIMEOUT gets TooManyUploads.
"""
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import MAX_CONCURRENT_UPLOADS, MAX_UPLOAD_SIZE_BYTES, UPLOAD_SLOT_TIMEOUT
from database import commit_with_retry
from errors import Forbidden, InvalidParent, NotFound, TooManyUploads
from models import File
from services import blob_storage, folder_tree

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_slots_guard = threading.Lock()
_upload_slots: dict[str, threading.BoundedSemaphore] = defaultdict(
    lambda: threading.BoundedSemaphore(MAX_CONCURRENT_UPLOADS)
)


@contextmanager
def upload_slot(owner_id: str):
    """Hold one of the owner's upload slots for the duration of the block."""
    with _slots_guard:
        slot = _upload_slots[owner_id]
    if not slot.acquire(timeout=UPLOAD_SLOT_TIMEOUT):
        logger.warning("Upload slot timeout for user %s", owner_id)
        raise TooManyUploads()
    try:
        yield
    finally:
        slot.release()


def _check_owner(file: File | None, requester_id: str) -> File:
    if file is None:
        raise NotFound("File not found")
    if file.owner_id != requester_id:
        raise Forbidden()
    return file


def upload(
    db: Session,
    owner_id: str,
    folder_id: str | None,
    name: str,
    content_type: str | None,
    stream: BinaryIO,
    max_bytes: int = MAX_UPLOAD_SIZE_BYTES,
) -> File:
    """
    Store stream as a new file in folder_id (None = root).

    Raises InvalidName, InvalidParent/ForeignParent before any bytes are
    written; FileTooLarge if the stream runs past max_bytes; StorageFailure
    if the blob or metadata store stays unreachable after one retry;
    InvalidParent if the folder is deleted while the bytes are streaming.
    """
    name = folder_tree.validate_name(name)
    folder = folder_tree.resolve_parent(db, owner_id, folder_id)
    target_id = folder.id if folder else None

    with upload_slot(owner_id):
        key = blob_storage.new_key(owner_id)
        size = blob_storage.put(key, stream, max_bytes)
        logger.info("Blob stored for user %s: %s (%d bytes)", owner_id, key, size)

        def insert() -> File:
            file = File(
                owner_id=owner_id,
                folder_id=target_id,
                name=name,
                size=size,
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                storage_key=key,
            )
            db.add(file)
            return file

        try:
            file = commit_with_retry(db, insert, "file upload")
        except Exception as exc:
            logger.warning("Metadata write failed, rolling back blob: %s", key, exc_info=True)
            db.rollback()
            blob_storage.delete_quietly(key)
            if isinstance(exc, IntegrityError):
                raise InvalidParent("Folder was removed during the upload")
            raise

    logger.info("File uploaded: %s (folder=%s, owner=%s)", file.id, file.folder_id, owner_id)
    return file


def get_file(db: Session, file_id: str, requester_id: str) -> File:
    """Raises NotFound if absent, Forbidden if requester is not the owner."""
    return _check_owner(db.get(File, file_id), requester_id)


def list_by_folder(db: Session, folder_id: str | None, requester_id: str) -> list[File]:
    """Files directly in folder_id (None = requester's root), in upload order."""
    if folder_id is not None:
        folder_tree.get_folder(db, folder_id, requester_id)
    return folder_tree.child_files(db, requester_id, folder_id)


def download(db: Session, file_id: str, requester_id: str) -> tuple[File, Iterator[bytes]]:
    """Return the file row and an iterator over its bytes."""
    file = get_file(db, file_id, requester_id)
    return file, blob_storage.open_stream(file.storage_key)


def delete(db: Session, file_id: str, requester_id: str) -> None:
    """Remove metadata then blob; the blob goes even if it was already missing."""
    file = get_file(db, file_id, requester_id)
    key = file.storage_key
    commit_with_retry(db, lambda: db.delete(file), "file delete")
    blob_storage.delete_quietly(key)
    logger.info("File deleted: %s", file_id)


def move(db: Session, file_id: str, requester_id: str, folder_id: str | None) -> File:
    """Move a file to folder_id (None = root); the target must be the owner's."""
    def apply() -> File:
        file = get_file(db, file_id, requester_id)
        folder = folder_tree.resolve_parent(db, requester_id, folder_id)
        file.folder_id = folder.id if folder else None
        return file

    try:
        file = commit_with_retry(db, apply, "file move")
    except IntegrityError:
        raise InvalidParent("Folder was removed during the move")
    logger.info("File moved: %s -> folder %s", file.id, file.folder_id)
    return file


def rename(db: Session, file_id: str, requester_id: str, name: str) -> File:
    name = folder_tree.validate_name(name)

    def apply() -> File:
        file = get_file(db, file_id, requester_id)
        file.name = name
        return file

    return commit_with_retry(db, apply, "file rename")
