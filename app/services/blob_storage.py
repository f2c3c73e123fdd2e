"""
Blob storage: put/get/delete file bytes by opaque key on the local filesystem.

Keys look like users/user_<id>/blobs/<hex> and are resolved under
STORAGE_ROOT. Writes go to a .part file that is renamed into place only once
the whole stream is on disk, so a key either names a complete blob or does
not exist. Every operation retries once after STORAGE_RETRY_DELAY on OSError
before surfacing StorageFailure.
"""
import logging
import os
import time
import uuid
from typing import BinaryIO, Callable, Iterator, TypeVar

from config import STORAGE_RETRY_DELAY, STORAGE_ROOT, UPLOAD_CHUNK_SIZE
from errors import FileTooLarge, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def new_key(owner_id: str) -> str:
    return f"users/user_{owner_id}/blobs/{uuid.uuid4().hex}"


def _path_for(key: str) -> str:
    root = os.path.abspath(STORAGE_ROOT)
    path = os.path.abspath(os.path.join(root, key))
    if os.path.commonpath([root, path]) != root:
        raise StorageFailure("Invalid storage key")
    return path


def _with_retry(description: str, op: Callable[[], T], before_retry: Callable[[], None] | None = None) -> T:
    try:
        return op()
    except OSError:
        logger.warning("Storage %s failed; retrying once", description, exc_info=True)
    time.sleep(STORAGE_RETRY_DELAY)
    if before_retry is not None:
        before_retry()
    try:
        return op()
    except OSError:
        logger.exception("Storage %s failed after retry", description)
        raise StorageFailure()


def _remove_if_exists(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def put(key: str, stream: BinaryIO, max_bytes: int) -> int:
    """
    Stream stream into the blob at key and return the byte count.

    Aborts and removes the partial file if more than max_bytes arrive
    (FileTooLarge). A failed write is retried once when the stream can be
    rewound; otherwise it fails straight away with StorageFailure.
    """
    dest_path = _path_for(key)
    part_path = dest_path + ".part"
    start = stream.tell() if stream.seekable() else None

    def write() -> int:
        os.makedirs(os.path.dirname(dest_path), exist_ok=True)
        total = 0
        try:
            with open(part_path, "wb") as f:
                while True:
                    chunk = stream.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > max_bytes:
                        raise FileTooLarge(
                            f"File exceeds max size ({max_bytes} bytes); aborted at {total} bytes"
                        )
                    f.write(chunk)
                f.flush()
                os.fsync(f.fileno())
            os.replace(part_path, dest_path)
        except BaseException:
            try:
                _remove_if_exists(part_path)
            except OSError:
                logger.warning("Could not remove partial blob %s", part_path)
            raise
        return total

    if start is None:
        try:
            return write()
        except OSError:
            logger.exception("Storage write failed for unseekable stream: %s", key)
            raise StorageFailure()

    return _with_retry(f"write {key}", write, before_retry=lambda: stream.seek(start))


def open_stream(key: str, chunk_size: int = UPLOAD_CHUNK_SIZE) -> Iterator[bytes]:
    """
    Open the blob at key and return an iterator over its bytes. The file is
    opened before this returns, so a missing or unreadable blob raises
    StorageFailure here rather than mid-response.
    """
    path = _path_for(key)
    f = _with_retry(f"read {key}", lambda: open(path, "rb"))

    def iterate() -> Iterator[bytes]:
        with f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    return iterate()


def read_bytes(key: str) -> bytes:
    return b"".join(open_stream(key))


def exists(key: str) -> bool:
    return os.path.isfile(_path_for(key))


def delete(key: str) -> None:
    """Remove the blob at key; a missing blob is not an error."""
    path = _path_for(key)
    _with_retry(f"delete {key}", lambda: _remove_if_exists(path))


def delete_quietly(key: str) -> None:
    """Best-effort delete used on rollback paths; failures are logged, not raised."""
    try:
        delete(key)
    except StorageFailure:
        logger.error("Failed to delete blob, orphaned: %s", key)
