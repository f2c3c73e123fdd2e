"""
Folder tree engine: per-user folder hierarchy, listings and path resolution.

Folders form an arena keyed by id with a nullable parent pointer; NULL is the
owner's implicit root. Invariants kept here:

- a parent, when set, exists and has the same owner;
- the parent graph is acyclic (checked on every reparent);
- no folder sits deeper than MAX_FOLDER_DEPTH, which also bounds every
  ancestor walk so a corrupted chain fails with CycleDetected instead of
  looping.

Structural writes (move, delete) are serialized per owner: a process-local
lock, plus SELECT ... FOR UPDATE on the owner's users row so that workers in
other processes queue behind the same row. Cycles can only form inside one
owner's tree, so the owner is the lock scope.
"""
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import FOLDER_NAME_MAX_LENGTH, MAX_FOLDER_DEPTH
from database import commit_with_retry
from errors import (
    CycleDetected,
    FolderNotEmpty,
    ForeignParent,
    Forbidden,
    InvalidName,
    InvalidParent,
    NotFound,
    ValidationError,
)
from models import File, Folder, User
from services import blob_storage

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_owner_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)


@contextmanager
def owner_write_lock(owner_id: str):
    """Serialize structural writes within one owner's tree in this process."""
    with _locks_guard:
        lock = _owner_locks[owner_id]
    with lock:
        yield


def owner_row_lock(owner_id: str):
    """Statement that row-locks the owner for the rest of the transaction."""
    return select(User.id).where(User.id == owner_id).with_for_update()


def lock_owner_row(db: Session, owner_id: str) -> None:
    # No-op on SQLite, which has no row locks; the process lock covers it there
    db.execute(owner_row_lock(owner_id)).one()


def validate_name(name: str | None) -> str:
    """Strip and check a folder or file name; raises InvalidName."""
    name = (name or "").strip()
    if not name:
        raise InvalidName("Name cannot be empty")
    if len(name) > FOLDER_NAME_MAX_LENGTH:
        raise InvalidName(f"Name exceeds {FOLDER_NAME_MAX_LENGTH} characters")
    return name


def _check_owner(folder: Folder | None, requester_id: str) -> Folder:
    if folder is None:
        raise NotFound("Folder not found")
    if folder.owner_id != requester_id:
        raise Forbidden()
    return folder


def resolve_parent(db: Session, owner_id: str, parent_id: str | None) -> Folder | None:
    """
    Load the folder that will contain a new or moved item. None means root,
    which is always valid. Raises InvalidParent if the folder does not exist
    and ForeignParent if another user owns it.
    """
    if parent_id is None:
        return None
    parent = db.get(Folder, parent_id)
    if parent is None:
        raise InvalidParent()
    if parent.owner_id != owner_id:
        raise ForeignParent()
    return parent


def ancestors(db: Session, folder: Folder) -> list[Folder]:
    """
    Ancestors of folder ordered root-first, excluding folder itself.
    O(depth) lookups; raises CycleDetected if the chain revisits a folder,
    leaves the owner's tree, or runs past MAX_FOLDER_DEPTH.
    """
    chain: list[Folder] = []
    seen = {folder.id}
    parent_id = folder.parent_id
    while parent_id is not None:
        if parent_id in seen or len(chain) >= MAX_FOLDER_DEPTH:
            logger.error("Folder chain for %s does not terminate (at %s)", folder.id, parent_id)
            raise CycleDetected("Folder tree is corrupted: ancestor chain does not terminate")
        parent = db.get(Folder, parent_id)
        if parent is None or parent.owner_id != folder.owner_id:
            logger.error("Folder %s has a dangling or foreign parent %s", folder.id, parent_id)
            raise CycleDetected("Folder tree is corrupted: broken ancestor chain")
        seen.add(parent_id)
        chain.append(parent)
        parent_id = parent.parent_id
    chain.reverse()
    return chain


def _depth_below(parent: Folder | None, db: Session) -> int:
    """Depth a direct child of parent would have (root children have depth 1)."""
    if parent is None:
        return 1
    return len(ancestors(db, parent)) + 2


def _in_folder(column, folder_id: str | None):
    # NULL is the root, which '=' never matches
    return column.is_(None) if folder_id is None else column == folder_id


def child_folders(db: Session, owner_id: str, folder_id: str | None) -> list[Folder]:
    return (
        db.query(Folder)
        .filter(Folder.owner_id == owner_id, _in_folder(Folder.parent_id, folder_id))
        .order_by(Folder.created_at, Folder.id)
        .all()
    )


def child_files(db: Session, owner_id: str, folder_id: str | None) -> list[File]:
    return (
        db.query(File)
        .filter(File.owner_id == owner_id, _in_folder(File.folder_id, folder_id))
        .order_by(File.created_at, File.id)
        .all()
    )


def create_folder(db: Session, owner_id: str, name: str, parent_id: str | None = None) -> Folder:
    """
    Create a folder under parent_id (None = root). Sibling names may repeat.
    Raises InvalidName, InvalidParent/ForeignParent, or ValidationError when
    the new folder would exceed MAX_FOLDER_DEPTH.
    """
    name = validate_name(name)
    parent = resolve_parent(db, owner_id, parent_id)
    if _depth_below(parent, db) > MAX_FOLDER_DEPTH:
        raise ValidationError(f"Folders cannot be nested more than {MAX_FOLDER_DEPTH} levels deep")

    def insert() -> Folder:
        folder = Folder(owner_id=owner_id, name=name, parent_id=parent.id if parent else None)
        db.add(folder)
        return folder

    try:
        folder = commit_with_retry(db, insert, "folder create")
    except IntegrityError:
        # Parent deleted between the check and the insert
        logger.warning("Parent %s vanished while creating a folder for %s", parent_id, owner_id)
        raise InvalidParent()
    logger.info("Folder created: %s (parent=%s, owner=%s)", folder.id, folder.parent_id, owner_id)
    return folder


def get_folder(db: Session, folder_id: str, requester_id: str) -> Folder:
    """Raises NotFound if absent, Forbidden if requester is not the owner."""
    return _check_owner(db.get(Folder, folder_id), requester_id)


def list_contents(db: Session, folder_id: str, requester_id: str) -> dict:
    """Direct children of folder_id: {"files": [...], "folders": [...]}. No recursion."""
    folder = get_folder(db, folder_id, requester_id)
    return {
        "files": child_files(db, requester_id, folder.id),
        "folders": child_folders(db, requester_id, folder.id),
    }


def list_root(db: Session, owner_id: str) -> dict:
    """Children of owner_id's implicit root."""
    return {
        "files": child_files(db, owner_id, None),
        "folders": child_folders(db, owner_id, None),
    }


def resolve_path(db: Session, folder_id: str, requester_id: str) -> list[Folder]:
    """Breadcrumb for folder_id: ancestors root-first, excluding the folder itself."""
    folder = get_folder(db, folder_id, requester_id)
    return ancestors(db, folder)


def rename_folder(db: Session, folder_id: str, requester_id: str, name: str) -> Folder:
    name = validate_name(name)

    def apply() -> Folder:
        folder = get_folder(db, folder_id, requester_id)
        folder.name = name
        return folder

    folder = commit_with_retry(db, apply, "folder rename")
    logger.info("Folder renamed: %s", folder.id)
    return folder


def _subtree_height(db: Session, folder: Folder) -> int:
    """Levels in the subtree rooted at folder (1 for a leaf)."""
    height = 0
    level = [folder.id]
    while level:
        height += 1
        if height > MAX_FOLDER_DEPTH:
            raise CycleDetected("Folder tree is corrupted: subtree does not terminate")
        level = [
            row.id
            for row in db.query(Folder.id).filter(Folder.parent_id.in_(level)).all()
        ]
    return height


def _reparent(db: Session, folder_id: str, requester_id: str, new_parent_id: str | None) -> Folder:
    lock_owner_row(db, requester_id)
    folder = _check_owner(
        db.query(Folder).filter(Folder.id == folder_id).with_for_update().one_or_none(),
        requester_id,
    )
    if new_parent_id == folder.parent_id:
        return folder
    if new_parent_id == folder.id:
        logger.warning("Rejected move of folder %s into itself", folder.id)
        raise CycleDetected()

    new_parent = resolve_parent(db, requester_id, new_parent_id)
    if new_parent is not None:
        chain = ancestors(db, new_parent)
        if any(f.id == folder.id for f in chain):
            logger.warning(
                "Rejected move of folder %s under its descendant %s",
                folder.id,
                new_parent.id,
            )
            raise CycleDetected()
        new_depth = len(chain) + 2
    else:
        new_depth = 1

    if new_depth + _subtree_height(db, folder) - 1 > MAX_FOLDER_DEPTH:
        raise ValidationError(f"Folders cannot be nested more than {MAX_FOLDER_DEPTH} levels deep")

    folder.parent_id = new_parent.id if new_parent else None
    return folder


def move_folder(db: Session, folder_id: str, requester_id: str, new_parent_id: str | None) -> Folder:
    """
    Reparent folder_id under new_parent_id (None = root).

    Walks the proposed parent's ancestor chain and rejects the move with
    CycleDetected if the folder appears in it. The whole read-check-write
    runs under the owner's locks, so two concurrent moves cannot each pass
    the check and jointly close a loop; a replayed commit repeats the check.
    Nothing changes on failure.
    """
    with owner_write_lock(requester_id):
        try:
            folder = commit_with_retry(
                db,
                lambda: _reparent(db, folder_id, requester_id, new_parent_id),
                "folder move",
            )
        except IntegrityError:
            logger.warning("Target parent %s vanished while moving %s", new_parent_id, folder_id)
            raise InvalidParent()
        except Exception:
            # Release the row locks taken before a rejected move
            db.rollback()
            raise
    logger.info("Folder moved: %s -> parent %s", folder.id, folder.parent_id)
    return folder


def _subtree_levels(db: Session, folder: Folder) -> list[list[Folder]]:
    """Folders of the subtree grouped by level, folder itself first."""
    levels = [[folder]]
    while True:
        below = (
            db.query(Folder)
            .filter(Folder.parent_id.in_([f.id for f in levels[-1]]))
            .all()
        )
        if not below:
            return levels
        if len(levels) > MAX_FOLDER_DEPTH:
            raise CycleDetected("Folder tree is corrupted: subtree does not terminate")
        levels.append(below)


def delete_folder(db: Session, folder_id: str, requester_id: str, recursive: bool = False) -> None:
    """
    Delete a folder. Non-empty folders are rejected with FolderNotEmpty unless
    recursive is set, in which case every descendant folder and file goes too.
    Blobs are removed after the metadata commit; a blob that cannot be removed
    is logged and left orphaned rather than resurrecting its row.
    """
    collected: dict = {}

    def remove() -> None:
        lock_owner_row(db, requester_id)
        folder = get_folder(db, folder_id, requester_id)
        levels = _subtree_levels(db, folder)
        folder_ids = [f.id for level in levels for f in level]
        files = db.query(File).filter(File.folder_id.in_(folder_ids)).all()

        if not recursive and (len(folder_ids) > 1 or files):
            raise FolderNotEmpty()

        collected["folders"] = len(folder_ids)
        collected["keys"] = [f.storage_key for f in files]
        for f in files:
            db.delete(f)
        db.flush()
        # Deepest level first so no row outlives its parent
        for level in reversed(levels):
            for f in level:
                db.delete(f)
            db.flush()

    with owner_write_lock(requester_id):
        try:
            commit_with_retry(db, remove, "folder delete")
        except Exception:
            db.rollback()
            raise
    logger.info(
        "Folder deleted: %s (%d folders, %d files)",
        folder_id,
        collected["folders"],
        len(collected["keys"]),
    )

    for key in collected["keys"]:
        blob_storage.delete_quietly(key)
