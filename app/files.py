"""
Files router: root listing, upload, metadata, download, rename/move, delete.

Delegates to services.file_store. Upload size is checked twice: the
Content-Length gate in main.py rejects oversized requests before the body is
read, and file_store counts bytes while streaming to blob storage.
"""
import re
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Response, UploadFile
from fastapi import File as FastAPIFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import User
from services import file_store, folder_tree

router = APIRouter(prefix="/files")


class UpdateFileBody(BaseModel):
    """Rename and/or move. An explicit "folderId": null moves the file to root."""
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    folder_id: str | None = Field(default=None, alias="folderId")


def safe_filename(name: str) -> str:
    """ASCII-only fallback for Content-Disposition; the exact name goes in filename*."""
    safe = re.sub(r'[^A-Za-z0-9._-]+', "_", name)
    if len(safe) > 200:
        safe = safe[:200]
    return safe or "download"


def _content_disposition(name: str) -> str:
    return f"attachment; filename=\"{safe_filename(name)}\"; filename*=UTF-8''{quote(name)}"


# --- Endpoints ---


@router.get("")
def list_root_files(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Files at the top level of the user's drive."""
    return [f.to_dict() for f in file_store.list_by_folder(db, None, user.id)]


@router.post("/upload", status_code=201)
def upload_file(
    file: UploadFile = FastAPIFile(...),
    folder_id: str | None = Form(default=None, alias="folderId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Upload one file into folderId (omitted or empty = root). The file row is
    only created once all bytes are stored.
    """
    created = file_store.upload(
        db,
        user.id,
        folder_id or None,
        file.filename,
        file.content_type,
        file.file,
    )
    return created.to_dict()


@router.get("/{file_id}")
def get_file(
    file_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return file_store.get_file(db, file_id, user.id).to_dict()


@router.get("/{file_id}/download")
def download_file(
    file_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Stream the stored bytes back with the original name and content type."""
    file, chunks = file_store.download(db, file_id, user.id)
    return StreamingResponse(
        chunks,
        media_type=file.content_type,
        headers={
            "Content-Disposition": _content_disposition(file.name),
            "Content-Length": str(file.size),
        },
    )


@router.patch("/{file_id}")
def update_file(
    file_id: str,
    body: UpdateFileBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    file = file_store.get_file(db, file_id, user.id)
    if body.name is not None:
        folder_tree.validate_name(body.name)
    if "folder_id" in body.model_fields_set:
        file = file_store.move(db, file_id, user.id, body.folder_id or None)
    if body.name is not None:
        file = file_store.rename(db, file_id, user.id, body.name)
    return file.to_dict()


@router.delete("/{file_id}", status_code=204)
def delete_file(
    file_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    file_store.delete(db, file_id, user.id)
    return Response(status_code=204)
