"""
Folders router: root listing, create, get, contents, breadcrumb path,
rename/move and delete.

Thin HTTP layer over services.folder_tree; the authenticated user is passed
down as the requester and domain errors are translated in main.py.
"""
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import User
from services import folder_tree

router = APIRouter(prefix="/folders")


# --- Request models ---


class CreateFolderBody(BaseModel):
    """Request body for creating a folder; parentId null or absent means root."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    parent_id: str | None = Field(default=None, alias="parentId")


class UpdateFolderBody(BaseModel):
    """Rename and/or move. An explicit "parentId": null moves the folder to root."""
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")


# --- Endpoints ---


@router.get("")
def list_root_folders(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Folders at the top level of the user's drive."""
    contents = folder_tree.list_root(db, user.id)
    return [f.to_dict() for f in contents["folders"]]


@router.post("", status_code=201)
def create_folder(
    body: CreateFolderBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    folder = folder_tree.create_folder(db, user.id, body.name, body.parent_id or None)
    return folder.to_dict()


@router.get("/{folder_id}")
def get_folder(
    folder_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return folder_tree.get_folder(db, folder_id, user.id).to_dict()


@router.get("/{folder_id}/contents")
def get_folder_contents(
    folder_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Direct children only: files and subfolders one level below folder_id."""
    contents = folder_tree.list_contents(db, folder_id, user.id)
    return {
        "files": [f.to_dict() for f in contents["files"]],
        "folders": [f.to_dict() for f in contents["folders"]],
    }


@router.get("/{folder_id}/path")
def get_folder_path(
    folder_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Breadcrumb: ancestors of folder_id from the root down, excluding itself."""
    return [f.to_dict() for f in folder_tree.resolve_path(db, folder_id, user.id)]


@router.patch("/{folder_id}")
def update_folder(
    folder_id: str,
    body: UpdateFolderBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Rename and/or move a folder. The new name is validated before the move so
    a rejected request leaves the folder untouched.
    """
    folder = folder_tree.get_folder(db, folder_id, user.id)
    if body.name is not None:
        folder_tree.validate_name(body.name)
    if "parent_id" in body.model_fields_set:
        folder = folder_tree.move_folder(db, folder_id, user.id, body.parent_id or None)
    if body.name is not None:
        folder = folder_tree.rename_folder(db, folder_id, user.id, body.name)
    return folder.to_dict()


@router.delete("/{folder_id}", status_code=204)
def delete_folder(
    folder_id: str,
    recursive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete an empty folder, or with ?recursive=true the folder and everything in it."""
    folder_tree.delete_folder(db, folder_id, user.id, recursive=recursive)
    return Response(status_code=204)
