"""Pydantic models for the Preview Bridge control API."""

from typing import Optional

from pydantic import BaseModel


class RunRequest(BaseModel):
    """Request body for starting a preview."""

    is_console: bool = False
    target: Optional[str] = None  # "inapp" or "browser", defaults to config
    run_file: bool = False


class DocumentOpen(BaseModel):
    """Request body for opening a document in the editor state."""

    filename: str
    uri: Optional[str] = None
    location: Optional[str] = None
    text: str = ""
    is_unsaved: bool = False
    loaded: bool = True
    mode: str = "tree"
    saf_mode: Optional[str] = None
    activate: bool = True


class DocumentUpdate(BaseModel):
    """Request body for updating a document buffer."""

    text: Optional[str] = None
    is_unsaved: Optional[bool] = None
    loaded: Optional[bool] = None


class FolderAdd(BaseModel):
    """Request body for opening a project folder."""

    url: str
    title: Optional[str] = None
