"""Editor workspace state: open documents and opened project folders."""

import logging
import uuid
from dataclasses import dataclass, field

from filesystem import FileSystemError, fs_operation
from uris import basename, extname, join, strip_query, strip_trailing_slashes

logger = logging.getLogger(__name__)

RUNNABLE_EXTENSIONS = {".html", ".htm", ".xhtml", ".md", ".js", ".svg"}


@dataclass
class ProjectFolder:
    """A folder opened in the editor sidebar."""

    url: str
    title: str = ""

    def contains(self, uri: str | None) -> bool:
        if not uri:
            return False
        root = strip_trailing_slashes(strip_query(self.url))
        candidate = strip_query(uri)
        return candidate == root or candidate.startswith(root + "/")


@dataclass
class EditorFile:
    """A document open in the editor.

    ``text`` is the live buffer, ``is_unsaved`` tells whether it differs from
    the backing store. ``mode == "single"`` marks a document opened on its own,
    without any folder context, of which only the file itself is previewable.
    """

    filename: str
    uri: str | None = None
    location: str | None = None
    text: str = ""
    loaded: bool = True
    is_unsaved: bool = False
    mode: str = "tree"
    saf_mode: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def extension(self) -> str:
        return extname(self.filename)

    async def can_run(self, folders: "OpenFolders | None" = None) -> bool:
        """Whether running a preview for this document makes sense."""
        if not self.loaded:
            return False
        if self.extension in RUNNABLE_EXTENSIONS:
            return True
        if folders is None:
            return False

        folder = folders.find(self.uri)
        if folder is None:
            return False
        try:
            return await fs_operation(join(folder.url, "index.html")).exists()
        except FileSystemError as e:
            logger.warning(f"Cannot check index.html of {folder.url}: {e}")
            return False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "uri": self.uri,
            "location": self.location,
            "loaded": self.loaded,
            "is_unsaved": self.is_unsaved,
            "mode": self.mode,
        }


class EditorManager:
    """Tracks open documents and which one is active."""

    def __init__(self):
        self.files: list[EditorFile] = []
        self.active_file: EditorFile | None = None

    def open(self, file: EditorFile, activate: bool = True) -> EditorFile:
        """Open a document, replacing an already open one with the same URI."""
        if file.uri:
            existing = self.get_file(file.uri)
            if existing is not None:
                self.files.remove(existing)
                if self.active_file is existing:
                    self.active_file = None
        self.files.append(file)
        if activate or self.active_file is None:
            self.active_file = file
        return file

    def get_file(self, value: str | None, key: str = "uri") -> EditorFile | None:
        """Find an open document by attribute, URIs also match without query."""
        if not value:
            return None
        for file in self.files:
            if getattr(file, key, None) == value:
                return file
        if key == "uri":
            bare = strip_query(value)
            for file in self.files:
                if file.uri and strip_query(file.uri) == bare:
                    return file
        return None

    def set_active(self, file_id: str) -> EditorFile | None:
        file = self.get_file(file_id, key="id")
        if file is not None:
            self.active_file = file
        return file

    def close(self, file_id: str) -> bool:
        file = self.get_file(file_id, key="id")
        if file is None:
            return False
        self.files.remove(file)
        if self.active_file is file:
            self.active_file = self.files[-1] if self.files else None
        return True


class OpenFolders:
    """Folders opened in the editor, first one added is the primary project."""

    def __init__(self):
        self.folders: list[ProjectFolder] = []

    @property
    def first(self) -> ProjectFolder | None:
        return self.folders[0] if self.folders else None

    def add(self, url: str, title: str = "") -> ProjectFolder:
        for folder in self.folders:
            if folder.url == url:
                return folder
        folder = ProjectFolder(url=url, title=title or basename(url))
        self.folders.append(folder)
        return folder

    def remove(self, url: str) -> bool:
        for folder in self.folders:
            if folder.url == url:
                self.folders.remove(folder)
                return True
        return False

    def find(self, uri: str | None) -> ProjectFolder | None:
        """Folder containing the given document URI."""
        for folder in self.folders:
            if folder.contains(uri):
                return folder
        return None


# Global workspace instances
_editor_manager: EditorManager | None = None
_open_folders: OpenFolders | None = None


def get_editor_manager() -> EditorManager:
    """Get global editor manager instance."""
    global _editor_manager
    if _editor_manager is None:
        _editor_manager = EditorManager()
    return _editor_manager


def get_open_folders() -> OpenFolders:
    """Get global opened folders instance."""
    global _open_folders
    if _open_folders is None:
        _open_folders = OpenFolders()
    return _open_folders
