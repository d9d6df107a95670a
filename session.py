"""Preview session state, one per run."""

import uuid
from dataclasses import dataclass, field

from editor import EditorFile
from uris import extname

TARGET_BROWSER = "browser"
TARGET_INAPP = "inapp"

MODE_BROWSER = "browser"
MODE_INAPP_CONSOLE = "inapp-console"
MODE_FILE_RENDER = "file-render"


def new_session_token() -> str:
    return uuid.uuid4().hex


@dataclass
class PreviewSession:
    """Everything one preview run needs to answer requests.

    ``path_name`` is the directory the previewed document lives in (None for a
    never-saved buffer). ``executing_script`` starts as the token endpoint and is
    renamed to the script's own filename when a ``.js`` file runs in the console
    harness.
    """

    target: str
    port: int
    active_file: EditorFile | None = None
    filename: str | None = None
    path_name: str | None = None
    is_console: bool = False
    project_root: str | None = None
    is_fallback: bool = False
    token: str = field(default_factory=new_session_token)
    executing_script: str = ""

    def __post_init__(self):
        if not self.executing_script:
            self.executing_script = f"{self.token}_script.js"

    @property
    def console_script(self) -> str:
        return f"{self.token}_console.js"

    @property
    def markdown_style(self) -> str:
        return f"{self.token}_md.css"

    @property
    def extension(self) -> str:
        return extname(self.filename or "")

    @property
    def mode(self) -> str:
        if self.is_console:
            return MODE_INAPP_CONSOLE
        if self.target == TARGET_BROWSER:
            return MODE_BROWSER
        return MODE_FILE_RENDER

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "target": self.target,
            "mode": self.mode,
            "port": self.port,
            "filename": self.filename,
            "path_name": self.path_name,
            "project_root": self.project_root,
            "is_console": self.is_console,
            "is_fallback": self.is_fallback,
            "active_file": self.active_file.id if self.active_file else None,
        }
