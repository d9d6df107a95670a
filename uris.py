"""URI classification and string helpers shared by the preview components.

Every URI the preview touches is classified once by ``parse_uri`` into a closed
set of kinds, so later code switches on ``UriKind`` instead of repeating
substring tests.
"""

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import unquote, urlparse

TERMUX_AUTHORITY = "com.termux.documents"
TERMUX_HOME = "/data/data/com.termux/files/home"
TERMUX_ROOT_ENCODED = (
    "content://com.termux.documents/tree/%2Fdata%2Fdata%2Fcom.termux%2Ffiles%2Fhome"
)

_SCHEME_PATTERN = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_TREE_PATTERN = re.compile(r"tree/([^:]+)")
_BAD_ESCAPE_PATTERN = re.compile(r"%(?![0-9A-Fa-f]{2})")


class UriKind(Enum):
    """Kinds of URI a document or project root can be addressed by."""

    FILE = "file"
    FTP = "ftp"
    SFTP = "sftp"
    TERMUX = "termux"
    CONTENT = "content"
    HTTP = "http"
    OTHER = "other"

    @property
    def is_remote(self) -> bool:
        return self in (UriKind.FTP, UriKind.SFTP)


@dataclass(frozen=True)
class ParsedUri:
    """A URI classified into one ``UriKind``."""

    raw: str
    kind: UriKind
    scheme: str
    base: str
    query: str = ""
    real_path: str | None = None
    tree_root: str | None = None


def percent_decode(text: str) -> str:
    """Decode percent escapes, raising ValueError on malformed input."""
    if _BAD_ESCAPE_PATTERN.search(text):
        raise ValueError(f"Malformed percent escape in {text!r}")
    return unquote(text, errors="strict")


def protocol(uri: str) -> str:
    """Lowercase scheme of a URI without the colon, '' for plain paths."""
    match = _SCHEME_PATTERN.match(uri or "")
    if match is None:
        return ""
    # Windows drive letters are paths, not schemes
    if len(match.group(1)) == 1:
        return ""
    return match.group(1).lower()


def split_query(uri: str) -> tuple[str, str]:
    if "?" not in uri:
        return uri, ""
    base, query = uri.split("?", 1)
    return base, query


def strip_query(uri: str) -> str:
    return split_query(uri)[0]


def strip_trailing_slashes(uri: str) -> str:
    return re.sub(r"/+$", "", uri or "")


def strip_leading_slashes(path: str) -> str:
    return re.sub(r"^/+", "", path or "")


def parse_uri(uri: str) -> ParsedUri:
    """Classify a URI or path."""
    uri = uri or ""
    scheme = protocol(uri)

    if scheme in ("", "file"):
        return ParsedUri(raw=uri, kind=UriKind.FILE, scheme="file", base=uri)

    if scheme in ("ftp", "sftp", "http", "https"):
        base, query = split_query(uri)
        if scheme == "ftp":
            kind = UriKind.FTP
        elif scheme == "sftp":
            kind = UriKind.SFTP
        else:
            kind = UriKind.HTTP
        return ParsedUri(raw=uri, kind=kind, scheme=scheme, base=base, query=query)

    if scheme == "content":
        real_path = None
        if "::" in uri:
            try:
                real_path = percent_decode(uri.split("::", 1)[1])
            except ValueError:
                real_path = None

        if TERMUX_AUTHORITY in uri and "tree/" in uri:
            tree_root = None
            match = _TREE_PATTERN.search(uri)
            if match:
                try:
                    tree_root = percent_decode(match.group(1))
                except ValueError:
                    tree_root = None
            return ParsedUri(
                raw=uri,
                kind=UriKind.TERMUX,
                scheme=scheme,
                base=uri,
                real_path=real_path,
                tree_root=tree_root,
            )

        return ParsedUri(
            raw=uri, kind=UriKind.CONTENT, scheme=scheme, base=uri, real_path=real_path
        )

    return ParsedUri(raw=uri, kind=UriKind.OTHER, scheme=scheme, base=uri)


def join(base: str, *parts: str) -> str:
    """Join URI or path segments with exactly one slash between them.

    A query string on ``base`` stays at the end of the result.
    """
    result, query = split_query(base or "")
    for part in parts:
        if not part:
            continue
        if not result:
            result = part
            continue
        result = result.rstrip("/") + "/" + part.lstrip("/")
    return f"{result}?{query}" if query else result


def basename(uri: str) -> str:
    path = strip_trailing_slashes(strip_query(uri or ""))
    return path.rsplit("/", 1)[-1]


def dirname(uri: str) -> str:
    """Parent of a URI or path, keeping any query string."""
    base, query = split_query(uri or "")
    base = strip_trailing_slashes(base)
    if "/" not in base:
        parent = ""
    else:
        parent = base.rsplit("/", 1)[0]
        if parent == "" or parent.endswith(":/") or parent.endswith(":"):
            parent += "/"
    return f"{parent}?{query}" if query else parent


def extname(uri: str) -> str:
    """Lowercase extension with its leading dot, '' when there is none."""
    name = basename(uri)
    index = name.rfind(".")
    if index <= 0:
        return ""
    return name[index:].lower()


def to_local_path(uri: str) -> str:
    """Filesystem path of a FILE-kind URI."""
    if protocol(uri) == "file":
        parsed = urlparse(uri)
        return unquote(parsed.path)
    return strip_query(uri)
