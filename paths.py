"""Path resolution between browser-visible paths and project documents.

Two directions are covered:

- ``resolve_relative_path`` turns the active document into the path the
  browser is pointed at, relative to the project root.
- ``map_request_path`` turns a path requested by the browser back into the URI
  of a project file.

Project roots come in several encodings (plain paths, ``ftp://``/``sftp://``
with credential query strings, Android ``content://`` trees, Termux document
trees). Every decode step is guarded: a failure only moves resolution on to
the next, less structured strategy.
"""

import logging

from editor import OpenFolders
from uris import (
    TERMUX_ROOT_ENCODED,
    UriKind,
    join,
    parse_uri,
    percent_decode,
    strip_leading_slashes,
    strip_trailing_slashes,
)

logger = logging.getLogger(__name__)


def make_uri_absolute(uri: str) -> str:
    """Give a Termux tree URI its explicit ``::`` document path."""
    if not uri.startswith(TERMUX_ROOT_ENCODED) or "::" in uri:
        return uri
    try:
        decoded = percent_decode(uri.split("tree/", 1)[1])
    except (IndexError, ValueError) as e:
        logger.warning(f"Cannot decode Termux tree URI {uri}: {e}")
        return uri
    return f"{TERMUX_ROOT_ENCODED}::{decoded}/"


def _folder_root(document_dir: str | None, folders: OpenFolders | None) -> str:
    """Opened folder holding the document directory, else the directory itself."""
    if folders is not None and document_dir:
        first = folders.first
        if first is not None and first.url in document_dir:
            return first.url
        folder = folders.find(document_dir)
        if folder is not None:
            return folder.url
    return document_dir or ""


def select_project_root(
    document_dir: str | None,
    document_uri: str | None = None,
    folders: OpenFolders | None = None,
) -> str:
    """Root the active document's browser path is made relative to."""
    if document_uri:
        parsed = parse_uri(document_uri)
        if parsed.kind is UriKind.TERMUX and parsed.tree_root:
            logger.debug(f"Termux root folder set to: {parsed.tree_root}")
            return make_uri_absolute(parsed.tree_root)

    return make_uri_absolute(_folder_root(document_dir, folders))


def _normalize_root(root: str) -> str:
    parsed = parse_uri(root)
    if parsed.kind.is_remote:
        root = parsed.base
    return strip_trailing_slashes(root)


def _suffix_past(path: str, root: str) -> str | None:
    """Part of ``path`` below ``root``, None when path is not below it."""
    root = strip_trailing_slashes(root)
    if not root or not path.startswith(root):
        return None
    rest = path[len(root):]
    if rest and not rest.startswith("/"):
        return None
    return strip_leading_slashes(rest) or None


def _content_root_candidates(root: str) -> list[str]:
    """Real-path prefixes a content:// root may stand for."""
    candidates = []
    if "::" in root:
        try:
            candidates.append(percent_decode(root.split("::", 1)[1]))
        except ValueError as e:
            logger.debug(f"Cannot decode content root suffix of {root}: {e}")

    last_part = root.rsplit("/", 1)[-1]
    if "%" in last_part:
        try:
            candidates.append(percent_decode(last_part))
        except ValueError as e:
            logger.debug(f"Cannot decode content root segment {last_part}: {e}")
            candidates.append(last_part)
    else:
        candidates.append(last_part)
    return [candidate for candidate in candidates if candidate]


def _common_prefix_relative(root: str, full_path: str) -> str | None:
    root_parts = root.split("/")
    path_parts = full_path.split("/")

    common = 0
    for root_part, path_part in zip(root_parts, path_parts):
        if root_part != path_part:
            break
        common += 1

    if common == 0:
        return None
    return strip_leading_slashes("/".join(path_parts[common:])) or None


def resolve_relative_path(
    project_root: str | None,
    document_path: str | None,
    document_filename: str | None,
) -> str:
    """Path of a document relative to the project root.

    Falls back to the bare filename, then to the combined document path.
    Never raises.
    """
    root = _normalize_root(project_root or "")

    document_dir = document_path or ""
    if parse_uri(document_dir).kind.is_remote:
        document_dir = parse_uri(document_dir).base
    full_path = join(document_dir, document_filename or "")
    target = parse_uri(full_path)

    if target.kind is UriKind.TERMUX and target.real_path is not None:
        relative = _suffix_past(target.real_path, root)
        if relative:
            logger.debug(f"Termux relative path: {relative}")
            return relative

    if target.kind in (UriKind.TERMUX, UriKind.CONTENT) and target.real_path is not None:
        for root_path in _content_root_candidates(root):
            relative = _suffix_past(target.real_path, root_path)
            if relative:
                return relative

    relative = _common_prefix_relative(root, full_path)
    if relative:
        return relative

    if document_filename:
        return document_filename

    logger.debug("Unable to determine relative path, returning full path")
    return full_path


def find_overlap(root: str, path: str) -> str:
    """Longest run of whole segments ending ``root`` and starting ``path``."""
    for size in range(min(len(root), len(path)), 0, -1):
        if root[-size:] != path[:size]:
            continue
        starts_segment = size == len(root) or root[-size - 1] == "/"
        ends_segment = size == len(path) or path[size] == "/"
        if starts_segment and ends_segment:
            return path[:size]
    return ""


def map_request_path(
    document_dir: str | None,
    folders: OpenFolders | None,
    request_path: str,
) -> str:
    """URI of the project file a browser request path refers to."""
    root = _normalize_root(_folder_root(document_dir, folders))
    request_path = strip_leading_slashes(request_path)

    root_parts = root.split("/")
    path_parts = request_path.split("/")
    if len(path_parts) > 1 and path_parts[0] == root_parts[-1]:
        path_parts.pop(0)
    relative = "/".join(path_parts)

    overlap = find_overlap(root, relative)
    if overlap:
        relative = strip_leading_slashes(relative[len(overlap):])

    full_path = join(root, relative)
    logger.debug(f"Mapped {request_path} onto {root} as {full_path}")
    return full_path
