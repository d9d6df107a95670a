"""Tests for editor workspace state."""

import asyncio

from editor import EditorFile, ProjectFolder
from tests.conftest import open_file


def test_folder_contains_whole_segments() -> None:
    folder = ProjectFolder(url="ftp://host/site?passive=1")
    assert folder.contains("ftp://host/site/index.html?passive=1")
    assert folder.contains("ftp://host/site")
    assert not folder.contains("ftp://host/site2/index.html")
    assert not folder.contains(None)


def test_get_file_matches_without_query(editor_manager) -> None:
    file = open_file(editor_manager, "ftp://host/site/a.html?passive=1")
    assert editor_manager.get_file("ftp://host/site/a.html") is file
    assert editor_manager.get_file(file.id, key="id") is file
    assert editor_manager.get_file("ftp://host/site/b.html") is None


def test_close_moves_active_to_last_file(editor_manager) -> None:
    first = open_file(editor_manager, "/proj/a.html")
    second = open_file(editor_manager, "/proj/b.html")
    assert editor_manager.active_file is second

    assert editor_manager.close(second.id)
    assert editor_manager.active_file is first
    assert not editor_manager.close(second.id)


def test_can_run(project, folders) -> None:
    folders.add(str(project))
    page = EditorFile(filename="page.html", uri=str(project / "page.html"))
    style = EditorFile(filename="style.css", uri=str(project / "css" / "style.css"))
    unloaded = EditorFile(filename="page.html", uri=str(project / "page.html"), loaded=False)

    assert asyncio.run(page.can_run(folders))
    assert not asyncio.run(style.can_run(folders))
    assert not asyncio.run(unloaded.can_run(folders))

    (project / "index.html").write_text("<p>home</p>")
    assert asyncio.run(style.can_run(folders))


def test_open_folders(folders) -> None:
    first = folders.add("/proj")
    assert folders.add("/proj") is first
    folders.add("/other")

    assert folders.first is first
    assert folders.find("/other/a.html").url == "/other"
    assert folders.remove("/proj")
    assert folders.first.url == "/other"


def test_can_run_checks_index_below_query_folder(folders, remote_fs) -> None:
    folders.add("ftp://host/site?mode=passive")
    style = EditorFile(filename="a.css", uri="ftp://host/site/a.css?mode=passive")
    remote_fs.add("ftp://host/site/a.css", "p {}")

    assert not asyncio.run(style.can_run(folders))

    remote_fs.add("ftp://host/site/index.html", "<p>home</p>")
    assert asyncio.run(style.can_run(folders))
