"""Tests for URI classification and helpers."""

import pytest

from uris import (
    UriKind,
    dirname,
    extname,
    join,
    parse_uri,
    percent_decode,
    protocol,
    to_local_path,
)

TERMUX_DOC = (
    "content://com.termux.documents/tree/%2Fdata%2Fdata%2Fcom.termux%2Ffiles%2Fhome"
    "::/data/data/com.termux/files/home/site/index.html"
)


@pytest.mark.parametrize(
    "uri, kind",
    [
        ("/sdcard/site/index.html", UriKind.FILE),
        ("file:///sdcard/site/index.html", UriKind.FILE),
        ("ftp://user@host/site/index.html?passive=1", UriKind.FTP),
        ("sftp://host/site/index.html", UriKind.SFTP),
        ("https://example.com/a.js", UriKind.HTTP),
        (TERMUX_DOC, UriKind.TERMUX),
        ("content://com.android.externalstorage.documents/tree/primary%3Asite", UriKind.CONTENT),
        ("gdrive://folder/a.txt", UriKind.OTHER),
    ],
)
def test_parse_uri_kind(uri: str, kind: UriKind) -> None:
    """Each URI lands in exactly one kind."""
    assert parse_uri(uri).kind is kind


def test_parse_uri_strips_query_of_remote_uris() -> None:
    parsed = parse_uri("ftp://user@host/site/index.html?passive=1&enc=utf8")
    assert parsed.base == "ftp://user@host/site/index.html"
    assert parsed.query == "passive=1&enc=utf8"
    assert parsed.kind.is_remote


def test_parse_uri_termux_parts() -> None:
    parsed = parse_uri(TERMUX_DOC)
    assert parsed.tree_root == "/data/data/com.termux/files/home"
    assert parsed.real_path == "/data/data/com.termux/files/home/site/index.html"


def test_parse_uri_undecodable_tree_root_is_dropped() -> None:
    parsed = parse_uri("content://com.termux.documents/tree/%E0%A4%A")
    assert parsed.kind is UriKind.TERMUX
    assert parsed.tree_root is None


def test_percent_decode_rejects_malformed_input() -> None:
    assert percent_decode("primary%3ASite%2Fweb") == "primary:Site/web"
    with pytest.raises(ValueError):
        percent_decode("bad%zzescape")
    with pytest.raises(ValueError):
        percent_decode("%E0%A4")


def test_protocol() -> None:
    assert protocol("SFTP://host/a") == "sftp"
    assert protocol("/plain/path") == ""
    assert protocol("C:/Users/site") == ""


def test_join_and_dirname() -> None:
    assert join("/proj/", "/src", "index.html") == "/proj/src/index.html"
    assert join("", "a.html") == "a.html"
    assert dirname("/proj/src/index.html") == "/proj/src"
    assert dirname("ftp://host/site/a.html?passive=1") == "ftp://host/site?passive=1"


def test_join_keeps_query_at_end() -> None:
    assert join("ftp://host/site?mode=passive", "index.html") == "ftp://host/site/index.html?mode=passive"
    assert join("ftp://host/site/?mode=passive", "/css", "a.css") == "ftp://host/site/css/a.css?mode=passive"
    assert join(dirname("ftp://host/site/a.html?mode=passive"), "a.html") == "ftp://host/site/a.html?mode=passive"


def test_extname() -> None:
    assert extname("/proj/INDEX.HTML") == ".html"
    assert extname("ftp://host/a.min.js?x=1") == ".js"
    assert extname(".gitignore") == ""
    assert extname("Makefile") == ""


def test_to_local_path() -> None:
    assert to_local_path("file:///sdcard/my%20site/a.html") == "/sdcard/my site/a.html"
    assert to_local_path("/sdcard/site/a.html") == "/sdcard/site/a.html"
