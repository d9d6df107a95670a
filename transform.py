"""Markdown rendering and console instrumentation of served HTML."""

import html
import re
from string import Template
from urllib.parse import quote

from markdown_it import MarkdownIt
from markdown_it.rules_core import StateCore
from markdown_it.token import Token
from mdit_py_plugins.anchors import anchors_plugin
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

from session import TARGET_INAPP

ALERT_TITLES = {
    "note": "Note",
    "tip": "Tip",
    "important": "Important",
    "warning": "Warning",
    "caution": "Caution",
}

_ALERT_MARKER = re.compile(
    r"^\[!(NOTE|TIP|IMPORTANT|WARNING|CAUTION)\][ \t]*(?:\n|$)", re.IGNORECASE
)


def slugify(text: str) -> str:
    """Heading anchor: lowercase, runs of other characters become one hyphen."""
    return re.sub(r"[^a-z0-9]+", "-", text.strip().lower()).strip("-")


def _matching_blockquote_close(tokens: list[Token], start: int) -> int | None:
    depth = 0
    for index in range(start, len(tokens)):
        if tokens[index].type == "blockquote_open":
            depth += 1
        elif tokens[index].type == "blockquote_close":
            depth -= 1
            if depth == 0:
                return index
    return None


def _github_alerts(state: StateCore) -> None:
    """Turn ``> [!NOTE]`` style blockquotes into alert blocks.

    Runs before inline parsing, so only the raw inline content is edited.
    """
    tokens = state.tokens
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if (
            token.type == "blockquote_open"
            and index + 3 < len(tokens)
            and tokens[index + 1].type == "paragraph_open"
            and tokens[index + 2].type == "inline"
        ):
            inline = tokens[index + 2]
            match = _ALERT_MARKER.match(inline.content)
            close = _matching_blockquote_close(tokens, index) if match else None
            if match and close is not None:
                kind = match.group(1).lower()
                token.tag = "div"
                token.attrs = {"class": f"markdown-alert markdown-alert-{kind}"}
                tokens[close].tag = "div"

                inline.content = inline.content[match.end():]
                if not inline.content.strip():
                    del tokens[index + 1:index + 4]

                title = Token(
                    "html_block",
                    "",
                    0,
                    content=f'<p class="markdown-alert-title">{ALERT_TITLES[kind]}</p>\n',
                    level=token.level + 1,
                    block=True,
                )
                tokens.insert(index + 1, title)
        index += 1


def github_alerts_plugin(md: MarkdownIt) -> None:
    md.core.ruler.after("block", "github_alerts", _github_alerts)


def create_markdown_renderer() -> MarkdownIt:
    """CommonMark renderer with raw HTML, anchors, task lists, footnotes and alerts."""
    md = MarkdownIt("commonmark", {"html": True}).enable("table").enable("strikethrough")
    md.use(github_alerts_plugin)
    md.use(anchors_plugin, min_level=1, max_level=6, slug_func=slugify)
    md.use(tasklists_plugin)
    md.use(footnote_plugin)
    return md


_markdown = create_markdown_renderer()


def render_markdown(text: str) -> str:
    return _markdown.render(text or "")


MARKDOWN_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1.0" />
<title>$title</title>
<link rel="stylesheet" href="/$stylesheet" />
</head>
<body>
<main class="markdown-body">
$content
</main>
</body>
</html>
""")


def render_markdown_page(text: str, filename: str, stylesheet: str) -> str:
    """Full HTML page for a markdown buffer."""
    return MARKDOWN_PAGE.substitute(
        title=html.escape(filename or ""),
        stylesheet=quote(stylesheet),
        content=render_markdown(text),
    )


CONSOLE_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1.0" />
<title>Console</title>
<script src="/$console_script"></script>
</head>
<body>
<script src="/$executing_script"></script>
</body>
</html>
""")


def render_console_page(console_script: str, executing_script: str) -> str:
    """Console harness page that runs the executing script under the console."""
    return CONSOLE_PAGE.substitute(
        console_script=quote(console_script),
        executing_script=quote(executing_script),
    )


INSTRUMENTATION = Template("""<meta class="$token" data-preview-instrumentation name="viewport" content="width=device-width, initial-scale=1.0" />
<script class="$token" data-preview-instrumentation src="/$console_script" crossorigin="anonymous"></script>
<script class="$token" data-preview-instrumentation>
  (function () {
    if (window.eruda) {
      if (!window.__previewConsoleBound) {
        eruda.init({ theme: 'dark' });
        $hide_entry
        sessionStorage.setItem('__console_available', true);
        document.addEventListener('showconsole', function () { eruda.show(); });
        document.addEventListener('hideconsole', function () { eruda.hide(); });
        window.__previewConsoleBound = true;
      }
    } else if (document.querySelector('c-toggler')) {
      $hide_toggler
    }
    setTimeout(function () {
      var nodes = document.querySelectorAll('.$token');
      nodes.forEach(function (el) { if (el.parentNode) el.parentNode.removeChild(el); });
    }, 0);
  })();
</script>
""")

HIDE_ERUDA_ENTRY = (
    "eruda._shadowRoot.querySelector('.eruda-entry-btn').style.display = 'none';"
)
HIDE_TOGGLER = "document.querySelector('c-toggler').style.display = 'none';"

_BLOCK_PATTERN = re.compile(
    r'<meta class="(?P<token>[\w-]+)" data-preview-instrumentation .*?'
    r'<script class="(?P=token)" data-preview-instrumentation>.*?</script>\n',
    re.DOTALL,
)
_SYNTHETIC_HEAD_PATTERN = r'<head data-preview-head="{token}"></head>'
_SELF_CLOSING_SCRIPT = re.compile(r"<script\b([^>]*)></script>", re.IGNORECASE)
_HEAD_TAG = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)


def build_instrumentation(
    token: str,
    console_script: str,
    target: str,
    show_console_toggler: bool = True,
) -> str:
    """Tagged block loading and wiring the console overlay."""
    inapp = target == TARGET_INAPP
    return INSTRUMENTATION.substitute(
        token=token,
        console_script=quote(console_script),
        hide_entry=HIDE_ERUDA_ENTRY if inapp else "",
        hide_toggler=HIDE_TOGGLER if inapp or not show_console_toggler else "",
    )


def add_crossorigin(text: str) -> str:
    """Let empty-bodied script tags load cross-origin."""

    def _replace(match: re.Match) -> str:
        attributes = match.group(1)
        if "crossorigin" in attributes.lower():
            return match.group(0)
        return f'<script{attributes} crossorigin="anonymous"></script>'

    return _SELF_CLOSING_SCRIPT.sub(_replace, text)


def strip_instrumentation(text: str, token: str | None = None) -> str:
    """Remove injected blocks (all of them, or only those of one token)."""
    tokens = set()

    def _remove(match: re.Match) -> str:
        if token is not None and match.group("token") != token:
            return match.group(0)
        tokens.add(match.group("token"))
        return ""

    text = _BLOCK_PATTERN.sub(_remove, text)
    for removed in tokens:
        text = text.replace(_SYNTHETIC_HEAD_PATTERN.format(token=removed), "")
    return text


def inject_instrumentation(
    text: str,
    token: str,
    console_script: str,
    target: str,
    show_console_toggler: bool = True,
) -> str:
    """Insert the console block into an HTML document.

    Goes inside an existing ``<head>``, else into a new head right after
    ``<html>``, else into a new head before everything. Blocks from earlier
    injections are removed first.
    """
    block = build_instrumentation(token, console_script, target, show_console_toggler)
    text = add_crossorigin(strip_instrumentation(text))

    head = _HEAD_TAG.search(text)
    if head:
        return text[:head.end()] + block + text[head.end():]

    synthetic_head = f'<head data-preview-head="{token}">{block}</head>'
    html_tag = _HTML_TAG.search(text)
    if html_tag:
        return text[:html_tag.end()] + synthetic_head + text[html_tag.end():]

    return synthetic_head + text
