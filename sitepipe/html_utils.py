"""HTML utility functions for Sitepipe.

This module holds the string-level HTML work the production build needs:
minifying generated pages in place after the site generator ran.

Functions:
    minify_html: Minify an HTML document, keeping conditional comments.
    minify_html_tree: Minify every HTML file below a directory, in place.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from pathlib import Path

from .utils import write_atomic

logger = logging.getLogger(__name__)

# Blocks copied through untouched. Conditional comments come first so a
# conditional wrapping a <script> is kept whole.
_PRESERVE_RE = re.compile(
    r"<!--\[if[^\]]*\]>.*?<!\[endif\]-->"  # <!--[if IE]> ... <![endif]-->
    r"|<!--\[if[^\]]*\]><!-->"  # <!--[if !IE]><!-->
    r"|<!--<!\[endif\]-->"  # <!--<![endif]-->
    r"|<(pre|textarea|script|style)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)

# Start tags; quoted attribute values may contain ">".
_START_TAG_RE = re.compile(r"""<[A-Za-z][^\s>/"']*(?:"[^"]*"|'[^']*'|[^>"'])*>""")

_QUOTED_RE = re.compile(r""""[^"]*"|'[^']*'""")

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

_WHITESPACE_RE = re.compile(r"\s+")

# Whitespace next to block-level tags never renders.
_BLOCK_TAGS = (
    "!doctype|address|article|aside|base|blockquote|body|br|dd|div|dl|dt|"
    "fieldset|figcaption|figure|footer|form|h[1-6]|head|header|hr|html|li|"
    "link|main|meta|nav|ol|option|p|section|select|table|tbody|td|tfoot|th|"
    "thead|title|tr|ul"
)
_BLOCK_TAG_RE = re.compile(
    rf"\s*(</?(?:{_BLOCK_TAGS})\b[^>]*>)\s*", re.IGNORECASE
)

_PLACEHOLDER = "\x00{}\x00"
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")


def minify_html(html: str) -> str:
    """Minify an HTML document.

    Drops comments, collapses whitespace runs to a single space and removes
    whitespace around block-level tags. Conditional comments, quoted
    attribute values and the bodies of pre, textarea, script and style
    elements are kept byte for byte.

    Args:
        html: HTML source.

    Returns:
        Minified HTML.

    Examples:
        >>> minify_html('<div>\\n  <p>Hi  there</p>\\n</div>')
        '<div><p>Hi there</p></div>'

        >>> minify_html('<!--[if lt IE 9]><script src="x.js"></script><![endif]-->')
        '<!--[if lt IE 9]><script src="x.js"></script><![endif]-->'
    """
    preserved: list[str] = []

    def stash(match: re.Match) -> str:
        preserved.append(match.group(0))
        return _PLACEHOLDER.format(len(preserved) - 1)

    text = _PRESERVE_RE.sub(stash, html)
    text = _START_TAG_RE.sub(lambda m: _QUOTED_RE.sub(stash, m.group(0)), text)
    text = _COMMENT_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _BLOCK_TAG_RE.sub(r"\1", text)
    text = text.strip()

    def restore(match: re.Match) -> str:
        return _PLACEHOLDER_RE.sub(restore, preserved[int(match.group(1))])

    return _PLACEHOLDER_RE.sub(restore, text)


def minify_html_tree(root: Path) -> Iterator[Path]:
    """Minify every ``*.html`` file below ``root`` in place.

    Yields each file once it has been rewritten, so callers can treat the
    pass as a stream of finished work items.

    Args:
        root: Directory to scan.

    Yields:
        Paths of the rewritten files.
    """
    for path in sorted(root.rglob("*.html")):
        if not path.is_file():
            continue
        original = path.read_text(encoding="utf-8")
        minified = minify_html(original)
        if minified != original:
            write_atomic(path, minified)
        logger.debug("Minified %s", path)
        yield path
