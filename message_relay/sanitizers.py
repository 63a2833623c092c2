"""Body sanitizing applied to messages on write."""

import re
import unicodedata

from bs4 import BeautifulSoup

__all__ = ["strip_control_chars", "strip_html", "normalize_whitespace", "sanitize_body"]


_ALLOWABLE_CONTROL_CHARS = {"\n", "\r", "\t"}

_DROPPED_TAGS = ("script", "style", "head", "template")
_BLOCK_TAGS = (
    "address", "blockquote", "br", "div", "h1", "h2", "h3", "h4", "h5", "h6",
    "hr", "li", "ol", "p", "pre", "section", "table", "td", "th", "tr", "ul",
)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_control_chars(value: str) -> str:
    """Remove control characters except tab, newline and carriage return."""
    if not isinstance(value, str):
        return ""
    return "".join(
        ch for ch in value
        if unicodedata.category(ch)[0] != "C" or ch in _ALLOWABLE_CONTROL_CHARS
    )


def strip_html(value: str) -> str:
    """Reduce an HTML document to its visible text.

    Script and style content is dropped, entities are decoded and block
    elements end in a line break so adjacent paragraphs do not run together.
    Characters such as ``<`` that do not open a tag are kept as text.
    """
    if not isinstance(value, str):
        return ""
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup.find_all(_DROPPED_TAGS):
        tag.decompose()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_after("\n")
    return soup.get_text().strip()


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def sanitize_body(message_type: str, body: str) -> str:
    """Sanitize a message body for its type: HTML for email, control chars otherwise."""
    if message_type == "email":
        return normalize_whitespace(strip_control_chars(strip_html(body)))
    return normalize_whitespace(strip_control_chars(body))
