"""Text formatting for answer bodies.

Converts raw answer text into Rich console markup: newlines are
normalized, ``**bold**`` and ``*italic*`` spans become style tags, and
every stretch of answer text between those tags is escaped so that the
emphasis tags are the only markup in the result.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from rich.markup import escape

CURSOR = "[blink]▌[/blink]"
FALLBACK_ANSWER = "No response received"

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"\*(.+?)\*")
_NEWLINE_RE = re.compile(r"\r\n?")


def format_message(text: str) -> str:
    """Format answer text as Rich markup.

    The result always parses with ``Text.from_markup`` and shows the
    answer's characters verbatim apart from the emphasis asterisks.
    """
    text = _NEWLINE_RE.sub("\n", text)
    return _emphasize(text, _BOLD_RE, "bold", _italicize, before_tag=False)


def with_cursor(markup: str) -> str:
    """Append the blinking stream cursor to formatted markup."""
    # Trailing backslashes would otherwise escape the cursor tag
    body = markup.rstrip("\\")
    return f"{body}{markup[len(body):] * 2}{CURSOR}"


def _emphasize(
    text: str,
    pattern: re.Pattern[str],
    tag: str,
    inner: Callable[..., str],
    *,
    before_tag: bool,
) -> str:
    """Wrap each ``pattern`` match in ``tag``; ``inner`` formats the rest."""
    parts: list[str] = []
    position = 0
    for match in pattern.finditer(text):
        parts.append(inner(text[position:match.start()], before_tag=True))
        parts.append(f"[{tag}]{inner(match.group(1), before_tag=True)}[/{tag}]")
        position = match.end()
    parts.append(inner(text[position:], before_tag=before_tag))
    return "".join(parts)


def _italicize(text: str, *, before_tag: bool) -> str:
    return _emphasize(text, _ITALIC_RE, "italic", _literal, before_tag=before_tag)


def _literal(text: str, *, before_tag: bool) -> str:
    """Escape answer text for use as markup.

    Backslashes directly ahead of a tag are doubled so that Rich reads
    them as literal characters and keeps the tag.
    """
    body = text.rstrip("\\")
    trailing = len(text) - len(body)
    return escape(body) + "\\" * (trailing * 2 if before_tag else trailing)
