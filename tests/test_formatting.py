"""Tests for answer text formatting."""

from __future__ import annotations

from rich.text import Text

from chatrelay.client.formatting import CURSOR, format_message, with_cursor


class TestFormatMessage:
    def test_plain_text_unchanged(self):
        assert format_message("hello world") == "hello world"

    def test_bold(self):
        assert format_message("a **b** c") == "a [bold]b[/bold] c"

    def test_italic(self):
        assert format_message("a *b* c") == "a [italic]b[/italic] c"

    def test_bold_and_italic(self):
        assert format_message("**x** and *y*") == "[bold]x[/bold] and [italic]y[/italic]"

    def test_newlines_normalized(self):
        assert format_message("a\r\nb\rc\nd") == "a\nb\nc\nd"

    def test_markup_is_escaped(self):
        result = format_message("[red]not red[/red]")
        assert Text.from_markup(result).plain == "[red]not red[/red]"

    def test_escaped_text_with_emphasis_renders(self):
        text = Text.from_markup(format_message("use [x] **now**"))
        assert text.plain == "use [x] now"

    def test_unclosed_emphasis_left_alone(self):
        assert format_message("2 * 3") == "2 * 3"


class TestCursor:
    def test_with_cursor_appends(self):
        assert with_cursor("abc") == f"abc{CURSOR}"

    def test_cursor_is_valid_markup(self):
        assert Text.from_markup(with_cursor("abc")).plain == "abc▌"


class TestBackslashes:
    """Backslashes in answer text never turn emphasis tags into text."""

    def test_backslash_before_bold(self):
        markup = format_message("path \\**bold**")
        assert Text.from_markup(markup).plain == "path \\bold"

    def test_backslash_before_italic(self):
        markup = format_message("a \\*b*")
        assert Text.from_markup(markup).plain == "a \\b"

    def test_backslash_closing_bold(self):
        markup = format_message("**a\\**")
        assert Text.from_markup(markup).plain == "a\\"

    def test_trailing_backslash_kept(self):
        assert Text.from_markup(format_message("dir\\")).plain == "dir\\"

    def test_trailing_backslashes_with_cursor(self):
        markup = with_cursor(format_message("C:\\\\"))
        assert Text.from_markup(markup).plain == "C:\\\\▌"

    def test_escaped_tag_stays_literal(self):
        assert Text.from_markup(format_message("\\[bold]x")).plain == "\\[bold]x"

    def test_stray_closing_tag(self):
        assert Text.from_markup(format_message("[/x] **y**")).plain == "[/x] y"

    def test_triple_asterisks(self):
        assert Text.from_markup(format_message("***a***")).plain == "*a*"

    def test_unbalanced_asterisks(self):
        assert Text.from_markup(format_message("**a*")).plain == "*a"
