"""A small INI parser that reports every name/value pair to a handler.

Sections are written ``[name]``; pairs as ``name=value`` or ``name: value``.
Lines starting with ``;`` or ``#`` are comments, and ``;`` preceded by
whitespace starts an inline comment.  An indented line following a pair
continues that pair's value and is reported again under the same name.
"""

from __future__ import annotations

import io
import os
from typing import Callable, Iterable, Iterator, Optional, TextIO, Union

__all__ = [
    "IniParseError",
    "MAX_LINE",
    "MAX_SECTION",
    "MAX_NAME",
    "parse_lines",
    "parse_string",
    "parse_file",
    "parse",
]

Handler = Callable[[str, str, str], Optional[bool]]

#: Longest line read in one piece, including its newline; longer lines are split.
MAX_LINE = 200
#: Section names are kept to one less than this many characters.
MAX_SECTION = 50
#: Names remembered for continuation lines are kept to one less than this.
MAX_NAME = 50

_WHITESPACE = " \t\n\v\f\r"
_INLINE_COMMENT_PREFIXES = ";"
_BOM = "\ufeff"


class IniParseError(ValueError):
    """Raised after parsing when a line could not be parsed or was rejected."""

    def __init__(self, lineno: int) -> None:
        super().__init__(f"parse error on line {lineno}")
        self.lineno = lineno


def _find_chars_or_comment(text: str, chars: Optional[str]) -> int:
    """Index of the first char in ``chars`` or of an inline comment, else len."""
    was_space = False
    for index, char in enumerate(text):
        if chars is not None and char in chars:
            return index
        if was_space and char in _INLINE_COMMENT_PREFIXES:
            return index
        was_space = char in _WHITESPACE
    return len(text)


def _read_chunks(lines: Iterable[str]) -> Iterator[str]:
    """Yield lines the way a fixed-size line buffer would read them."""
    limit = MAX_LINE - 1
    for line in lines:
        yield line[:limit]
        rest = line[limit:]
        while rest:
            yield rest[:limit]
            rest = rest[limit:]


def parse_lines(lines: Iterable[str], handler: Handler) -> None:
    """Parse INI lines, calling ``handler(section, name, value)`` per pair.

    A handler that returns ``False`` marks its line as an error.  Parsing
    goes on past errors; afterwards :class:`IniParseError` is raised for the
    first line in error.
    """
    section = ""
    prev_name = ""
    error = 0

    for lineno, raw in enumerate(_read_chunks(lines), start=1):
        line = raw
        if lineno == 1 and line.startswith(_BOM):
            line = line[len(_BOM):]
        skipped = len(raw) - len(line)
        rstripped = line.rstrip(_WHITESPACE)
        start = rstripped.lstrip(_WHITESPACE)
        skipped += len(rstripped) - len(start)

        if start.startswith((";", "#")):
            pass
        elif prev_name and start and skipped > 0:
            if handler(section, prev_name, start) is False and not error:
                error = lineno
        elif start.startswith("["):
            end = _find_chars_or_comment(start[1:], "]") + 1
            if end < len(start) and start[end] == "]":
                section = start[1:end][: MAX_SECTION - 1]
                prev_name = ""
            elif not error:
                error = lineno
        elif start:
            end = _find_chars_or_comment(start, "=:")
            if end < len(start):
                name = start[:end].rstrip(_WHITESPACE)
                value = start[end + 1:]
                value = value[: _find_chars_or_comment(value, None)]
                value = value.strip(_WHITESPACE)
                prev_name = name[: MAX_NAME - 1]
                if handler(section, name, value) is False and not error:
                    error = lineno
            elif not error:
                error = lineno

    if error:
        raise IniParseError(error)


def parse_string(text: str, handler: Handler) -> None:
    """Parse INI content held in a string."""
    parse_lines(io.StringIO(text), handler)


def parse_file(file: TextIO, handler: Handler) -> None:
    """Parse an open text file; the caller keeps ownership of it."""
    parse_lines(file, handler)


def parse(filename: Union[str, "os.PathLike[str]"], handler: Handler) -> None:
    """Open ``filename`` and parse it; ``OSError`` is raised if it can't be opened."""
    with open(filename, encoding="utf-8", newline="") as file:
        parse_file(file, handler)