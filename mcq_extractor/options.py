"""
Option Parser
=============
Pulls up to four labelled options (A–D) out of the text that follows a
question stem. Two marker shapes are tried, `X) text` and `(X) text`, and
the one that yields more options is kept.
"""

from __future__ import annotations

import re
from typing import NamedTuple

MAX_OPTIONS = 4
DEFAULT_MAX_OPTION_LENGTH = 200

# "a) text" (not preceded by "(" or a word character)
BRACKET_SHAPE = re.compile(
    r"(?<![\w(])([a-dA-D])\)\s*(.*?)(?=(?<![\w(])[a-dA-D]\)|\Z)",
    re.DOTALL,
)
# "(a) text"
PAREN_SHAPE = re.compile(
    r"\(([a-dA-D])\)\s*(.*?)(?=\([a-dA-D]\)|\Z)",
    re.DOTALL,
)

OPTION_SHAPES = (BRACKET_SHAPE, PAREN_SHAPE)

EMPHASIS_MARKUP = re.compile(r"\*\*|</?b>", re.IGNORECASE)


class ParsedOption(NamedTuple):
    label: str
    text: str


def clean_fragment(text: str) -> str:
    """Collapse whitespace and drop emphasis markup."""
    return " ".join(EMPHASIS_MARKUP.sub("", text).split())


def _collect(pattern: re.Pattern, span: str, max_length: int) -> list[ParsedOption]:
    options: list[ParsedOption] = []
    for match in pattern.finditer(span):
        text = clean_fragment(match.group(2))
        if not text or len(text) > max_length:
            continue
        options.append(ParsedOption(match.group(1).lower(), text))
    return options


def parse_options(
    span: str,
    max_length: int = DEFAULT_MAX_OPTION_LENGTH,
) -> list[ParsedOption]:
    """
    Extract labelled options from a stem-trailing span.

    Args:
        span: Text following a question stem.
        max_length: Options longer than this are dropped; a long option
            usually means parsing ran into the next question.

    Returns:
        At most four options from whichever marker shape matched more.
    """
    best: list[ParsedOption] = []
    for shape in OPTION_SHAPES:
        options = _collect(shape, span, max_length)
        if len(options) > len(best):
            best = options
    return best[:MAX_OPTIONS]
