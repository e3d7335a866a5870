"""
Text Normalizer
===============
Cleans raw page text into the canonical stream every extraction strategy
reads: one question anchor form (`Q3. `), one option marker form (`A) `),
no page breaks, no exam-portal artifacts.

Steps run in a fixed order; each assumes the previous ones have run.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from .models import PageText

logger = logging.getLogger(__name__)

PAGE_BREAK = "\n<<<PAGE_BREAK>>>\n"

# ─── Step Patterns ────────────────────────────────────────────────────────────

PAGE_BREAK_PATTERN = re.compile(r"<<<PAGE_BREAK>>>")
LINE_BREAK_CHARS = re.compile(r"\r\n|[\r\f\v]")

HORIZONTAL_SPACE = re.compile(r"[ \t\u00a0]+")
LINE_EDGE_SPACE = re.compile(r" *\n *")
BLANK_LINES = re.compile(r"\n{2,}")

# "03/09/2024 --> 10:30 AM - 11:30 AM" (exam portal session banner)
DATE_RANGE_ARTIFACT = re.compile(
    r"\b\d{1,2}/\d{1,2}/\d{2,4}\s*-->\s*"
    r"\d{1,2}:\d{2}\s*[AP]M\s*-\s*\d{1,2}:\d{2}\s*[AP]M\b",
    re.IGNORECASE,
)
# "12.5% Attempted"
ATTEMPT_ARTIFACT = re.compile(
    r"\b\d{1,3}(?:\.\d+)?\s*%\s*Attempted\b", re.IGNORECASE
)

# "Question 3:" / "Question 3." / "Question 3)" at line start; a reference
# such as "see Question 1." inside a stem stays as written
QUESTION_WORD_NUMBER = re.compile(
    r"^Question\s*(\d{1,3})\s*[:.)]\s*", re.IGNORECASE | re.MULTILINE
)
# "Question 3" / "Question: 3" at line start
QUESTION_WORD_LINE_START = re.compile(
    r"^Question\s*:?\s*(\d{1,3})\b\s*", re.IGNORECASE | re.MULTILINE
)
# "Q3." / "Q 3:" / "Q.3)" at line start
Q_PREFIX_NUMBER = re.compile(
    r"^Q\s*\.?\s*(\d{1,3})\s*[:.)]\s*", re.MULTILINE
)
# "3)" at line start
LINE_START_PAREN_NUMBER = re.compile(r"^(\d{1,3})\)\s*", re.MULTILINE)
# "3. " at line start; the trailing space keeps "3.5" and "12/05" intact
LINE_START_DOT_NUMBER = re.compile(r"^(\d{1,3})\.(?:\s+|$)", re.MULTILINE)

# "(a)" / "( B )"
PAREN_OPTION = re.compile(r"(?<!\S)\(\s*([a-dA-D])\s*\)\s*")
# "**b) text**" / "<b>b) text</b>": marker moved ahead of the emphasis
EMPHASIZED_OPTION = re.compile(r"(?<!\S)(\*\*|<b>)\s*\(?\s*([a-dA-D])\s*\)\s*", re.IGNORECASE)
# "a)" / "B)"
BRACKET_OPTION = re.compile(r"(?<!\S)([a-dA-D])\)\s*")
# "a." / "B." at line start
LINE_START_DOT_OPTION = re.compile(r"^([a-dA-D])\.\s+", re.MULTILINE)
# Inline "A. x B. y C. z D. w" on one line
INLINE_DOT_SEQUENCE = re.compile(
    r"(?<!\S)[Aa]\.\s.*?(?<!\S)[Bb]\.\s.*?(?<!\S)[Cc]\.\s.*?(?<!\S)[Dd]\.\s"
)
INLINE_DOT_OPTION = re.compile(r"(?<!\S)([a-dA-D])\.\s+")


def _option_marker(match: re.Match) -> str:
    return f"{match.group(1).upper()}) "


def join_pages(pages: Iterable[PageText | str]) -> str:
    """Join page texts into one stream separated by PAGE_BREAK markers."""
    parts = []
    for page in pages:
        parts.append(page.text if isinstance(page, PageText) else page)
    return PAGE_BREAK.join(parts)


def strip_page_breaks(text: str) -> str:
    text = PAGE_BREAK_PATTERN.sub("\n", text)
    return LINE_BREAK_CHARS.sub("\n", text)


def collapse_whitespace(text: str) -> str:
    text = HORIZONTAL_SPACE.sub(" ", text)
    text = LINE_EDGE_SPACE.sub("\n", text)
    text = BLANK_LINES.sub("\n", text)
    return text.strip()


def remove_artifacts(text: str) -> str:
    text = DATE_RANGE_ARTIFACT.sub(" ", text)
    return ATTEMPT_ARTIFACT.sub(" ", text)


def normalize_question_numbers(text: str) -> str:
    text = QUESTION_WORD_NUMBER.sub(r"Q\1. ", text)
    text = QUESTION_WORD_LINE_START.sub(r"Q\1. ", text)
    text = Q_PREFIX_NUMBER.sub(r"Q\1. ", text)
    text = LINE_START_PAREN_NUMBER.sub(r"Q\1. ", text)
    return LINE_START_DOT_NUMBER.sub(r"Q\1. ", text)


def _normalize_dot_options(line: str) -> str:
    if INLINE_DOT_SEQUENCE.search(line):
        return INLINE_DOT_OPTION.sub(_option_marker, line)
    return LINE_START_DOT_OPTION.sub(_option_marker, line)


def normalize_option_markers(text: str) -> str:
    text = EMPHASIZED_OPTION.sub(lambda m: f"{m.group(2).upper()}) {m.group(1)}", text)
    text = PAREN_OPTION.sub(_option_marker, text)
    text = BRACKET_OPTION.sub(_option_marker, text)
    return "\n".join(_normalize_dot_options(line) for line in text.split("\n"))


def normalize_text(text: str) -> str:
    """
    Produce the canonical text stream for extraction.

    Args:
        text: Raw text, usually several pages joined with PAGE_BREAK.

    Returns:
        Cleaned text with one question or option anchor form and
        single newlines between lines.
    """
    if not text:
        return ""

    text = strip_page_breaks(text)
    text = collapse_whitespace(text)
    text = remove_artifacts(text)
    text = normalize_question_numbers(text)
    text = normalize_option_markers(text)
    text = collapse_whitespace(text)

    logger.debug(f"Normalized text: {len(text)} chars")
    return text
