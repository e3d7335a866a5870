"""
Practice-Set Segmenter
======================
Finds "Practice Set N" style headers in documents that bundle several
tests and partitions the text into one segment per set.

A document with no headers yields no segments; callers then extract over
the whole text as a single implicit set.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import PracticeSet

logger = logging.getLogger(__name__)

# Ordered from most to least specific; overlapping hits are merged below.
SET_HEADER_PATTERNS = [
    re.compile(r"\bPractice\s+Set\s*[-:]?\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bMock\s+Test\s*[-:]?\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bSet\s*[-:]?\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bTest\s*[-:]?\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bPaper\s*[-:]?\s*(\d{1,3})\b", re.IGNORECASE),
]

DEFAULT_SET_RANGE = (1, 20)
DEFAULT_MERGE_DISTANCE = 200
SET_NUMBER_TOLERANCE = 1


@dataclass(frozen=True)
class SetHeader:
    """A header occurrence in the text."""
    set_number: int
    start: int
    end: int
    title: str


def find_set_headers(
    text: str,
    set_range: tuple[int, int] = DEFAULT_SET_RANGE,
) -> list[SetHeader]:
    """Every header hit whose number is inside set_range, unmerged."""
    low, high = set_range
    headers: list[SetHeader] = []

    for pattern in SET_HEADER_PATTERNS:
        for match in pattern.finditer(text):
            number = int(match.group(1))
            if not low <= number <= high:
                logger.debug(
                    f"Ignoring header '{match.group(0)}' "
                    f"(set number outside {low}-{high})"
                )
                continue
            headers.append(SetHeader(
                set_number=number,
                start=match.start(),
                end=match.end(),
                title=match.group(0).strip(),
            ))

    return headers


def merge_headers(
    headers: list[SetHeader],
    merge_distance: int = DEFAULT_MERGE_DISTANCE,
) -> list[SetHeader]:
    """
    Collapse repeated hits of the same header (e.g. "Practice Set 2" also
    matching "Set 2", or a heading printed twice) and sort by position.
    The earliest, longest hit of each cluster is kept.
    """
    ordered = sorted(headers, key=lambda h: (h.start, -(h.end - h.start)))
    kept: list[SetHeader] = []

    for header in ordered:
        duplicate = any(
            abs(k.set_number - header.set_number) < SET_NUMBER_TOLERANCE
            and abs(k.start - header.start) < merge_distance
            for k in kept
        )
        if not duplicate:
            kept.append(header)

    return kept


def detect_practice_sets(
    text: str,
    set_range: tuple[int, int] = DEFAULT_SET_RANGE,
    merge_distance: int = DEFAULT_MERGE_DISTANCE,
) -> list[PracticeSet]:
    """
    Partition text into practice-set segments.

    Args:
        text: Normalized document text.
        set_range: Inclusive range of plausible set numbers.
        merge_distance: Hits of the same set number closer than this are
            one header.

    Returns:
        Segments in document order. Their [start_offset, end_offset) spans
        cover the whole text without overlap, so text before the first
        header belongs to the first set. Empty when no header was found.
    """
    headers = merge_headers(find_set_headers(text, set_range), merge_distance)
    if not headers:
        logger.info("No practice set headers found")
        return []

    sets: list[PracticeSet] = []
    for i, header in enumerate(headers):
        start = 0 if i == 0 else header.start
        end = headers[i + 1].start if i + 1 < len(headers) else len(text)
        sets.append(PracticeSet(
            set_number=header.set_number,
            title=header.title,
            start_offset=start,
            content_start=header.end,
            end_offset=end,
        ))

    logger.info(
        f"Found {len(sets)} practice set(s): "
        + ", ".join(str(s.set_number) for s in sets)
    )
    return sets


def segment_text(text: str, practice_set: PracticeSet) -> str:
    """The set's whole span, header line included."""
    return text[practice_set.start_offset:practice_set.end_offset]
