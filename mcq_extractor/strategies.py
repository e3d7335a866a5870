"""
Extraction Strategies
=====================
Independent ways of reading candidate questions out of normalized text.

Strategies:
    - LineScanParser (state_machine.py): line-by-line state machine
    - PatternStrategy: whole-question regex passes
    - BlockStrategy: split into per-question blocks, parse each block

Every strategy is a pure `extract(text) -> list[CandidateQuestion]`.
Results are pooled, never chosen exclusively; agreement between
strategies is settled later by the deduplicator.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import CandidateQuestion, ExtractionSource, OPTION_LABELS
from .options import DEFAULT_MAX_OPTION_LENGTH, clean_fragment, parse_options

logger = logging.getLogger(__name__)

DEFAULT_STEM_LIMIT = 500


def confidence_for(stem: str, options: list[str]) -> float:
    """Heuristic confidence for a candidate's structure."""
    confidence = 0.5
    if len(stem) > 20:
        confidence += 0.1
    if "?" in stem:
        confidence += 0.1
    if len(options) == 4:
        confidence += 0.1
    if options and all(len(opt) > 2 for opt in options):
        confidence += 0.1
    if len(stem) < 10:
        confidence -= 0.2
    if len(options) < 2:
        confidence -= 0.3
    return round(max(0.0, min(1.0, confidence)), 2)


# ─── Spill-over Cleanup ───────────────────────────────────────────────────────

# Text that trails the last option but belongs to something else:
# answer/explanation lines, the next set header, page footers, or any
# further line of the block.
TRAILING_CLEANUP = re.compile(
    r"\s*(?:"
    r"\b(?:Correct\s+)?(?:Answer|Ans|Solution|Sol|Explanation)\b\s*[:.\-]"
    r"|\b(?:Practice\s+Set|Mock\s+Test|Set|Test|Paper)\s*[-:]?\s*\d{1,2}\b"
    r"|\bPage\s*\d+\s*(?:of|/)\s*\d+"
    r"|\n"
    r")",
    re.IGNORECASE,
)


def strip_spillover(text: str) -> str:
    """Cut a last-option text at the first foreign trailer."""
    match = TRAILING_CLEANUP.search(text)
    if match:
        text = text[:match.start()]
    return clean_fragment(text)


# ─── Strategy Interface ───────────────────────────────────────────────────────


class ExtractionStrategy(ABC):
    """
    Abstract interface for an extraction strategy.

    Implementations receive the normalized text and return candidates
    tagged with their own `source`. Finding nothing is not an error.
    """

    source: ExtractionSource

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    def extract(self, text: str) -> list[CandidateQuestion]:
        """
        Extract candidate questions.

        Args:
            text: Normalized text (see normalizer.normalize_text).

        Returns:
            Candidates in document order.
        """


# ─── Pattern Strategy ─────────────────────────────────────────────────────────

# Stem text that never runs into another question anchor
_STEM = r"((?:(?!Q\d{1,3}\.\s)[^?]){1,%d}\?)"
_ANCHOR = r"(?<![\w.])Q?(\d{1,3})\.\s*"
_TRAILER = (
    r"\s+(?:Correct\s+)?(?:Answer|Ans|Solution|Explanation)\b"
    r"|\s+(?:Practice\s+Set|Mock\s+Test|Set|Test|Paper)\s*[-:]?\s*\d"
)
# End of a question: the next anchor, a trailer, or end of text
_NEXT_QUESTION = r"(?=\s+Q?\d{1,3}\.\s|\s*\Z|" + _TRAILER + ")"
# End of a last option: as above, or end of its line
_OPTION_END = r"(?=\s+Q?\d{1,3}\.\s|\s*\n|\s*\Z|" + _TRAILER + ")"


def _strict_sequence(stem_limit: int) -> re.Pattern:
    return re.compile(
        _ANCHOR
        + _STEM % stem_limit
        + r"\s*A\)\s*(.{1,200}?)"
        r"\s+B\)\s*(.{1,200}?)"
        r"\s+C\)\s*(.{1,200}?)"
        r"\s+D\)\s*(.{1,200}?)"
        + _OPTION_END,
        re.DOTALL,
    )


def _option_span(stem_limit: int) -> re.Pattern:
    return re.compile(
        _ANCHOR
        + _STEM % stem_limit
        + r"\s*(.{1,1000}?)"
        + _NEXT_QUESTION,
        re.DOTALL,
    )


@dataclass
class PatternPass:
    """One independent regex pass of the pattern strategy."""
    name: str
    pattern: re.Pattern
    uses_option_parser: bool = False


class PatternStrategy(ExtractionStrategy):
    """
    Whole-question regex passes. Each pass is applied on its own over the
    full text and contributes every non-overlapping match. Stems must end
    with a question mark.
    """

    source = ExtractionSource.PATTERN

    def __init__(
        self,
        stem_limit: int = DEFAULT_STEM_LIMIT,
        option_max_length: int = DEFAULT_MAX_OPTION_LENGTH,
    ):
        self.option_max_length = option_max_length
        self.passes = [
            PatternPass("strict_sequence", _strict_sequence(stem_limit)),
            PatternPass(
                "option_span", _option_span(stem_limit), uses_option_parser=True
            ),
        ]

    def extract(self, text: str) -> list[CandidateQuestion]:
        questions: list[CandidateQuestion] = []

        for pattern_pass in self.passes:
            found = 0
            for match in pattern_pass.pattern.finditer(text):
                candidate = self._build(match, pattern_pass)
                if candidate:
                    questions.append(candidate)
                    found += 1
            logger.debug(f"Pattern pass '{pattern_pass.name}': {found} match(es)")

        return questions

    def _build(
        self, match: re.Match, pattern_pass: PatternPass
    ) -> Optional[CandidateQuestion]:
        number = int(match.group(1))
        stem = clean_fragment(match.group(2))

        if pattern_pass.uses_option_parser:
            parsed = parse_options(match.group(3), self.option_max_length)
            if [opt.label for opt in parsed] != list(OPTION_LABELS):
                return None
            options = [opt.text for opt in parsed]
            options[-1] = strip_spillover(options[-1])
        else:
            options = [clean_fragment(match.group(i)) for i in range(3, 6)]
            options.append(strip_spillover(match.group(6)))

        return CandidateQuestion(
            number=number,
            text=stem,
            options=options,
            source=self.source,
            confidence=confidence_for(stem, options),
        )


# ─── Block Strategy ───────────────────────────────────────────────────────────

# Zero-width boundaries before "Q12. " anywhere or "12. " at line start
BLOCK_SPLIT = re.compile(
    r"(?=(?<![\w.])Q\d{1,3}\.\s)|(?=^\d{1,3}\.\s)", re.MULTILINE
)

_BLOCK_TEMPLATE = (
    r"^\s*Q?(\d{1,3})\.\s*(.{1,%d}?)"
    r"\s+A\)\s*(.+?)"
    r"\s+B\)\s*(.+?)"
    r"\s+C\)\s*(.+?)"
    r"\s+D\)\s*(.+?)\s*$"
)

BLOCK_PATTERN = re.compile(_BLOCK_TEMPLATE % DEFAULT_STEM_LIMIT, re.DOTALL)

MAX_BLOCK_LENGTH = 2500


class BlockStrategy(ExtractionStrategy):
    """
    Splits the text into one block per question anchor and parses each
    block with a single anchored regex. Stems need not end in "?".
    """

    source = ExtractionSource.BLOCK

    def __init__(self, stem_limit: int = DEFAULT_STEM_LIMIT):
        self.pattern = re.compile(_BLOCK_TEMPLATE % stem_limit, re.DOTALL)

    def split_blocks(self, text: str) -> list[str]:
        return [b.strip() for b in BLOCK_SPLIT.split(text) if b.strip()]

    def extract(self, text: str) -> list[CandidateQuestion]:
        questions: list[CandidateQuestion] = []

        for block in self.split_blocks(text):
            candidate = self._parse_block(block[:MAX_BLOCK_LENGTH])
            if candidate:
                questions.append(candidate)

        logger.debug(f"Block split: {len(questions)} candidate(s)")
        return questions

    def _parse_block(self, block: str) -> Optional[CandidateQuestion]:
        match = self.pattern.match(block)
        if not match:
            return None

        stem = clean_fragment(match.group(2))
        options = [clean_fragment(match.group(i)) for i in range(3, 6)]
        options.append(strip_spillover(match.group(6)))

        return CandidateQuestion(
            number=int(match.group(1)),
            text=stem,
            options=options,
            source=self.source,
            confidence=confidence_for(stem, options),
        )


# ─── Pooling ──────────────────────────────────────────────────────────────────


@dataclass
class StrategyPool:
    """Pooled candidates from every strategy, with per-strategy counts."""
    candidates: list[CandidateQuestion] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def run_strategies(
    text: str,
    strategies: Iterable[ExtractionStrategy],
) -> StrategyPool:
    """
    Run every strategy over the same text and pool the results.
    A strategy that raises contributes nothing; the rest still run.
    """
    pool = StrategyPool()

    for strategy in strategies:
        try:
            found = strategy.extract(text)
        except Exception as e:
            logger.warning(f"Strategy '{strategy.name}' failed: {e}")
            pool.errors.append(f"{strategy.name}: {e}")
            found = []

        pool.counts[strategy.name] = pool.counts.get(strategy.name, 0) + len(found)
        pool.candidates.extend(found)

    logger.info(
        "Strategy pool: "
        + ", ".join(f"{name}={count}" for name, count in pool.counts.items())
    )
    return pool
