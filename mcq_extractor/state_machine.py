"""
Line-Scan State Machine
=======================
Deterministic line-by-line scanner over normalized text. The scanner is
either Idle or BuildingQuestion; every line is one transition.

    Idle ──Q-anchor──▶ BuildingQuestion ──Q-anchor──▶ BuildingQuestion
                           │  ▲                          (previous one
                           ▼  │ option / stem line        emitted if it
                        (stays building)                  has 4 options)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from .models import CandidateQuestion, ExtractionSource
from .options import clean_fragment
from .strategies import ExtractionStrategy, confidence_for

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# "Q12. Which of the following ..."
QUESTION_PATTERN = re.compile(r"^Q(\d+)\.\s*(.*)")

# "B) Paris"
OPTION_PATTERN = re.compile(r"^([A-D])\)\s*(.+)")

OPTION_SEQUENCE = ("A", "B", "C", "D")
DEFAULT_STEM_CAP = 300


# ─── States ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Idle:
    """No question open; lines are skipped until a question anchor."""


@dataclass
class BuildingQuestion:
    """A question is open and collecting stem text and options."""
    number: int
    stem: str
    options: list[str] = field(default_factory=list)

    @property
    def next_letter(self) -> Optional[str]:
        if len(self.options) >= len(OPTION_SEQUENCE):
            return None
        return OPTION_SEQUENCE[len(self.options)]

    @property
    def is_complete(self) -> bool:
        return len(self.options) == len(OPTION_SEQUENCE)


ParserState = Union[Idle, BuildingQuestion]


def close_question(state: ParserState) -> Optional[CandidateQuestion]:
    """Emit the open question if it collected exactly four options."""
    if not isinstance(state, BuildingQuestion):
        return None

    if not state.is_complete:
        logger.debug(
            f"Dropping Q{state.number}: {len(state.options)} option(s) collected"
        )
        return None

    stem = clean_fragment(state.stem)
    options = [clean_fragment(opt) for opt in state.options]
    return CandidateQuestion(
        number=state.number,
        text=stem,
        options=options,
        source=ExtractionSource.LINE,
        confidence=confidence_for(stem, options),
    )


def step(
    state: ParserState,
    line: str,
    stem_cap: int = DEFAULT_STEM_CAP,
) -> tuple[ParserState, Optional[CandidateQuestion]]:
    """
    Apply one line to the scanner.

    Returns:
        (next_state, emitted) where emitted is the question closed by this
        line, if any.
    """
    line = line.strip()
    if not line:
        return state, None

    q_match = QUESTION_PATTERN.match(line)
    if q_match:
        emitted = close_question(state)
        return BuildingQuestion(
            number=int(q_match.group(1)),
            stem=q_match.group(2).strip(),
        ), emitted

    if isinstance(state, Idle):
        return state, None

    opt_match = OPTION_PATTERN.match(line)
    if opt_match:
        letter = opt_match.group(1)
        if letter == state.next_letter:
            state.options.append(opt_match.group(2).strip())
        else:
            logger.debug(
                f"Q{state.number}: ignoring out-of-sequence option {letter}) "
                f"(expected {state.next_letter})"
            )
        return state, None

    # Multi-line stems: continuation only before the first option
    if not state.options and len(state.stem) < stem_cap:
        state.stem = f"{state.stem} {line}" if state.stem else line

    return state, None


class LineScanParser(ExtractionStrategy):
    """
    Runs the line-scan state machine over a whole text and collects
    every complete question.
    """

    source = ExtractionSource.LINE

    def __init__(self, stem_cap: int = DEFAULT_STEM_CAP):
        self.stem_cap = stem_cap

    def extract(self, text: str) -> list[CandidateQuestion]:
        state: ParserState = Idle()
        questions: list[CandidateQuestion] = []

        for line in text.split("\n"):
            state, emitted = step(state, line, self.stem_cap)
            if emitted:
                questions.append(emitted)

        # End of input closes the last open question
        emitted = close_question(state)
        if emitted:
            questions.append(emitted)

        logger.debug(f"Line scan: {len(questions)} candidate(s)")
        return questions
