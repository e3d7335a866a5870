"""
Deduplication & Validation Engine
=================================
Merges the pooled candidates of all strategies and applies the final
structural gate.

    - Dedup: case/whitespace-insensitive text key, plus word-trigram
      similarity for near duplicates; first seen wins unless a later
      duplicate passes the final gate and the survivor does not
    - Validate: stem length, exactly four sane options, no leaked
      artifacts from neighbouring questions
    - Build: assign deterministic ids to survivors

Strategies are permissive; this module is strict. Every rejection is
logged with its reason, never silently ignored.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

from .models import (
    CandidateQuestion,
    Rejection,
    RejectionReason,
    ValidatedQuestion,
)

logger = logging.getLogger(__name__)

# ─── Contamination Patterns ───────────────────────────────────────────────────

LEAKED_QUESTION_NUMBER = re.compile(r"\bQ\d+\.")
ATTEMPT_MARKER = re.compile(
    r"\d+(?:\.\d+)?\s*%\s*Attempted|\bAttempted\s*:?\s*\d+(?:\.\d+)?\s*%",
    re.IGNORECASE,
)
EMBEDDED_DATE = re.compile(
    r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b|\b\d{1,2}:\d{2}\s*[AP]M\b",
    re.IGNORECASE,
)

WORD_PATTERN = re.compile(r"\w+")


def dedup_key(text: str) -> str:
    """Lowercased, whitespace-collapsed question text."""
    return " ".join(text.lower().split())


def trigrams(text: str) -> set[tuple[str, ...]]:
    words = WORD_PATTERN.findall(text.lower())
    if len(words) < 3:
        return {tuple(words)} if words else set()
    return {tuple(words[i:i + 3]) for i in range(len(words) - 2)}


def similarity(a: set, b: set) -> float:
    """Jaccard similarity of two n-gram sets."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


# ─── Deduplication ────────────────────────────────────────────────────────────


@dataclass
class DedupResult:
    candidates: list[CandidateQuestion] = field(default_factory=list)
    duplicates_removed: int = 0


def _merge_into(kept: CandidateQuestion, duplicate: CandidateQuestion):
    """Fill fields the first-seen candidate lacks from a later duplicate."""
    if kept.number is None and duplicate.number is not None:
        kept.number = duplicate.number
    if len(duplicate.options) > len(kept.options):
        kept.options = list(duplicate.options)
    kept.confidence = max(kept.confidence, duplicate.confidence)


def _sort_key(item: tuple[int, CandidateQuestion]):
    index, candidate = item
    if candidate.number is None:
        return (1, 0, index)
    return (0, candidate.number, index)


def deduplicate(
    candidates: list[CandidateQuestion],
    similarity_threshold: Optional[float] = 0.9,
    sort: bool = True,
    is_valid: Optional[Callable[[CandidateQuestion], bool]] = None,
) -> DedupResult:
    """
    Remove duplicate candidates.

    Args:
        candidates: Pooled candidates, in strategy order.
        similarity_threshold: Word-trigram Jaccard similarity at or above
            which two texts are the same question. None disables the
            near-duplicate check.
        sort: Re-sort survivors by ascending question number
            (unnumbered last, stable otherwise).
        is_valid: Final-gate check. A later duplicate that passes it
            replaces a survivor that fails it.

    Returns:
        DedupResult with survivors and the number removed.
    """
    kept: list[CandidateQuestion] = []
    keys: dict[str, int] = {}
    grams: list[set] = []
    removed = 0

    for candidate in candidates:
        key = dedup_key(candidate.text)
        slot = keys.get(key)

        if slot is None and similarity_threshold is not None:
            candidate_grams = trigrams(candidate.text)
            for index, existing_grams in enumerate(grams):
                if similarity(candidate_grams, existing_grams) >= similarity_threshold:
                    slot = index
                    break

        if slot is not None:
            removed += 1
            survivor = kept[slot]
            if is_valid is not None and not is_valid(survivor) and is_valid(candidate):
                logger.debug(
                    f"{candidate.source.value} candidate Q{candidate.number} "
                    f"replaces invalid {survivor.source.value} duplicate"
                )
                if candidate.number is None:
                    candidate.number = survivor.number
                kept[slot] = candidate
                keys[key] = slot
                grams[slot] = trigrams(candidate.text)
            else:
                _merge_into(survivor, candidate)
            continue

        keys[key] = len(kept)
        kept.append(candidate)
        grams.append(trigrams(candidate.text))

    if sort:
        kept = [c for _, c in sorted(enumerate(kept), key=_sort_key)]

    if removed:
        logger.info(f"Removed {removed} duplicate candidate(s)")

    return DedupResult(candidates=kept, duplicates_removed=removed)


# ─── Validation ───────────────────────────────────────────────────────────────


class ValidationEngine:
    """
    Final structural gate for candidate questions.
    One contract for every strategy: 10–300 char stems, exactly four
    options of at most 100 chars, no leaked artifacts.
    """

    def __init__(
        self,
        min_stem_length: int = 10,
        max_stem_length: int = 300,
        max_option_length: int = 100,
    ):
        self.min_stem_length = min_stem_length
        self.max_stem_length = max_stem_length
        self.max_option_length = max_option_length

    def validate_candidate(
        self, candidate: CandidateQuestion
    ) -> Optional[RejectionReason]:
        """
        Check one candidate.

        Returns:
            The first failing rule, or None when the candidate passes.
        """
        stem = candidate.text.strip()

        if len(stem) < self.min_stem_length:
            return RejectionReason.STEM_TOO_SHORT
        if len(stem) > self.max_stem_length:
            return RejectionReason.STEM_TOO_LONG

        if len(candidate.options) != 4:
            return RejectionReason.WRONG_OPTION_COUNT
        for option in candidate.options:
            if not option.strip():
                return RejectionReason.EMPTY_OPTION
            if len(option.strip()) > self.max_option_length:
                return RejectionReason.OPTION_TOO_LONG

        if LEAKED_QUESTION_NUMBER.search(stem) or any(
            LEAKED_QUESTION_NUMBER.search(opt) for opt in candidate.options
        ):
            return RejectionReason.LEAKED_QUESTION_NUMBER
        if ATTEMPT_MARKER.search(stem):
            return RejectionReason.ATTEMPT_MARKER
        if EMBEDDED_DATE.search(stem):
            return RejectionReason.EMBEDDED_DATE

        return None

    def accepts(self, candidate: CandidateQuestion) -> bool:
        return self.validate_candidate(candidate) is None

    def filter(
        self, candidates: list[CandidateQuestion]
    ) -> tuple[list[CandidateQuestion], list[Rejection]]:
        """
        Split candidates into passing ones and rejections.
        Order of the passing candidates is preserved.
        """
        passed: list[CandidateQuestion] = []
        rejections: list[Rejection] = []

        for candidate in candidates:
            reason = self.validate_candidate(candidate)
            if reason is None:
                passed.append(candidate)
                continue

            logger.debug(
                f"Rejected {candidate.source.value} candidate "
                f"Q{candidate.number}: {reason.value}"
            )
            rejections.append(Rejection(
                reason=reason,
                source=candidate.source,
                question_number=candidate.number,
                excerpt=candidate.text[:80],
            ))

        if rejections:
            breakdown = Counter(r.reason.value for r in rejections)
            logger.info(
                f"Validation: {len(passed)} passed, {len(rejections)} rejected "
                f"({', '.join(f'{k}={v}' for k, v in sorted(breakdown.items()))})"
            )

        return passed, rejections


# ─── Building ─────────────────────────────────────────────────────────────────


def build_questions(
    candidates: list[CandidateQuestion],
    set_number: Optional[int] = None,
    taken_ids: Optional[set[str]] = None,
) -> list[ValidatedQuestion]:
    """
    Turn validated candidates into ValidatedQuestions with deterministic ids.

    Ids are `general_q_N` (or `set_S_q_N` inside a practice set), with a
    numeric suffix on collision and `_uK` for unnumbered questions.
    """
    taken = taken_ids if taken_ids is not None else set()
    prefix = f"set_{set_number}_q" if set_number is not None else "general_q"
    questions: list[ValidatedQuestion] = []

    for index, candidate in enumerate(candidates, start=1):
        base = (
            f"{prefix}_{candidate.number}"
            if candidate.number is not None
            else f"{prefix}_u{index}"
        )
        question_id = base
        suffix = 2
        while question_id in taken:
            question_id = f"{base}_{suffix}"
            suffix += 1
        taken.add(question_id)

        questions.append(ValidatedQuestion(
            id=question_id,
            question_number=candidate.number,
            text=candidate.text.strip(),
            options=[opt.strip() for opt in candidate.options],
            extraction_source=candidate.source,
            extraction_confidence=candidate.confidence,
            set_number=set_number,
        ))

    return questions


def summarize_rejections(rejections: list[Rejection]) -> dict[str, int]:
    return dict(sorted(Counter(r.reason.value for r in rejections).items()))
