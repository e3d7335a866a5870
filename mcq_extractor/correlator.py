"""
Answer-Key Correlator
=====================
Assigns a correct answer to each validated question from independent
detectors:

    - Pattern: answer-key sections, per-question "N. a" entries and
               "Answer: B" lines below a question
    - Visual:  highlighted option boxes in the page raster
    - Bold:    **a) text** / <b>a) text</b> emphasis, or one option set in a
               bold font
    - Manual:  user-supplied answers, always final

Every question starts without an answer. The strictly most confident
detection wins (ties keep the order above); questions nothing matched are
reported for review.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .models import (
    AnswerKeyEntry,
    CorrelationReport,
    DetectionMethod,
    ManualAnswer,
    PageRaster,
    PageText,
    TextItem,
    ValidatedQuestion,
)
from .raster import Box, PixelRasterSampler, RasterDecodeError, RasterSampler

logger = logging.getLogger(__name__)

MANUAL_CONFIDENCE = 1.0
BOLD_CONFIDENCE = 0.7
VISUAL_CONFIDENCE_CAP = 0.9
DEFAULT_HIGHLIGHT_THRESHOLD = 0.3

# ─── Answer Patterns ──────────────────────────────────────────────────────────

# An answer letter must be followed by a separator, another entry or
# end of line; otherwise "1. A train leaves..." would read as an answer.
_ENTRY_END = r"(?=\s*(?:[,;|]|$|(?:Q\.?\s*)?\d{1,3}\s*[.):\-]))"
_ENTRY_START = r"(?<![\w.])(?:Q\.?\s*)?(\d{1,3})"
_SECTION_PAIRS = r"((?:\d{1,3}\s*[.)\-:]\s*[a-d]\b\s*[,;]?\s*)+)"

SECTION_PAIR = re.compile(r"(\d{1,3})\s*[.)\-:]\s*([a-d])\b", re.IGNORECASE)


@dataclass(frozen=True)
class AnswerPattern:
    name: str
    pattern: re.Pattern
    confidence: float
    is_section: bool = False


# Tried in descending confidence; the first pattern with an entry for a
# question number decides that number.
ANSWER_PATTERNS = [
    AnswerPattern(
        "answer_key_section",
        re.compile(
            r"(?:answer\s*key|answers?)\s*:?\s*" + _SECTION_PAIRS, re.IGNORECASE
        ),
        0.95,
        is_section=True,
    ),
    AnswerPattern(
        "solution_section",
        re.compile(
            r"(?:solutions?|correct\s*answers?)\s*:?\s*" + _SECTION_PAIRS,
            re.IGNORECASE,
        ),
        0.9,
        is_section=True,
    ),
    AnswerPattern(
        "numbered_answers",
        re.compile(
            _ENTRY_START + r"\s*\.\s*([a-d])\b" + _ENTRY_END,
            re.IGNORECASE | re.MULTILINE,
        ),
        0.9,
    ),
    AnswerPattern(
        "bracket_answers",
        re.compile(
            _ENTRY_START + r"\s*\)\s*([a-d])\b" + _ENTRY_END,
            re.IGNORECASE | re.MULTILINE,
        ),
        0.85,
    ),
    AnswerPattern(
        "colon_answers",
        re.compile(
            _ENTRY_START + r"\s*:\s*([a-d])\b" + _ENTRY_END,
            re.IGNORECASE | re.MULTILINE,
        ),
        0.8,
    ),
    AnswerPattern(
        "dash_answers",
        re.compile(
            _ENTRY_START + r"\s*-\s*([a-d])\b" + _ENTRY_END,
            re.IGNORECASE | re.MULTILINE,
        ),
        0.8,
    ),
]


# "Answer: B" / "Ans - c" / "Correct Option: D" / "Solution: (b)" below a
# question. The letter must close the line, carry its ")" marker, or lead
# into an explanation.
ANSWER_LINE = re.compile(
    r"(?<!\w)(?:(?:correct|right)\s+(?:answer|option)|answer|ans|solution)"
    r"\s*[:\-.]?\s*\(?([a-d])"
    r"(?:\)|(?=\s*(?:$|[.,;]|(?:explanation|solution|justification)\b)))",
    re.IGNORECASE,
)
ANSWER_LINE_CONFIDENCE = 0.85


@dataclass(frozen=True)
class KeyHit:
    """One answer-key reading for a question number."""
    letter: str
    confidence: float
    pattern: str
    matched: str


def _pattern_pairs(answer_pattern: AnswerPattern, text: str) -> Iterable[tuple[int, str, str]]:
    for match in answer_pattern.pattern.finditer(text):
        if answer_pattern.is_section:
            for pair in SECTION_PAIR.finditer(match.group(1)):
                yield int(pair.group(1)), pair.group(2).lower(), pair.group(0)
        else:
            yield int(match.group(1)), match.group(2).lower(), match.group(0).strip()


def scan_answer_key(text: str) -> dict[int, KeyHit]:
    """
    Read every answer-key entry in a text.

    Returns:
        Question number → best hit. The highest-confidence pattern that
        mentions a number decides it; within a pattern the first entry wins.
    """
    hits: dict[int, KeyHit] = {}
    for answer_pattern in ANSWER_PATTERNS:
        for number, letter, matched in _pattern_pairs(answer_pattern, text):
            if number in hits:
                continue
            hits[number] = KeyHit(
                letter=letter,
                confidence=answer_pattern.confidence,
                pattern=answer_pattern.name,
                matched=matched,
            )
    if hits:
        logger.debug(f"Answer key: {len(hits)} numbered entr(ies) found")
    return hits


# ─── Bold Detection ───────────────────────────────────────────────────────────

BOLD_PATTERNS = [
    re.compile(r"\*\*\s*\(?([a-d])\)\s*[^*]+?\*\*", re.IGNORECASE),
    re.compile(r"(?<![\w(])\(?([a-d])\)\s*\*\*[^*]+?\*\*", re.IGNORECASE),
    re.compile(r"<b>\s*\(?([a-d])\)\s*[^<]+?</b>", re.IGNORECASE),
    re.compile(r"(?<![\w(])\(?([a-d])\)\s*<b>[^<]+?</b>", re.IGNORECASE),
]

NEXT_QUESTION_ANCHOR = re.compile(r"(?:^|\s)Q?\d{1,3}[.)]\s")
BOLD_WINDOW = 800
ANCHOR_LOOKBEHIND = 16


def _fold(text: str) -> str:
    return " ".join(text.lower().split())


def _numbered_before(flat_text: str, start: int, number: int) -> bool:
    """Whether the question's own number anchor ends right at `start`."""
    anchor = re.compile(
        r"(?<![\w.])(?:Q(?:uestion)?\s*\.?\s*)?%d\s*[.):]\s*$" % number,
        re.IGNORECASE,
    )
    return anchor.search(flat_text, max(0, start - ANCHOR_LOOKBEHIND), start) is not None


def locate_stem(flat_text: str, question: ValidatedQuestion) -> Optional[int]:
    """
    Offset of the question's full stem in the text.

    A numbered question takes the occurrence right after its own `Q{n}.`
    anchor. Without one, the stem must occur exactly once.
    """
    stem = " ".join(question.text.split())
    if not stem:
        return None

    starts = [m.start() for m in re.finditer(re.escape(stem), flat_text, re.IGNORECASE)]
    if question.question_number is not None:
        for start in starts:
            if _numbered_before(flat_text, start, question.question_number):
                return start
    return starts[0] if len(starts) == 1 else None


def question_window(flat_text: str, question: ValidatedQuestion) -> Optional[str]:
    """
    Text from the question's stem to the next question anchor.

    Args:
        flat_text: Whitespace-collapsed document text.
        question: Question to locate by its number and full stem.
    """
    start = locate_stem(flat_text, question)
    if start is None:
        return None

    body_start = start + len(" ".join(question.text.split()))
    end = min(len(flat_text), body_start + BOLD_WINDOW)
    next_anchor = NEXT_QUESTION_ANCHOR.search(flat_text, body_start, end)
    if next_anchor:
        end = next_anchor.start()
    return flat_text[start:end]


# ─── Visual Detection ─────────────────────────────────────────────────────────

SEARCH_MARGIN_X = 50
SEARCH_MARGIN_Y = 100


# "Q3." / "Question 3:" / "3)" opening a text item
ITEM_NUMBER_ANCHOR = re.compile(r"^(?:q(?:uestion)?\s*\.?\s*:?\s*)?(\d{1,3})\s*[.):]\s*")


def find_question_item(question: ValidatedQuestion, items: Iterable[TextItem]) -> Optional[TextItem]:
    """
    Text item that opens the question.

    Either the item carries the question's number followed by the stem (or
    the stem's first wrapped line), or it is the only item holding the
    whole stem.
    """
    stem = _fold(question.text)
    if not stem:
        return None

    whole_stem: list[TextItem] = []
    for item in items:
        text = _fold(item.text)
        anchor = ITEM_NUMBER_ANCHOR.match(text)
        if anchor and question.question_number == int(anchor.group(1)):
            body = text[anchor.end():]
            if body and (stem.startswith(body) or body.startswith(stem)):
                return item
        if stem in text:
            whole_stem.append(item)
    return whole_stem[0] if len(whole_stem) == 1 else None


def _in_search_area(item: TextItem, anchor: TextItem) -> bool:
    return (
        anchor.x - SEARCH_MARGIN_X <= item.x <= anchor.x + anchor.width + SEARCH_MARGIN_X
        and anchor.y - SEARCH_MARGIN_Y <= item.y <= anchor.y + SEARCH_MARGIN_Y
    )


def find_option_items(
    labels: list[str], items: list[TextItem], anchor: TextItem
) -> dict[str, TextItem]:
    """Label → first text item near the anchor carrying that option marker."""
    found: dict[str, TextItem] = {}
    for label in labels:
        marker = re.compile(r"(?<![A-Za-z])\(?%s\)" % label, re.IGNORECASE)
        for item in items:
            if marker.search(item.text) and _in_search_area(item, anchor):
                found[label] = item
                break
    return found


# ─── Correlator ───────────────────────────────────────────────────────────────

SamplerFactory = Callable[[PageRaster], RasterSampler]


class AnswerKeyCorrelator:
    """
    Correlates validated questions with answer evidence.

    Usage:
        correlator = AnswerKeyCorrelator()
        report = correlator.correlate(questions, text, pages, rasters)
    """

    def __init__(
        self,
        enable_visual: bool = True,
        highlight_threshold: float = DEFAULT_HIGHLIGHT_THRESHOLD,
        sampler_factory: SamplerFactory = PixelRasterSampler,
    ):
        self.enable_visual = enable_visual
        self.highlight_threshold = highlight_threshold
        self.sampler_factory = sampler_factory

    # ── Detectors ───────────────────────────────────────────────────────

    def detect_pattern(
        self,
        question: ValidatedQuestion,
        key: dict[int, KeyHit],
        flat_text: str = "",
    ) -> Optional[AnswerKeyEntry]:
        """
        Answer-key entry for the question's number, or an answer line
        inside the question's own window; the more confident one wins.
        """
        best: Optional[AnswerKeyEntry] = None

        hit = key.get(question.question_number) if question.question_number is not None else None
        if hit is not None and hit.letter in question.option_labels:
            best = self._pattern_entry(
                question, hit.letter, hit.confidence, f"{hit.pattern}: {hit.matched}"
            )

        window = question_window(flat_text, question) if flat_text else None
        if window and (best is None or best.confidence < ANSWER_LINE_CONFIDENCE):
            match = ANSWER_LINE.search(window)
            if match and match.group(1).lower() in question.option_labels:
                best = self._pattern_entry(
                    question,
                    match.group(1).lower(),
                    ANSWER_LINE_CONFIDENCE,
                    f"answer_line: {match.group(0).strip()}",
                )
        return best

    def _pattern_entry(
        self, question: ValidatedQuestion, letter: str, confidence: float, source: str
    ) -> AnswerKeyEntry:
        return AnswerKeyEntry(
            question_number=question.question_number,
            question_id=question.id,
            answer_letter=letter,
            confidence=confidence,
            method=DetectionMethod.PATTERN,
            source=source,
        )

    def detect_bold(
        self,
        question: ValidatedQuestion,
        flat_text: str,
        pages: Optional[list[PageText]] = None,
    ) -> Optional[AnswerKeyEntry]:
        window = question_window(flat_text, question)
        if window:
            for pattern in BOLD_PATTERNS:
                match = pattern.search(window)
                if match and match.group(1).lower() in question.option_labels:
                    return self._bold_entry(question, match.group(1).lower(), match.group(0))

        # Layout fallback: exactly one option fragment set in a bold font
        for page in pages or []:
            anchor = find_question_item(question, page.items)
            if anchor is None:
                continue
            option_items = find_option_items(
                question.option_labels, list(page.items), anchor
            )
            bold = [label for label, item in option_items.items() if item.bold]
            if len(bold) == 1:
                return self._bold_entry(
                    question, bold[0], f"page {page.page_number} bold font"
                )
            return None
        return None

    def _bold_entry(
        self, question: ValidatedQuestion, letter: str, source: str
    ) -> AnswerKeyEntry:
        return AnswerKeyEntry(
            question_number=question.question_number,
            question_id=question.id,
            answer_letter=letter,
            confidence=BOLD_CONFIDENCE,
            method=DetectionMethod.BOLD,
            source=source,
        )

    def detect_visual(
        self,
        question: ValidatedQuestion,
        pages: list[PageText],
        samplers: dict[int, RasterSampler],
    ) -> Optional[AnswerKeyEntry]:
        for page in pages:
            sampler = samplers.get(page.page_number)
            if sampler is None:
                continue

            anchor = find_question_item(question, page.items)
            if anchor is None:
                continue

            best_label, best_ratio, best_color = None, 0.0, None
            option_items = find_option_items(
                question.option_labels, list(page.items), anchor
            )
            for label, item in option_items.items():
                histogram = sampler.sample(
                    Box(item.x, item.y, item.width, item.height)
                )
                if histogram.ratio > best_ratio:
                    best_label, best_ratio = label, histogram.ratio
                    best_color = histogram.dominant_color

            if best_label is None or best_ratio < self.highlight_threshold:
                return None

            return AnswerKeyEntry(
                question_number=question.question_number,
                question_id=question.id,
                answer_letter=best_label,
                confidence=round(min(VISUAL_CONFIDENCE_CAP, best_ratio * 2), 4),
                method=DetectionMethod.VISUAL,
                source=f"page {page.page_number} {best_color} highlight",
            )
        return None

    # ── Orchestration ───────────────────────────────────────────────────

    def _build_samplers(
        self,
        rasters: Optional[dict[int, PageRaster]],
        report: CorrelationReport,
    ) -> dict[int, RasterSampler]:
        samplers: dict[int, RasterSampler] = {}
        if not self.enable_visual or not rasters:
            return samplers
        for page_number, raster in sorted(rasters.items()):
            try:
                samplers[page_number] = self.sampler_factory(raster)
            except RasterDecodeError as e:
                logger.warning(f"Skipping visual detection on page {page_number}: {e}")
                report.errors.append(str(e))
        return samplers

    def detect(
        self,
        question: ValidatedQuestion,
        key: dict[int, KeyHit],
        flat_text: str,
        pages: Optional[list[PageText]] = None,
        samplers: Optional[dict[int, RasterSampler]] = None,
    ) -> Optional[AnswerKeyEntry]:
        """Best detection for one question, or None."""
        detections = [self.detect_pattern(question, key, flat_text)]
        if pages and samplers:
            detections.append(self.detect_visual(question, pages, samplers))
        detections.append(self.detect_bold(question, flat_text, pages))

        best: Optional[AnswerKeyEntry] = None
        for detection in detections:
            if detection and (best is None or detection.confidence > best.confidence):
                best = detection
        return best

    def correlate(
        self,
        questions: list[ValidatedQuestion],
        text: str,
        pages: Optional[list[PageText]] = None,
        rasters: Optional[dict[int, PageRaster]] = None,
        manual_answers: Optional[Iterable[ManualAnswer]] = None,
    ) -> CorrelationReport:
        """
        Detect and assign answers.

        Args:
            questions: Validated questions; annotated in place.
            text: Text to read answer keys and bold markup from.
            pages: Pages with positioned items, for visual and bold-font
                detection.
            rasters: Page number → rendered raster, for visual detection.
            manual_answers: Overrides keyed by question id.

        Returns:
            CorrelationReport over the given questions.
        """
        report = CorrelationReport(total_questions=len(questions))
        key = scan_answer_key(text)
        flat_text = " ".join(text.split())
        samplers = self._build_samplers(rasters, report) if pages else {}

        for question in questions:
            entry = self.detect(question, key, flat_text, pages, samplers)
            if entry:
                annotate(question, entry)
                report.entries.append(entry)

        self.apply_manual_answers(questions, manual_answers or [], report)

        logger.info(
            f"Answers detected for {report.answers_detected}/"
            f"{report.total_questions} question(s)"
            + (f"; {len(report.needs_review)} need review" if report.needs_review else "")
        )
        return report

    def apply_manual_answers(
        self,
        questions: list[ValidatedQuestion],
        manual_answers: Iterable[ManualAnswer],
        report: CorrelationReport,
    ) -> CorrelationReport:
        """
        Apply user overrides on top of detected answers and refresh the
        report's summary fields. Invalid overrides are recorded as errors.
        """
        by_id = {q.id: q for q in questions}

        for manual in manual_answers:
            question = by_id.get(manual.question_id)
            if question is None:
                report.errors.append(
                    f"Manual answer for unknown question '{manual.question_id}'"
                )
                continue

            letter = manual.letter()
            if letter is None or letter not in question.option_labels:
                report.errors.append(
                    f"Manual answer '{manual.answer}' is not a valid option "
                    f"for '{manual.question_id}'"
                )
                continue

            entry = AnswerKeyEntry(
                question_number=question.question_number,
                question_id=question.id,
                answer_letter=letter,
                confidence=MANUAL_CONFIDENCE,
                method=DetectionMethod.MANUAL,
                source="manual",
            )
            annotate(question, entry)
            report.entries = [
                e for e in report.entries if e.question_id != question.id
            ] + [entry]

        summarize(questions, report)
        return report


def annotate(question: ValidatedQuestion, entry: AnswerKeyEntry):
    question.correct_answer = entry.answer_index
    question.detection_confidence = entry.confidence
    question.detection_method = entry.method


def summarize(questions: list[ValidatedQuestion], report: CorrelationReport):
    """Recompute report totals from the questions' current answers."""
    order = {q.id: i for i, q in enumerate(questions)}
    report.entries = sorted(
        (e for e in report.entries if e.question_id in order),
        key=lambda e: order[e.question_id],
    )
    report.total_questions = len(questions)
    report.answers_detected = sum(1 for q in questions if q.correct_answer is not None)
    report.needs_review = [q.id for q in questions if q.correct_answer is None]
    report.method_breakdown = dict(
        sorted(Counter(e.method.value for e in report.entries).items())
    )
