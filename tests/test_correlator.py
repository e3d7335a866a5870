"""
Test Suite for Answer Correlation
=================================
Unit tests for answer-key scanning, bold and visual detection, manual
overrides and raster sampling.
"""

from __future__ import annotations

import pytest

from mcq_extractor.correlator import (
    AnswerKeyCorrelator,
    find_option_items,
    find_question_item,
    question_window,
    scan_answer_key,
)
from mcq_extractor.models import (
    DetectionMethod,
    ExtractionSource,
    ManualAnswer,
    PageRaster,
    PageText,
    TextItem,
    ValidatedQuestion,
)
from mcq_extractor.raster import (
    Box,
    ColorHistogram,
    PixelRasterSampler,
    RasterDecodeError,
    RasterSampler,
    match_highlight,
)


def _question(number: int, text: str, options=None, question_id=None) -> ValidatedQuestion:
    return ValidatedQuestion(
        id=question_id or f"general_q_{number}",
        question_number=number,
        text=text,
        options=options or ["Oxygen", "Carbon dioxide", "Nitrogen", "Helium"],
        extraction_source=ExtractionSource.LINE,
    )


GAS_STEM = "Which gas do plants absorb from the air?"

GAS_TEXT = (
    f"Q1. {GAS_STEM}\n"
    "A) Oxygen\nB) Carbon dioxide\nC) Nitrogen\nD) Helium\n"
)


def _gas_page(bold_label: str = "") -> PageText:
    """Page layout with the stem at y=100 and options every 20 units below."""
    items = [TextItem(text=f"Q1. {GAS_STEM}", x=50, y=100, width=300, height=12)]
    for i, (label, option) in enumerate(
        zip("ABCD", ["Oxygen", "Carbon dioxide", "Nitrogen", "Helium"])
    ):
        items.append(TextItem(
            text=f"{label}) {option}",
            x=60,
            y=120 + 20 * i,
            width=140,
            height=12,
            bold=label == bold_label,
        ))
    return PageText(page_number=1, text=GAS_TEXT, items=tuple(items))


class StubSampler(RasterSampler):
    """Reports `hits` highlighted pixels out of 100 for the box at one y."""

    def __init__(self, highlighted_y: float, hits: int = 80):
        self.highlighted_y = highlighted_y
        self.hits = hits

    def sample(self, box):
        if box.y == self.highlighted_y:
            return ColorHistogram(counts={"yellow": self.hits}, total=100)
        return ColorHistogram(counts={}, total=100)


BIRD_STEM = "Which of the following is a bird?"
FISH_STEM = "Which of the following is a fish?"

WHICH_TEXT = (
    f"Q1. {BIRD_STEM}\n"
    "A) Shark\nB) **Eagle**\nC) Whale\nD) Frog\n"
    f"Q2. {FISH_STEM}\n"
    "A) Salmon\nB) Bat\nC) Cat\nD) Dog\n"
)


def _which_questions() -> list[ValidatedQuestion]:
    return [
        _question(1, BIRD_STEM, ["Shark", "Eagle", "Whale", "Frog"]),
        _question(2, FISH_STEM, ["Salmon", "Bat", "Cat", "Dog"]),
    ]


def _which_page() -> PageText:
    """Two questions sharing a stem prefix, stems at y=100 and y=300."""
    items = []
    for number, top, stem in ((1, 100, BIRD_STEM), (2, 300, FISH_STEM)):
        items.append(TextItem(text=f"Q{number}. {stem}", x=50, y=top, width=300, height=12))
        for i, label in enumerate("ABCD"):
            items.append(TextItem(
                text=f"{label}) option {i}", x=60, y=top + 20 + 20 * i, width=140, height=12
            ))
    return PageText(page_number=1, text=WHICH_TEXT, items=tuple(items))


def _solid_raster(width: int, height: int, rgba: tuple, scale: float = 1.0) -> PageRaster:
    return PageRaster(
        page_number=1,
        width=width,
        height=height,
        pixels=bytes(rgba) * (width * height),
        scale=scale,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ANSWER KEY SCANNING TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnswerKeyScanning:
    """Test pattern-based answer key reading."""

    def test_answer_key_section(self):
        hits = scan_answer_key("Answer Key: 1.b, 2.a")
        assert {n: h.letter for n, h in hits.items()} == {1: "b", 2: "a"}
        assert hits[1].confidence == 0.95
        assert hits[1].pattern == "answer_key_section"

    def test_solution_section(self):
        hits = scan_answer_key("Solutions: 1-c 2-d")
        assert {n: h.letter for n, h in hits.items()} == {1: "c", 2: "d"}
        assert hits[2].pattern == "solution_section"
        assert hits[2].confidence == 0.9

    def test_per_entry_forms(self):
        hits = scan_answer_key("1. b\n2) c\n3: d\n4 - a")
        assert {n: (h.letter, h.confidence) for n, h in hits.items()} == {
            1: ("b", 0.9),
            2: ("c", 0.85),
            3: ("d", 0.8),
            4: ("a", 0.8),
        }

    def test_uppercase_letters(self):
        hits = scan_answer_key("Answer Key: 1.B 2.C")
        assert {n: h.letter for n, h in hits.items()} == {1: "b", 2: "c"}

    def test_question_stem_not_an_answer(self):
        assert scan_answer_key("1. A train leaves the station at noon") == {}

    def test_higher_confidence_pattern_wins(self):
        hits = scan_answer_key("1. c\nAnswer Key: 1.b")
        assert hits[1].letter == "b"
        assert hits[1].confidence == 0.95

    def test_no_key(self):
        assert scan_answer_key(GAS_TEXT) == {}


# ═══════════════════════════════════════════════════════════════════════════════
# LOCATION HELPER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLocationHelpers:
    """Test locating a question in flat text and page layout."""

    def test_question_window_stops_at_next_question(self):
        flat = f"Q1. {GAS_STEM} A) x B) y C) z D) w Q2. Another question here? A) 1"
        window = question_window(flat, _question(1, GAS_STEM))
        assert window.startswith(GAS_STEM)
        assert "Another question" not in window

    def test_question_window_missing_stem(self):
        assert question_window("unrelated text", _question(1, GAS_STEM)) is None

    def test_question_window_shared_stem_prefix(self):
        flat = " ".join(WHICH_TEXT.split())
        window = question_window(flat, _which_questions()[1])
        assert window.startswith(FISH_STEM)
        assert "Eagle" not in window

    def test_question_window_repeated_stem_uses_own_number(self):
        flat = f"Q1. {GAS_STEM} A) **x** B) y Q2. {GAS_STEM} A) p B) q"
        window = question_window(flat, _question(2, GAS_STEM))
        assert window.endswith("A) p B) q")

    def test_question_window_ambiguous_unnumbered_stem(self):
        question = _question(1, GAS_STEM)
        question.question_number = None
        flat = f"Q1. {GAS_STEM} A) x Q2. {GAS_STEM} A) p"
        assert question_window(flat, question) is None

    def test_find_question_item_by_number(self):
        page = _which_page()
        anchor = find_question_item(_which_questions()[1], page.items)
        assert anchor.y == 300

    def test_find_question_item_wrapped_stem(self):
        first_line = TextItem(text="Q2. Which of the following", x=50, y=300, width=200, height=12)
        other = TextItem(text="Q1. Which of the following", x=50, y=100, width=200, height=12)
        assert find_question_item(_question(2, FISH_STEM), [other, first_line]) is first_line

    def test_find_question_item_prefix_alone_not_enough(self):
        bird = TextItem(text=BIRD_STEM, x=50, y=100, width=300, height=12)
        assert find_question_item(_question(2, FISH_STEM), [bird]) is None

    def test_find_question_and_option_items(self):
        page = _gas_page()
        anchor = find_question_item(_question(1, GAS_STEM), page.items)
        assert anchor is page.items[0]

        found = find_option_items(["a", "b", "c", "d"], list(page.items), anchor)
        assert [found[label].y for label in "abcd"] == [120, 140, 160, 180]

    def test_option_items_outside_search_area_ignored(self):
        anchor = TextItem(text="stem", x=50, y=100, width=100, height=12)
        far = TextItem(text="A) far away", x=60, y=500, width=100, height=12)
        assert find_option_items(["a"], [far], anchor) == {}


# ═══════════════════════════════════════════════════════════════════════════════
# CORRELATOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPatternCorrelation:
    """Test answer assignment from answer keys."""

    def test_scenario_b(self):
        questions = [
            _question(1, "What is the capital of France?", ["Berlin", "Paris", "Rome", "Madrid"]),
            _question(2, "Which planet is the red planet?", ["Mars", "Venus", "Jupiter", "Saturn"]),
        ]
        report = AnswerKeyCorrelator().correlate(questions, "Answer Key: 1.b, 2.a")

        assert questions[0].correct_answer == 1
        assert questions[1].correct_answer == 0
        assert all(q.detection_method == DetectionMethod.PATTERN for q in questions)
        assert questions[0].detection_confidence == 0.95
        assert report.answers_detected == 2
        assert report.detection_rate == 100.0
        assert report.method_breakdown == {"pattern": 2}
        assert report.needs_review == []

    def test_unanswered_question_needs_review(self):
        questions = [_question(1, GAS_STEM), _question(2, "What is the capital of France?")]
        report = AnswerKeyCorrelator().correlate(questions, "Answer Key: 1.b")

        assert questions[1].correct_answer is None
        assert questions[1].needs_review
        assert report.needs_review == ["general_q_2"]
        assert report.detection_rate == 50.0

    def test_unnumbered_question_skipped_by_pattern(self):
        question = _question(1, GAS_STEM)
        question.question_number = None
        AnswerKeyCorrelator().correlate([question], "Answer Key: 1.b")
        assert question.correct_answer is None

    def test_empty_question_list(self):
        report = AnswerKeyCorrelator().correlate([], "Answer Key: 1.b")
        assert report.total_questions == 0
        assert report.detection_rate == 0.0


class TestAnswerLineCorrelation:
    """Test per-question answer lines such as "Answer: B"."""

    def test_answer_lines_below_questions(self):
        text = (
            "Q1. What is the capital of France?\n"
            "A) Berlin\nB) Paris\nC) Rome\nD) Madrid\n"
            "Answer: B\n"
            "Q2. Which planet is closest to the sun?\n"
            "A) Venus\nB) Mars\nC) Mercury\nD) Jupiter\n"
            "Ans: C\n"
        )
        questions = [
            _question(1, "What is the capital of France?", ["Berlin", "Paris", "Rome", "Madrid"]),
            _question(2, "Which planet is closest to the sun?", ["Venus", "Mars", "Mercury", "Jupiter"]),
        ]
        report = AnswerKeyCorrelator().correlate(questions, text)

        assert [q.correct_answer for q in questions] == [1, 2]
        assert all(q.detection_method == DetectionMethod.PATTERN for q in questions)
        assert all(q.detection_confidence == 0.85 for q in questions)
        assert report.entries[0].source == "answer_line: Answer: B"

    @pytest.mark.parametrize("line, expected", [
        ("Answer: B", 1),
        ("Ans - c", 2),
        ("Correct Option: (d)", 3),
        ("Correct Answer: A", 0),
        ("Solution: b. Explanation: plants take in CO2", 1),
        ("Answer: B) Carbon dioxide", 1),
    ])
    def test_answer_line_forms(self, line, expected):
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], GAS_TEXT + line + "\n")
        assert question.correct_answer == expected

    def test_prose_after_answer_word_ignored(self):
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate(
            [question], GAS_TEXT + "Answer: a gas that plants need\n"
        )
        assert question.correct_answer is None

    def test_answer_line_of_next_question_ignored(self):
        text = GAS_TEXT + (
            "Q2. Which metal is liquid at room temperature?\n"
            "A) Iron\nB) Mercury\nC) Lead\nD) Tin\nAnswer: B\n"
        )
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], text)
        assert question.correct_answer is None

    def test_answer_key_beats_answer_line(self):
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate(
            [question], GAS_TEXT + "Answer: B\nAnswer Key: 1.c"
        )
        assert question.correct_answer == 2
        assert question.detection_confidence == 0.95

    def test_answer_line_for_unnumbered_question(self):
        question = _question(1, GAS_STEM)
        question.question_number = None
        AnswerKeyCorrelator().correlate([question], GAS_TEXT + "Ans: d\n")
        assert question.correct_answer == 3


class TestBoldCorrelation:
    """Test emphasis-based detection."""

    def test_markdown_bold_option(self):
        text = GAS_TEXT.replace("B) Carbon dioxide", "B) **Carbon dioxide**")
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], text)

        assert question.correct_answer == 1
        assert question.detection_method == DetectionMethod.BOLD
        assert question.detection_confidence == 0.7

    def test_html_bold_option(self):
        text = GAS_TEXT.replace("C) Nitrogen", "<b>c) Nitrogen</b>")
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], text)
        assert question.correct_answer == 2

    def test_bold_in_next_question_ignored(self):
        text = GAS_TEXT + "Q2. Which metal is liquid at room temperature?\nA) **Mercury**\n"
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], text)
        assert question.correct_answer is None

    def test_bold_stays_with_its_question(self):
        questions = _which_questions()
        report = AnswerKeyCorrelator().correlate(questions, WHICH_TEXT)

        assert questions[0].correct_answer == 1
        assert questions[0].detection_method == DetectionMethod.BOLD
        assert questions[1].correct_answer is None
        assert questions[1].detection_method is None
        assert report.needs_review == ["general_q_2"]

    def test_bold_font_stays_with_its_question(self):
        page = _which_page()
        items = tuple(
            item.model_copy(update={"bold": True}) if item.y == 140 else item
            for item in page.items
        )
        page = page.model_copy(update={"items": items})
        questions = _which_questions()
        AnswerKeyCorrelator().correlate(questions, WHICH_TEXT.replace("**", ""), pages=[page])

        assert questions[0].correct_answer == 1
        assert questions[1].correct_answer is None

    def test_pattern_beats_bold(self):
        text = GAS_TEXT.replace("B) Carbon dioxide", "B) **Carbon dioxide**") + "Answer Key: 1.a"
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], text)
        assert question.correct_answer == 0
        assert question.detection_method == DetectionMethod.PATTERN

    def test_bold_font_layout(self):
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], GAS_TEXT, pages=[_gas_page(bold_label="D")])
        assert question.correct_answer == 3
        assert question.detection_method == DetectionMethod.BOLD

    def test_several_bold_options_ignored(self):
        page = _gas_page()
        items = tuple(
            item.model_copy(update={"bold": True}) if item.text.startswith(("A)", "B)")) else item
            for item in page.items
        )
        page = page.model_copy(update={"items": items})
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate([question], GAS_TEXT, pages=[page])
        assert question.correct_answer is None


class TestVisualCorrelation:
    """Test highlight detection through a sampler."""

    RASTERS = {1: PageRaster(page_number=1, width=0, height=0)}

    def _correlator(self, y: float, hits: int = 80) -> AnswerKeyCorrelator:
        return AnswerKeyCorrelator(sampler_factory=lambda raster: StubSampler(y, hits))

    def test_highlighted_option(self):
        question = _question(1, GAS_STEM)
        report = self._correlator(140).correlate(
            [question], GAS_TEXT, pages=[_gas_page()], rasters=self.RASTERS
        )

        assert question.correct_answer == 1
        assert question.detection_method == DetectionMethod.VISUAL
        assert question.detection_confidence == 0.9
        assert report.method_breakdown == {"visual": 1}

    def test_confidence_scales_with_ratio(self):
        question = _question(1, GAS_STEM)
        self._correlator(160, hits=35).correlate(
            [question], GAS_TEXT, pages=[_gas_page()], rasters=self.RASTERS
        )
        assert question.correct_answer == 2
        assert question.detection_confidence == 0.7

    def test_below_threshold(self):
        question = _question(1, GAS_STEM)
        self._correlator(140, hits=20).correlate(
            [question], GAS_TEXT, pages=[_gas_page()], rasters=self.RASTERS
        )
        assert question.correct_answer is None

    def test_visual_disabled(self):
        correlator = AnswerKeyCorrelator(
            enable_visual=False, sampler_factory=lambda raster: StubSampler(140)
        )
        question = _question(1, GAS_STEM)
        correlator.correlate([question], GAS_TEXT, pages=[_gas_page()], rasters=self.RASTERS)
        assert question.correct_answer is None

    def test_tie_keeps_pattern(self):
        question = _question(1, GAS_STEM)
        self._correlator(160, hits=100).correlate(
            [question], "1. a", pages=[_gas_page()], rasters=self.RASTERS
        )
        assert question.correct_answer == 0
        assert question.detection_method == DetectionMethod.PATTERN

    def test_highlight_stays_with_its_question(self):
        questions = _which_questions()
        self._correlator(140).correlate(
            questions, WHICH_TEXT.replace("**", ""), pages=[_which_page()], rasters=self.RASTERS
        )

        assert questions[0].correct_answer == 1
        assert questions[0].detection_method == DetectionMethod.VISUAL
        assert questions[1].correct_answer is None

    def test_visual_beats_bold(self):
        text = GAS_TEXT.replace("B) Carbon dioxide", "B) **Carbon dioxide**")
        question = _question(1, GAS_STEM)
        self._correlator(180).correlate(
            [question], text, pages=[_gas_page()], rasters=self.RASTERS
        )
        assert question.correct_answer == 3
        assert question.detection_method == DetectionMethod.VISUAL

    def test_raster_decode_error_skips_page(self):
        rasters = {1: PageRaster(page_number=1, width=10, height=10, pixels=b"\x00" * 10)}
        question = _question(1, GAS_STEM)
        report = AnswerKeyCorrelator().correlate(
            [question], GAS_TEXT + "Answer Key: 1.b", pages=[_gas_page()], rasters=rasters
        )

        assert len(report.errors) == 1
        assert question.correct_answer == 1
        assert question.detection_method == DetectionMethod.PATTERN


class TestManualAnswers:
    """Test user overrides."""

    def test_manual_overrides_pattern(self):
        question = _question(1, GAS_STEM)
        report = AnswerKeyCorrelator().correlate(
            [question],
            "Answer Key: 1.b",
            manual_answers=[ManualAnswer(question_id="general_q_1", answer="c")],
        )

        assert question.correct_answer == 2
        assert question.detection_method == DetectionMethod.MANUAL
        assert question.detection_confidence == 1.0
        assert len(report.entries) == 1
        assert report.method_breakdown == {"manual": 1}

    def test_manual_by_index(self):
        question = _question(1, GAS_STEM)
        AnswerKeyCorrelator().correlate(
            [question], "", manual_answers=[ManualAnswer(question_id="general_q_1", answer=3)]
        )
        assert question.correct_answer == 3

    def test_unknown_question_id(self):
        question = _question(1, GAS_STEM)
        report = AnswerKeyCorrelator().correlate(
            [question], "", manual_answers=[ManualAnswer(question_id="set_9_q_9", answer="a")]
        )
        assert question.correct_answer is None
        assert "set_9_q_9" in report.errors[0]

    @pytest.mark.parametrize("answer", ["e", 4, -1, "ab"])
    def test_invalid_manual_answer_keeps_detection(self, answer):
        question = _question(1, GAS_STEM)
        report = AnswerKeyCorrelator().correlate(
            [question],
            "Answer Key: 1.b",
            manual_answers=[ManualAnswer(question_id="general_q_1", answer=answer)],
        )
        assert question.correct_answer == 1
        assert question.detection_method == DetectionMethod.PATTERN
        assert len(report.errors) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# RASTER SAMPLING TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestRasterSampling:
    """Test highlight band classification and grid sampling."""

    @pytest.mark.parametrize("rgb,band", [
        ((255, 255, 0), "yellow"),
        ((100, 220, 100), "green"),
        ((100, 180, 240), "blue"),
        ((230, 50, 50), "red"),
        ((255, 192, 203), "pink"),
        ((255, 255, 255), None),
        ((240, 240, 240), None),
        ((210, 210, 210), None),
        ((0, 0, 0), None),
    ])
    def test_match_highlight(self, rgb, band):
        assert match_highlight(*rgb) == band

    def test_solid_highlight(self):
        sampler = PixelRasterSampler(_solid_raster(4, 4, (255, 255, 0, 255)))
        histogram = sampler.sample(Box(0, 0, 4, 4))

        assert histogram.total == 4
        assert histogram.ratio == 1.0
        assert histogram.dominant_color == "yellow"

    def test_white_page_has_no_highlight(self):
        sampler = PixelRasterSampler(_solid_raster(4, 4, (255, 255, 255, 255)))
        histogram = sampler.sample(Box(0, 0, 4, 4))
        assert histogram.ratio == 0.0
        assert histogram.dominant_color is None

    def test_scale_maps_page_units(self):
        sampler = PixelRasterSampler(_solid_raster(8, 8, (255, 255, 0, 255), scale=2.0))
        assert sampler.sample(Box(0, 0, 2, 2)).total == 4

    def test_box_outside_page(self):
        sampler = PixelRasterSampler(_solid_raster(4, 4, (255, 255, 0, 255)))
        histogram = sampler.sample(Box(100, 100, 5, 5))
        assert histogram.total == 0
        assert histogram.ratio == 0.0

    def test_bad_buffer_length(self):
        raster = PageRaster(page_number=3, width=4, height=4, pixels=b"\x00" * 7)
        with pytest.raises(RasterDecodeError, match="Page 3"):
            PixelRasterSampler(raster)
