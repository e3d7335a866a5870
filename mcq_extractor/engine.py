"""
MCQ Extraction Engine
=====================
Main orchestrator that combines normalization, pooled extraction,
practice-set segmentation, deduplication, validation and answer
correlation into a complete pipeline.

Usage:
    engine = ExtractionEngine(config)
    with PdfPageSource("path/to/exam.pdf") as source:
        result = engine.extract_document(source)
    # result is an ExtractionResult ready for the review UI

Architecture:
    PageSource → PageText (chunked, cancellable) → normalize_text →
    [PracticeSet segments] → strategies (line, pattern, block) →
    deduplicate → ValidationEngine → AnswerKeyCorrelator → ExtractionResult
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import __version__
from .correlator import AnswerKeyCorrelator, summarize
from .models import (
    CorrelationReport,
    ExtractionResult,
    ExtractionStats,
    ExtractionStatus,
    ManualAnswer,
    PageRaster,
    PageText,
    PracticeSet,
    Rejection,
    ValidatedQuestion,
)
from .normalizer import join_pages, normalize_text
from .pdf_source import DEFAULT_RASTER_SCALE, PageSource, SourceError
from .segmenter import detect_practice_sets, segment_text
from .state_machine import LineScanParser
from .strategies import BlockStrategy, ExtractionStrategy, PatternStrategy, run_strategies
from .validator import (
    ValidationEngine,
    build_questions,
    dedup_key,
    deduplicate,
    summarize_rejections,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class ExtractorConfig:
    """Configuration for the extraction engine."""

    # Final validation gate
    min_stem_length: int = 10
    max_stem_length: int = 300
    max_option_length: int = 100

    # Strategies
    strategies: tuple[str, ...] = ("line", "pattern", "block")
    strategy_stem_limit: int = 500
    option_parser_max_length: int = 200
    line_stem_cap: int = 300

    # Deduplication (None disables near-duplicate matching)
    similarity_threshold: Optional[float] = 0.9

    # Practice sets
    detect_practice_sets: bool = True
    set_number_range: tuple[int, int] = (1, 20)
    header_merge_distance: int = 200

    # Document processing
    chunk_size: int = 5

    # Answer detection
    enable_visual: bool = True
    highlight_threshold: float = 0.3
    raster_scale: float = DEFAULT_RASTER_SCALE

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ExtractionEngine:
    """
    Main extraction engine.

    Orchestrates the full pipeline:
        1. Page collection (chunked, cancellable)
        2. Normalization into one text stream
        3. Practice-set segmentation
        4. Pooled extraction by every enabled strategy
        5. Deduplication and validation
        6. Answer correlation and manual overrides

    Holds no per-run state, so one engine can serve parallel runs.
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()
        self._setup_logging()
        self.validator = ValidationEngine(
            min_stem_length=self.config.min_stem_length,
            max_stem_length=self.config.max_stem_length,
            max_option_length=self.config.max_option_length,
        )
        self.correlator = AnswerKeyCorrelator(
            enable_visual=self.config.enable_visual,
            highlight_threshold=self.config.highlight_threshold,
        )
        self.strategies = self.build_strategies()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("mcq_extractor")
        package_logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file).resolve()
            already = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path
                for h in package_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(formatter)
                package_logger.addHandler(file_handler)

    def build_strategies(self) -> list[ExtractionStrategy]:
        """Strategy instances in pooling order, filtered by config."""
        available: dict[str, ExtractionStrategy] = {
            "line": LineScanParser(stem_cap=self.config.line_stem_cap),
            "pattern": PatternStrategy(
                stem_limit=self.config.strategy_stem_limit,
                option_max_length=self.config.option_parser_max_length,
            ),
            "block": BlockStrategy(stem_limit=self.config.strategy_stem_limit),
        }
        unknown = set(self.config.strategies) - set(available)
        if unknown:
            raise ValueError(f"Unknown strategies: {', '.join(sorted(unknown))}")
        return [available[name] for name in available if name in self.config.strategies]

    # ── Entry points ────────────────────────────────────────────────────

    def extract_text(
        self,
        text: str,
        manual_answers: Optional[Iterable[ManualAnswer]] = None,
    ) -> ExtractionResult:
        """Run the pipeline over a single text with no layout data."""
        return self.extract_pages(
            [PageText(page_number=1, text=text)], manual_answers=manual_answers
        )

    def extract_pages(
        self,
        pages: list[PageText | str],
        rasters: Optional[dict[int, PageRaster]] = None,
        manual_answers: Optional[Iterable[ManualAnswer]] = None,
    ) -> ExtractionResult:
        """
        Run the pipeline over already-collected pages.

        Args:
            pages: Pages in document order (plain strings are numbered
                from 1).
            rasters: Page number → raster, for visual answer detection.
            manual_answers: User overrides keyed by question id.

        Returns:
            ExtractionResult with status COMPLETED or NO_QUESTIONS.
        """
        start_time = time.time()
        pages = [
            page if isinstance(page, PageText)
            else PageText(page_number=number, text=page)
            for number, page in enumerate(pages, start=1)
        ]
        stats = ExtractionStats(page_count=len(pages))

        if not pages:
            logger.warning("No pages to extract from")
            return ExtractionResult(
                status=ExtractionStatus.NO_QUESTIONS,
                stats=stats,
                parser_version=__version__,
            )

        # ── Step 1: One normalized stream across all pages ────────────
        raw_text = join_pages(pages)
        text = normalize_text(raw_text)

        # ── Step 2: Segment ───────────────────────────────────────────
        practice_sets: list[PracticeSet] = []
        if self.config.detect_practice_sets:
            practice_sets = detect_practice_sets(
                text,
                set_range=self.config.set_number_range,
                merge_distance=self.config.header_merge_distance,
            )

        # ── Step 3: Extract, validate, correlate ──────────────────────
        rejections: list[Rejection] = []
        if practice_sets:
            questions, correlation = self._extract_sets(
                text, practice_sets, pages, rasters, stats, rejections
            )
        else:
            questions = self._extract_segment(text, None, stats, rejections, set())
            correlation = self.correlator.correlate(
                questions, raw_text, pages=pages, rasters=rasters
            )

        # ── Step 4: Manual overrides win over every detector ──────────
        self.correlator.apply_manual_answers(
            questions, manual_answers or [], correlation
        )

        stats.validation_rejections = summarize_rejections(rejections)
        status = (
            ExtractionStatus.COMPLETED if questions else ExtractionStatus.NO_QUESTIONS
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Extraction complete in {elapsed:.2f}s: "
            f"{len(questions)} questions from {len(pages)} page(s), "
            f"{correlation.answers_detected} answer(s) detected"
        )

        return ExtractionResult(
            status=status,
            questions=questions,
            practice_sets=practice_sets or None,
            stats=stats,
            rejections=rejections,
            correlation=correlation,
            parser_version=__version__,
        )

    def extract_document(
        self,
        source: PageSource,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
        manual_answers: Optional[Iterable[ManualAnswer]] = None,
    ) -> ExtractionResult:
        """
        Collect pages from a source in chunks, then run the pipeline.

        Args:
            source: Page provider (e.g. PdfPageSource).
            cancel_event: Checked before every page; when set, the run
                stops and returns CANCELLED with no questions.
            progress_callback: Callback(pages_done, total_pages).
            manual_answers: User overrides keyed by question id.

        Returns:
            ExtractionResult; source failures are reported as FAILED rather
            than raised.
        """
        pages: list[PageText] = []
        rasters: dict[int, PageRaster] = {}
        chunk_size = max(1, self.config.chunk_size)

        try:
            total = source.page_count()
            logger.info(f"Collecting {total} page(s) in chunks of {chunk_size}")

            for chunk_start in range(0, total, chunk_size):
                chunk_end = min(chunk_start + chunk_size, total)
                for index in range(chunk_start, chunk_end):
                    if cancel_event is not None and cancel_event.is_set():
                        return self.cancelled_result(len(pages))

                    pages.append(source.page_text(index))
                    if self.config.enable_visual:
                        raster = source.page_raster(index)
                        if raster is not None:
                            rasters[raster.page_number] = raster

                    if progress_callback:
                        progress_callback(index + 1, total)

                logger.debug(f"Collected pages {chunk_start + 1}-{chunk_end}")

        except SourceError as e:
            logger.error(f"Page source failed: {e}")
            return self.failed_result(str(e), len(pages))
        except Exception as e:
            logger.exception(f"Unexpected error while reading pages: {e}")
            return self.failed_result(str(e), len(pages))

        if cancel_event is not None and cancel_event.is_set():
            return self.cancelled_result(len(pages))

        return self.extract_pages(pages, rasters or None, manual_answers)

    # ── Pipeline steps ──────────────────────────────────────────────────

    def _extract_segment(
        self,
        text: str,
        set_number: Optional[int],
        stats: ExtractionStats,
        rejections: list[Rejection],
        taken_ids: set[str],
    ) -> list[ValidatedQuestion]:
        """Pool, deduplicate, validate and build one segment's questions."""
        pool = run_strategies(text, self.strategies)
        for name, count in pool.counts.items():
            stats.strategy_counts[name] = stats.strategy_counts.get(name, 0) + count
        stats.strategy_errors.extend(pool.errors)

        dedup = deduplicate(
            pool.candidates,
            similarity_threshold=self.config.similarity_threshold,
            is_valid=self.validator.accepts,
        )
        stats.duplicates_removed += dedup.duplicates_removed

        passed, rejected = self.validator.filter(dedup.candidates)
        rejections.extend(rejected)

        return build_questions(passed, set_number=set_number, taken_ids=taken_ids)

    def _extract_sets(
        self,
        text: str,
        practice_sets: list[PracticeSet],
        pages: list[PageText],
        rasters: Optional[dict[int, PageRaster]],
        stats: ExtractionStats,
        rejections: list[Rejection],
    ) -> tuple[list[ValidatedQuestion], CorrelationReport]:
        """
        Extract each practice set on its own, then flatten in set order.
        Answer keys are read from each set's own segment.
        """
        taken_ids: set[str] = set()
        correlation = CorrelationReport()

        for practice_set in practice_sets:
            segment = segment_text(text, practice_set)
            questions = self._extract_segment(
                segment, practice_set.set_number, stats, rejections, taken_ids
            )
            report = self.correlator.correlate(
                questions, segment, pages=pages, rasters=rasters
            )
            correlation.entries.extend(report.entries)
            correlation.errors.extend(report.errors)
            practice_set.questions = questions
            logger.info(
                f"Set {practice_set.set_number}: {len(questions)} question(s)"
            )

        # The same question printed in two sets is kept once, in the first
        seen: set[str] = set()
        flattened: list[ValidatedQuestion] = []
        for practice_set in practice_sets:
            kept = []
            for question in practice_set.questions:
                key = dedup_key(question.text)
                if key in seen:
                    stats.duplicates_removed += 1
                    continue
                seen.add(key)
                kept.append(question)
            practice_set.questions = kept
            flattened.extend(kept)

        summarize(flattened, correlation)
        return flattened, correlation

    # ── Terminal results ────────────────────────────────────────────────

    def cancelled_result(self, pages_read: int) -> ExtractionResult:
        logger.warning(f"Extraction cancelled after {pages_read} page(s)")
        return ExtractionResult(
            status=ExtractionStatus.CANCELLED,
            stats=ExtractionStats(page_count=pages_read),
            parser_version=__version__,
        )

    def failed_result(self, error: str, pages_read: int) -> ExtractionResult:
        return ExtractionResult(
            status=ExtractionStatus.FAILED,
            error=error,
            stats=ExtractionStats(page_count=pages_read),
            parser_version=__version__,
        )


def save_result(result: ExtractionResult, filepath: str | Path, review_format: bool = False):
    """
    Write a result as JSON.

    Args:
        result: Result to write.
        filepath: Destination; parent directories are created.
        review_format: Write the compact camelCase review-UI shape instead
            of the full model dump.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    data = result.to_review_dict() if review_format else result.model_dump(mode="json")
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    logger.info(f"Saved JSON output: {filepath}")
