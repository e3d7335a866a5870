"""
Background Extraction Job
=========================
Runs one extraction in a worker thread so the caller (CLI, UI event loop)
stays responsive and can cancel at any time.

    job = ExtractionJob(engine, source)
    job.start()
    ...
    job.request_stop()      # optional; honoured before the next page
    result = job.wait()

A stopped job always finishes with a CANCELLED result, never a partial
question list.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from .engine import ExtractionEngine, ProgressCallback
from .models import ExtractionResult, ExtractionStatus, ManualAnswer
from .pdf_source import PageSource

logger = logging.getLogger(__name__)


class ExtractionJob:
    """
    One extraction running on a daemon thread.

    Features:
        - Cooperative cancellation via a threading.Event
        - Progress forwarding (pages done, total pages)
        - Exceptions inside the thread become a FAILED result
    """

    def __init__(
        self,
        engine: ExtractionEngine,
        source: PageSource,
        progress_callback: Optional[ProgressCallback] = None,
        manual_answers: Optional[Iterable[ManualAnswer]] = None,
        name: str = "mcq-extraction",
    ):
        self.engine = engine
        self.source = source
        self.progress_callback = progress_callback
        self.manual_answers = list(manual_answers or [])
        self.cancel_event = threading.Event()
        self.result: Optional[ExtractionResult] = None
        self._thread = threading.Thread(target=self.run, daemon=True, name=name)

    def start(self) -> "ExtractionJob":
        self._thread.start()
        logger.debug(f"Started worker thread '{self._thread.name}'")
        return self

    def request_stop(self):
        """Signal the job to stop before the next page."""
        logger.info("Stop requested")
        self.cancel_event.set()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def run(self):
        """Thread body; also callable directly for synchronous use."""
        try:
            self.result = self.engine.extract_document(
                self.source,
                cancel_event=self.cancel_event,
                progress_callback=self.progress_callback,
                manual_answers=self.manual_answers,
            )
        except Exception as e:
            logger.exception(f"Extraction job crashed: {e}")
            self.result = ExtractionResult(
                status=ExtractionStatus.FAILED, error=str(e)
            )

        # A stop that arrived after the last page check still wins
        if self.cancel_event.is_set() and self.result.status != ExtractionStatus.CANCELLED:
            self.result = self.engine.cancelled_result(self.result.stats.page_count)

    def wait(self, timeout: Optional[float] = None) -> Optional[ExtractionResult]:
        """
        Block until the job finishes.

        Returns:
            The result, or None if the timeout expired first.
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        return self.result
