"""
Page Sources
============
Where page text, positioned text items and rasters come from.

    - PageSource: abstract, 0-indexed page access
    - InMemoryPageSource: pre-extracted pages (plain text inputs, tests)
    - PdfPageSource: PDF files read with PyMuPDF (fitz)

The extraction engine only sees PageText / PageRaster models; nothing
downstream touches fitz objects.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import fitz  # PyMuPDF

from .models import PageRaster, PageText, TextItem

logger = logging.getLogger(__name__)

LINE_Y_TOLERANCE = 5.0
DEFAULT_RASTER_SCALE = 1.0

# PyMuPDF span flag bit for bold fonts
SPAN_FLAG_BOLD = 1 << 4


class SourceError(Exception):
    """A page source could not deliver a page."""


# ─── Text Reconstruction ──────────────────────────────────────────────────────


def reconstruct_page_text(
    items: Iterable[TextItem],
    y_tolerance: float = LINE_Y_TOLERANCE,
) -> str:
    """
    Rebuild reading-order text from positioned fragments.

    Fragments whose y differs by at most `y_tolerance` from a line's first
    fragment share that line; lines run top to bottom, fragments left to
    right, joined with single spaces.
    """
    lines: list[list[TextItem]] = []
    for item in sorted(items, key=lambda i: (i.y, i.x)):
        if not item.text.strip():
            continue
        if lines and abs(lines[-1][0].y - item.y) <= y_tolerance:
            lines[-1].append(item)
        else:
            lines.append([item])

    return "\n".join(
        " ".join(i.text.strip() for i in sorted(line, key=lambda i: i.x))
        for line in lines
    )


# ─── Sources ──────────────────────────────────────────────────────────────────


class PageSource(ABC):
    """
    Abstract page provider.

    Pages are addressed 0-indexed; the models they return carry 1-indexed
    page numbers.
    """

    @abstractmethod
    def page_count(self) -> int:
        """Total number of pages."""

    @abstractmethod
    def page_text(self, index: int) -> PageText:
        """
        Text and positioned items for one page.

        Raises:
            SourceError: If the page cannot be read.
        """

    def page_raster(self, index: int) -> Optional[PageRaster]:
        """Rendered RGBA raster for one page, or None when unavailable."""
        return None

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class InMemoryPageSource(PageSource):
    """Pages that were extracted elsewhere."""

    def __init__(
        self,
        pages: Iterable[PageText | str],
        rasters: Optional[dict[int, PageRaster]] = None,
    ):
        self.pages: list[PageText] = [
            page if isinstance(page, PageText)
            else PageText(page_number=number, text=page)
            for number, page in enumerate(pages, start=1)
        ]
        self.rasters = rasters or {}

    def page_count(self) -> int:
        return len(self.pages)

    def page_text(self, index: int) -> PageText:
        if not 0 <= index < len(self.pages):
            raise SourceError(f"Page index {index} out of range (0-{len(self.pages) - 1})")
        return self.pages[index]

    def page_raster(self, index: int) -> Optional[PageRaster]:
        return self.rasters.get(index + 1)


class PdfPageSource(PageSource):
    """
    PDF pages via PyMuPDF.

    Text items are the spans of `page.get_text("dict")`; page text is
    reconstructed from them so that text and layout always agree.
    """

    def __init__(
        self,
        pdf_path: str,
        render_rasters: bool = True,
        raster_scale: float = DEFAULT_RASTER_SCALE,
    ):
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        self.pdf_path = pdf_path
        self.render_rasters = render_rasters
        self.raster_scale = raster_scale

        try:
            self._doc = fitz.open(pdf_path)
        except Exception as e:
            raise SourceError(f"Cannot open {pdf_path}: {e}") from e

        if self._doc.needs_pass:
            self._doc.close()
            raise SourceError(f"{pdf_path} is password protected")

        logger.info(f"Opened {pdf_path} ({self._doc.page_count} pages)")

    def page_count(self) -> int:
        return self._doc.page_count

    def metadata(self) -> dict:
        return dict(self._doc.metadata or {})

    def page_text(self, index: int) -> PageText:
        try:
            page = self._doc[index]
            page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)
        except Exception as e:
            raise SourceError(f"Cannot read text of page {index + 1}: {e}") from e

        items: list[TextItem] = []
        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    if not span.get("text", "").strip():
                        continue
                    x0, y0, x1, y1 = span["bbox"]
                    items.append(TextItem(
                        text=span["text"],
                        x=x0,
                        y=y0,
                        width=x1 - x0,
                        height=y1 - y0,
                        bold=bool(span.get("flags", 0) & SPAN_FLAG_BOLD),
                    ))

        return PageText(
            page_number=index + 1,
            text=reconstruct_page_text(items),
            items=tuple(items),
        )

    def page_raster(self, index: int) -> Optional[PageRaster]:
        if not self.render_rasters:
            return None
        try:
            page = self._doc[index]
            matrix = fitz.Matrix(self.raster_scale, self.raster_scale)
            # Render on white, then add the alpha channel RGBA consumers expect
            pix = fitz.Pixmap(page.get_pixmap(matrix=matrix, alpha=False), 1)
        except Exception as e:
            # Visual detection is optional; the page still has text
            logger.warning(f"Could not render page {index + 1}: {e}")
            return None

        return PageRaster(
            page_number=index + 1,
            width=pix.width,
            height=pix.height,
            pixels=bytes(pix.samples),
            scale=self.raster_scale,
        )

    def close(self):
        if not self._doc.is_closed:
            self._doc.close()
