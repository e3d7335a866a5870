"""
Raster Sampling
===============
Highlight-colour sampling over rendered page pixels, kept behind a small
interface so answer correlation never touches a rendering surface.

    RasterSampler.sample(box) -> ColorHistogram

Boxes are in page units; a sampler maps them onto its own pixel grid.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from .models import PageRaster

logger = logging.getLogger(__name__)

# Inclusive (min, max) per channel
HIGHLIGHT_BANDS: dict[str, tuple[tuple[int, int], tuple[int, int], tuple[int, int]]] = {
    "yellow": ((200, 255), (200, 255), (0, 150)),
    "green": ((0, 150), (200, 255), (0, 150)),
    "blue": ((0, 150), (150, 255), (200, 255)),
    "red": ((200, 255), (0, 150), (0, 150)),
    "pink": ((200, 255), (150, 255), (200, 255)),
}

# Greys (paper white, anti-aliased text edges) fall inside the pink band;
# a highlight needs at least this spread between its channels.
MIN_CHROMA = 30

DEFAULT_SAMPLE_STEP = 2
BYTES_PER_PIXEL = 4


class RasterDecodeError(ValueError):
    """Pixel data does not match the raster's declared dimensions."""


class Box(NamedTuple):
    x: float
    y: float
    width: float
    height: float


def match_highlight(r: int, g: int, b: int) -> Optional[str]:
    """Name of the first highlight band containing the colour, if any."""
    if max(r, g, b) - min(r, g, b) < MIN_CHROMA:
        return None
    for name, (rr, gr, br) in HIGHLIGHT_BANDS.items():
        if rr[0] <= r <= rr[1] and gr[0] <= g <= gr[1] and br[0] <= b <= br[1]:
            return name
    return None


@dataclass
class ColorHistogram:
    """Highlight-band counts over the pixels sampled from one box."""
    counts: dict[str, int] = field(default_factory=dict)
    total: int = 0

    @property
    def highlighted(self) -> int:
        return sum(self.counts.values())

    @property
    def ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.highlighted / self.total

    @property
    def dominant_color(self) -> Optional[str]:
        if not self.counts:
            return None
        return max(self.counts, key=lambda name: self.counts[name])


class RasterSampler(ABC):
    """
    Abstract pixel sampler for one page.

    Implementations must return an empty histogram (total 0) for boxes
    that fall entirely outside the page.
    """

    @abstractmethod
    def sample(self, box: Box) -> ColorHistogram:
        """
        Classify the pixels inside a box.

        Args:
            box: Region in page units (top-left origin).

        Returns:
            Histogram of highlight bands over the sampled pixels.
        """


class PixelRasterSampler(RasterSampler):
    """
    Samples an RGBA PageRaster on a regular grid (every `step` pixels in
    both directions).

    Raises:
        RasterDecodeError: on construction, if the pixel buffer length is
            not width * height * 4.
    """

    def __init__(self, raster: PageRaster, step: int = DEFAULT_SAMPLE_STEP):
        expected = raster.width * raster.height * BYTES_PER_PIXEL
        if len(raster.pixels) != expected:
            raise RasterDecodeError(
                f"Page {raster.page_number}: expected {expected} bytes of "
                f"RGBA data, got {len(raster.pixels)}"
            )
        self.raster = raster
        self.step = max(1, step)

    def sample(self, box: Box) -> ColorHistogram:
        raster = self.raster
        scale = raster.scale

        start_x = max(0, int(box.x * scale))
        start_y = max(0, int(box.y * scale))
        end_x = min(raster.width, int((box.x + box.width) * scale))
        end_y = min(raster.height, int((box.y + box.height) * scale))

        histogram = ColorHistogram()
        pixels = raster.pixels
        row_bytes = raster.width * BYTES_PER_PIXEL

        for py in range(start_y, end_y, self.step):
            row = py * row_bytes
            for px in range(start_x, end_x, self.step):
                index = row + px * BYTES_PER_PIXEL
                histogram.total += 1
                band = match_highlight(
                    pixels[index], pixels[index + 1], pixels[index + 2]
                )
                if band:
                    histogram.counts[band] = histogram.counts.get(band, 0) + 1

        return histogram
