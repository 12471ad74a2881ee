"""Affine mapping between normalized boxes, canvas pixels and original page pixels."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .canvas import NormalizedPage
from .models import NORMALIZED_MAX, BoundingBox


@dataclass(frozen=True)
class PixelRect:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def translate(self, dx: float, dy: float) -> "PixelRect":
        return PixelRect(self.left + dx, self.top + dy, self.right + dx, self.bottom + dy)

    def clamp(self, width: float, height: float) -> "PixelRect":
        return PixelRect(
            _clamp(self.left, 0, width),
            _clamp(self.top, 0, height),
            _clamp(self.right, 0, width),
            _clamp(self.bottom, 0, height),
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def box_to_canvas_pixels(box: BoundingBox, canvas_size: int) -> PixelRect:
    unit = canvas_size / NORMALIZED_MAX
    return PixelRect(
        left=box.x_min * unit,
        top=box.y_min * unit,
        right=box.x_max * unit,
        bottom=box.y_max * unit,
    )


def canvas_pixels_to_box(rect: PixelRect, canvas_size: int, page: int) -> BoundingBox:
    unit = NORMALIZED_MAX / canvas_size
    return BoundingBox(
        y_min=_clamp(rect.top * unit, 0, NORMALIZED_MAX),
        x_min=_clamp(rect.left * unit, 0, NORMALIZED_MAX),
        y_max=_clamp(rect.bottom * unit, 0, NORMALIZED_MAX),
        x_max=_clamp(rect.right * unit, 0, NORMALIZED_MAX),
        page=page,
    )


def to_page_pixels(box: BoundingBox, page: NormalizedPage) -> PixelRect:
    """Map a normalized canvas box onto the original page raster."""
    if box.page != page.page:
        raise ValueError(f"box is on page {box.page}, geometry is page {page.page}")
    canvas_rect = box_to_canvas_pixels(box, page.canvas_size)
    return PixelRect(
        left=(canvas_rect.left - page.offset_x) / page.scale,
        top=(canvas_rect.top - page.offset_y) / page.scale,
        right=(canvas_rect.right - page.offset_x) / page.scale,
        bottom=(canvas_rect.bottom - page.offset_y) / page.scale,
    )


def to_normalized(rect: PixelRect, page: NormalizedPage) -> BoundingBox:
    """Inverse of ``to_page_pixels``."""
    canvas_rect = PixelRect(
        left=rect.left * page.scale + page.offset_x,
        top=rect.top * page.scale + page.offset_y,
        right=rect.right * page.scale + page.offset_x,
        bottom=rect.bottom * page.scale + page.offset_y,
    )
    return canvas_pixels_to_box(canvas_rect, page.canvas_size, page.page)


def crop_to_box(local_rect: PixelRect, crop_origin: Tuple[float, float], canvas_size: int, page: int) -> BoundingBox:
    """Convert a rect found inside a canvas crop back to normalized canvas space.

    The crop offset is added first; OCR runs on the normalized canvas, so no
    page transform follows.
    """
    return canvas_pixels_to_box(local_rect.translate(*crop_origin), canvas_size, page)
