"""Render uploaded documents onto the fixed square canvas sent to the vision model.

Every page (a raster image, or one rasterized PDF page) is drawn onto a white
square canvas using a contain fit: aspect ratio preserved, nothing cropped,
centered on both axes. The geometry of that fit is kept as a ``NormalizedPage``
so boxes returned against the canvas can be mapped back onto the page.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, List, Sequence, Tuple

import pypdfium2 as pdfium
from PIL import Image, ImageOps
from pypdf import PdfReader

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
BACKGROUND_COLOR = (255, 255, 255)
DEFAULT_CANVAS_SIZE = 1000
DEFAULT_PDF_RENDER_SCALE = 2.0
DEFAULT_MAX_PDF_PAGES = 10


class DecodeError(RuntimeError):
    """Raised when an uploaded document cannot be rasterized."""


class PageLimitError(DecodeError):
    """Raised when a PDF has more pages than the configured cap."""


@dataclass(frozen=True)
class NormalizedPage:
    page: int
    source_width: int
    source_height: int
    canvas_size: int
    scale: float
    offset_x: float
    offset_y: float

    @classmethod
    def fit(
        cls,
        source_width: int,
        source_height: int,
        canvas_size: int = DEFAULT_CANVAS_SIZE,
        page: int = 1,
    ) -> "NormalizedPage":
        if source_width <= 0 or source_height <= 0:
            raise DecodeError(f"Page {page} has no drawable area ({source_width}x{source_height})")
        scale = min(canvas_size / source_width, canvas_size / source_height)
        return cls(
            page=page,
            source_width=source_width,
            source_height=source_height,
            canvas_size=canvas_size,
            scale=scale,
            offset_x=(canvas_size - source_width * scale) / 2,
            offset_y=(canvas_size - source_height * scale) / 2,
        )

    @property
    def render_width(self) -> float:
        return self.source_width * self.scale

    @property
    def render_height(self) -> float:
        return self.source_height * self.scale


@dataclass
class RenderedPage:
    """A normalized canvas and the geometry of the page drawn onto it."""

    geometry: NormalizedPage
    canvas: Image.Image

    @property
    def page(self) -> int:
        return self.geometry.page

    def close(self) -> None:
        self.canvas.close()


def normalize(source: Image.Image, canvas_size: int = DEFAULT_CANVAS_SIZE, page: int = 1) -> RenderedPage:
    """Draw ``source`` onto a white square canvas with contain-fit centering.

    ``source`` stays owned by the caller; only the canvas is kept.
    """
    geometry = NormalizedPage.fit(source.width, source.height, canvas_size, page)
    canvas = Image.new("RGB", (canvas_size, canvas_size), BACKGROUND_COLOR)
    target_size = (
        min(canvas_size, max(1, round(geometry.render_width))),
        min(canvas_size, max(1, round(geometry.render_height))),
    )
    resized = source.resize(target_size, Image.Resampling.LANCZOS)
    try:
        canvas.paste(resized, (round(geometry.offset_x), round(geometry.offset_y)))
    finally:
        resized.close()
    return RenderedPage(geometry=geometry, canvas=canvas)


def _flatten(image: Image.Image) -> Image.Image:
    image = ImageOps.exif_transpose(image)
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, BACKGROUND_COLOR)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def load_image(payload: bytes, canvas_size: int = DEFAULT_CANVAS_SIZE, page: int = 1) -> RenderedPage:
    try:
        with Image.open(BytesIO(payload)) as opened:
            opened.load()
            source = _flatten(opened)
    except Exception as exc:  # noqa: BLE001
        raise DecodeError(f"画像を読み込めませんでした: {exc}") from exc
    try:
        return normalize(source, canvas_size, page)
    finally:
        source.close()


def count_pdf_pages(payload: bytes) -> int:
    try:
        return len(PdfReader(BytesIO(payload)).pages)
    except Exception as exc:  # noqa: BLE001
        raise DecodeError(f"PDFの解析に失敗しました。破損している可能性があります: {exc}") from exc


def render_pdf(
    payload: bytes,
    *,
    canvas_size: int = DEFAULT_CANVAS_SIZE,
    render_scale: float = DEFAULT_PDF_RENDER_SCALE,
    max_pages: int = DEFAULT_MAX_PDF_PAGES,
    first_page: int = 1,
) -> List[RenderedPage]:
    """Rasterize every PDF page at ``render_scale`` and normalize each one independently."""
    page_count = count_pdf_pages(payload)
    if page_count == 0:
        raise DecodeError("PDFにページが含まれていません")
    if page_count > max_pages:
        raise PageLimitError(f"ページ数超過: PDFは{max_pages}ページ以内である必要があります ({page_count}ページ)")

    rendered: List[RenderedPage] = []
    try:
        document = pdfium.PdfDocument(payload)
        try:
            for index in range(len(document)):
                pdf_page = document[index]
                try:
                    bitmap = pdf_page.render(scale=render_scale)
                    source = bitmap.to_pil().convert("RGB")
                finally:
                    pdf_page.close()
                try:
                    rendered.append(normalize(source, canvas_size, first_page + index))
                finally:
                    source.close()
        finally:
            document.close()
    except DecodeError:
        close_pages(rendered)
        raise
    except Exception as exc:  # noqa: BLE001
        close_pages(rendered)
        raise DecodeError(f"PDFの画像化に失敗しました: {exc}") from exc
    return rendered


def is_pdf(payload: bytes, content_type: str) -> bool:
    return content_type == PDF_CONTENT_TYPE or payload[:5] == b"%PDF-"


def load_document(
    uploads: Sequence[Tuple[bytes, str]],
    *,
    canvas_size: int = DEFAULT_CANVAS_SIZE,
    pdf_render_scale: float = DEFAULT_PDF_RENDER_SCALE,
    max_pdf_pages: int = DEFAULT_MAX_PDF_PAGES,
) -> List[RenderedPage]:
    """Normalize an upload (one PDF, or one image per page) into numbered pages.

    Either every page is normalized or ``DecodeError`` is raised; rasters of
    pages already processed are released before the error propagates.
    """
    pages: List[RenderedPage] = []
    try:
        for payload, content_type in uploads:
            next_page = len(pages) + 1
            if is_pdf(payload, content_type):
                pages.extend(
                    render_pdf(
                        payload,
                        canvas_size=canvas_size,
                        render_scale=pdf_render_scale,
                        max_pages=max_pdf_pages,
                        first_page=next_page,
                    )
                )
            else:
                pages.append(load_image(payload, canvas_size, next_page))
    except DecodeError:
        close_pages(pages)
        raise
    logger.debug("Normalized %s page(s) onto %spx canvas", len(pages), canvas_size)
    return pages


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def close_pages(pages: Iterable[RenderedPage]) -> None:
    for page in pages:
        page.close()
