"""Local OCR refinement of vision-model field boxes.

Vision-model boxes tend to be over-inclusive (label text, cell borders). The
refiner crops the normalized canvas around a box, runs Tesseract on the crop
and shrinks the box to the recognized value token. Refinement is best effort:
every failure path falls back to the box the model returned.
"""
from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

import pytesseract
from PIL import Image
from pytesseract import Output

from .canvas import RenderedPage
from .coordinates import PixelRect, box_to_canvas_pixels, crop_to_box
from .models import NORMALIZED_MAX, BoundingBox, FieldKey

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 10
DEFAULT_TIMEOUT_SECONDS = 5.0


class RefinementFailure(RuntimeError):
    """Raised inside the refiner when a field cannot be refined."""


@dataclass(frozen=True)
class OcrToken:
    text: str
    left: int
    top: int
    width: int
    height: int
    confidence: float = 0.0

    @property
    def rect(self) -> PixelRect:
        return PixelRect(self.left, self.top, self.left + self.width, self.top + self.height)

    @property
    def has_digit(self) -> bool:
        return any(char.isdigit() for char in self.text)


class TextRecognizer(Protocol):
    def recognize(self, image: Image.Image) -> List[OcrToken]:
        ...


class TesseractRecognizer:
    """Word-level OCR via pytesseract.

    Args:
        lang: Tesseract language hint; ``jpn+eng`` covers mixed Latin and
            Japanese script.
        oem: OCR Engine Mode, ``3`` selects the LSTM engine when available.
        psm: Page segmentation mode, ``6`` treats the crop as one text block.
        extra_config: Additional flags forwarded to Tesseract.
        timeout: Seconds before the tesseract subprocess is killed; ``0``
            disables the limit.
    """

    def __init__(
        self,
        lang: str = "jpn+eng",
        oem: int = 3,
        psm: int = 6,
        extra_config: str = "",
        timeout: float = 0,
    ) -> None:
        self.lang = lang
        self.timeout = timeout
        self.config = f"--oem {oem} --psm {psm} {extra_config}".strip()

    def recognize(self, image: Image.Image) -> List[OcrToken]:
        data = pytesseract.image_to_data(
            image,
            lang=self.lang,
            config=self.config,
            output_type=Output.DICT,
            timeout=self.timeout,
        )
        tokens: List[OcrToken] = []
        for text, conf, left, top, width, height in zip(
            data.get("text", []),
            data.get("conf", []),
            data.get("left", []),
            data.get("top", []),
            data.get("width", []),
            data.get("height", []),
        ):
            text = (text or "").strip()
            if not text or conf is None or str(conf) == "-1":
                continue
            tokens.append(
                OcrToken(
                    text=text,
                    left=int(left),
                    top=int(top),
                    width=int(width),
                    height=int(height),
                    confidence=float(conf) / 100.0,
                )
            )
        return tokens


def expand_box(box: BoundingBox, padding: float) -> BoundingBox:
    return BoundingBox(
        y_min=max(0.0, box.y_min - padding),
        x_min=max(0.0, box.x_min - padding),
        y_max=min(float(NORMALIZED_MAX), box.y_max + padding),
        x_max=min(float(NORMALIZED_MAX), box.x_max + padding),
        page=box.page,
    )


def pick_token(tokens: Sequence[OcrToken]) -> Optional[OcrToken]:
    """First token containing a digit, else the first token."""
    if not tokens:
        return None
    for token in tokens:
        if token.has_digit:
            return token
    return tokens[0]


class OcrRefiner:
    def __init__(
        self,
        recognizer: TextRecognizer,
        *,
        padding: float = DEFAULT_PADDING,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.recognizer = recognizer
        self.padding = padding
        self.timeout = timeout

    def refine_box(self, canvas: Image.Image, box: BoundingBox) -> BoundingBox:
        """Tighten ``box`` to the value token found inside its padded crop."""
        if box.is_degenerate:
            return box
        canvas_size = canvas.width
        expanded = box_to_canvas_pixels(expand_box(box, self.padding), canvas_size)
        left = max(0, math.floor(expanded.left))
        top = max(0, math.floor(expanded.top))
        right = min(canvas.width, math.ceil(expanded.right))
        bottom = min(canvas.height, math.ceil(expanded.bottom))
        if right <= left or bottom <= top:
            return box

        with canvas.crop((left, top, right, bottom)) as crop:
            tokens = self.recognizer.recognize(crop)
        token = pick_token(tokens)
        if token is None:
            return box

        refined = crop_to_box(token.rect, (left, top), canvas_size, box.page)
        if refined.is_degenerate:
            return box
        return refined

    def _refine_all(
        self,
        pages: Mapping[int, RenderedPage],
        targets: Mapping[FieldKey, BoundingBox],
        results: Dict[FieldKey, BoundingBox],
        lock: threading.Lock,
    ) -> None:
        for key, box in targets.items():
            page = pages.get(box.page)
            if page is None:
                raise RefinementFailure(f"{key.value}: page {box.page} is not part of the document")
            refined = self.refine_box(page.canvas, box)
            with lock:
                results[key] = refined

    async def refine_fields(
        self,
        pages: Mapping[int, RenderedPage],
        targets: Mapping[FieldKey, BoundingBox],
    ) -> Dict[FieldKey, BoundingBox]:
        """Refine ``targets`` one after another within the timeout budget.

        Returns the boxes refined before the budget ran out or an error
        occurred; fields missing from the result keep their model boxes.
        Never raises.
        """
        results: Dict[FieldKey, BoundingBox] = {}
        if not targets:
            return results
        lock = threading.Lock()
        started = time.perf_counter()

        worker = asyncio.ensure_future(asyncio.to_thread(self._refine_all, pages, targets, results, lock))
        timer = asyncio.ensure_future(asyncio.sleep(self.timeout))
        done, _ = await asyncio.wait({worker, timer}, return_when=asyncio.FIRST_COMPLETED)

        if worker in done:
            timer.cancel()
            try:
                worker.result()
            except RefinementFailure as exc:
                logger.warning("OCR refinement stopped: %s", exc)
            except Exception:  # noqa: BLE001
                logger.exception("OCR refinement failed; keeping model boxes")
        else:
            # 処理中のスレッドは止めずに結果だけ破棄する
            worker.add_done_callback(_log_discarded)
            logger.warning(
                "OCR refinement timed out after %.1fs (%s/%s fields refined)",
                self.timeout,
                len(results),
                len(targets),
            )

        with lock:
            refined = dict(results)
        logger.info(
            "OCR refinement: %s/%s fields in %.3fs",
            len(refined),
            len(targets),
            time.perf_counter() - started,
        )
        return refined


def _log_discarded(task: "asyncio.Future[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Discarded OCR refinement ended with %s", exc)
