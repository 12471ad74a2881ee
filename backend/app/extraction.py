"""Turn the vision-model JSON into the ordered ``ExtractedField`` list."""
from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from .calculators.valuation import match_structure
from .canvas import RenderedPage
from .models import BoundingBox, ExtractedField, FieldKey, FieldValue
from .ocr import OcrRefiner

logger = logging.getLogger(__name__)

MAX_ADDRESS_CANDIDATES = 3

# OCR で枠を詰めるのは数値項目だけ
REFINABLE_FIELDS = frozenset(
    {
        FieldKey.LAND_AREA,
        FieldKey.FLOOR_AREA,
        FieldKey.ROAD_PRICE,
        FieldKey.LAND_TAX_VALUE,
        FieldKey.BUILDING_TAX_VALUE,
        FieldKey.LAND_FIXED_ASSET_TAX,
        FieldKey.LAND_CITY_PLANNING_TAX,
        FieldKey.BUILDING_FIXED_ASSET_TAX,
        FieldKey.BUILDING_CITY_PLANNING_TAX,
    }
)

NUMERIC_FIELDS = REFINABLE_FIELDS | {FieldKey.AGE, FieldKey.USEFUL_LIFE}

# planInfo のキー名 -> FieldKey（モデルは土地面積を area_m2、住所を siteAddress で返す）
PLAN_INFO_KEYS: Dict[str, FieldKey] = {
    "area_m2": FieldKey.LAND_AREA,
    "siteAddress": FieldKey.ADDRESS,
}
PLAN_INFO_KEYS.update({key.value: key for key in FieldKey if key.value not in PLAN_INFO_KEYS})

NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")
UNIT_SUFFIXES = ("円", "¥", "m2", "平米", "年")


def parse_amount(value: Any) -> Optional[float]:
    """Coerce model output such as ``"1,234.5㎡"`` or full-width ``"１２０"`` to float."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = unicodedata.normalize("NFKC", str(value)).strip()
    if not text:
        return None
    text = text.replace(",", "").replace(" ", "")
    for suffix in UNIT_SUFFIXES:
        text = text.replace(suffix, "")
    match = NUMBER_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def _text_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_value(key: FieldKey, raw: Any) -> FieldValue:
    if key in NUMERIC_FIELDS:
        return parse_amount(raw)
    text = _text_value(raw)
    if key is FieldKey.STRUCTURE and text is not None:
        structure = match_structure(text)
        return structure.value if structure else text
    return text


def _parse_box(key: FieldKey, raw: Any, page_count: Optional[int]) -> BoundingBox:
    if isinstance(raw, Mapping):
        values = raw.get("box")
        page = raw.get("page") or 1
    else:
        values = raw
        page = 1
    if not isinstance(values, (list, tuple)):
        raise ValueError(f"{key.value}: box is not a list")
    box = BoundingBox.from_list(values, page=int(page))
    if page_count is not None and box.page > page_count:
        raise ValueError(f"{key.value}: page {box.page} exceeds document page count {page_count}")
    return box


def parse_model_payload(
    payload: Mapping[str, Any],
    *,
    page_count: Optional[int] = None,
    warnings: Optional[List[str]] = None,
) -> Dict[FieldKey, ExtractedField]:
    """Read ``planInfo`` values and ``coordinates`` boxes keyed by ``FieldKey``.

    Unknown keys are ignored. A coordinate entry that is malformed, out of the
    0-1000 range or points at a missing page is dropped (the value is kept)
    and a message is appended to ``warnings``.
    """
    plan_info = payload.get("planInfo") or {}
    coordinates = payload.get("coordinates") or {}
    if not isinstance(plan_info, Mapping):
        plan_info = {}
    if not isinstance(coordinates, Mapping):
        coordinates = {}

    values: Dict[FieldKey, FieldValue] = {}
    for raw_key, raw_value in plan_info.items():
        key = PLAN_INFO_KEYS.get(raw_key)
        if key is None or values.get(key) is not None:
            continue
        values[key] = _coerce_value(key, raw_value)

    boxes: Dict[FieldKey, BoundingBox] = {}
    for raw_key, raw_box in coordinates.items():
        key = PLAN_INFO_KEYS.get(raw_key)
        if key is None or raw_box is None:
            continue
        try:
            boxes[key] = _parse_box(key, raw_box, page_count)
        except (ValidationError, ValueError, TypeError) as exc:
            message = f"{key.value} の座標を無視しました: {exc}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)

    return {
        key: ExtractedField(key=key, value=values.get(key), box=boxes.get(key))
        for key in FieldKey
        if key in values or key in boxes
    }


def extract_address_candidates(payload: Mapping[str, Any]) -> List[str]:
    candidates: List[str] = []
    raw = payload.get("address_candidates") or payload.get("addressCandidates") or []
    if isinstance(raw, str):
        raw = [raw]
    plan_info = payload.get("planInfo") or {}
    if isinstance(plan_info, Mapping) and not raw:
        site_address = _text_value(plan_info.get("siteAddress"))
        raw = [site_address] if site_address else []
    for item in raw:
        text = _text_value(item)
        if text and text not in candidates:
            candidates.append(text)
        if len(candidates) >= MAX_ADDRESS_CANDIDATES:
            break
    return candidates


def extract_warnings(payload: Mapping[str, Any]) -> List[str]:
    raw = payload.get("warnings") or []
    if isinstance(raw, str):
        raw = [raw]
    return [text for text in (_text_value(item) for item in raw) if text]


async def assemble(
    payload: Mapping[str, Any],
    pages: Sequence[RenderedPage],
    refiner: Optional[OcrRefiner],
    *,
    warnings: Optional[List[str]] = None,
) -> List[ExtractedField]:
    """Merge model values with OCR-refined boxes, one entry per ``FieldKey``.

    Fields the model did not return come back as ``value=None, box=None``.
    """
    parsed = parse_model_payload(payload, page_count=len(pages), warnings=warnings)

    refined: Dict[FieldKey, BoundingBox] = {}
    if refiner is not None:
        targets = {
            key: field.box
            for key, field in parsed.items()
            if key in REFINABLE_FIELDS and field.box is not None
        }
        if targets:
            refined = await refiner.refine_fields({page.page: page for page in pages}, targets)

    fields: List[ExtractedField] = []
    for key in FieldKey:
        field = parsed.get(key)
        if field is None:
            fields.append(ExtractedField(key=key))
            continue
        box = refined.get(key)
        if box is not None and box is not field.box:
            field = field.model_copy(update={"box": box, "refined": True})
        fields.append(field)
    return fields
