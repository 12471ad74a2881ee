from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from .calculators import (
    CalculationValidationError,
    InvalidRateError,
    ZeroDenominatorError,
    apportionment,
    proration,
    valuation,
)
from .canvas import PDF_CONTENT_TYPE, DecodeError, encode_png, load_document
from .config import Settings, get_settings
from .coordinates import to_page_pixels
from .document_store import ANONYMOUS_CLIENT, DocumentStore
from .extraction import assemble, extract_address_candidates, extract_warnings
from .gemini import GeminiClient, GeminiError
from .models import (
    ApportionmentRequest,
    ApportionmentResponse,
    CalculatorRequest,
    ExtractionResponse,
    FieldKey,
    HighlightRect,
    HighlightResponse,
    PageGeometry,
    TaxProrationRequest,
    TaxProrationResponse,
    ValuationRequest,
    ValuationResponse,
)
from .ocr import OcrRefiner, TesseractRecognizer

logger = logging.getLogger("uvicorn.error")
settings = get_settings()

app = FastAPI(title="Sekisan Backend", version="0.3.0")

FIELD_LABELS: Dict[FieldKey, str] = {
    FieldKey.LAND_AREA: "土地面積",
    FieldKey.FLOOR_AREA: "延床面積",
    FieldKey.STRUCTURE: "構造",
    FieldKey.ADDRESS: "所在地",
    FieldKey.ROAD_PRICE: "路線価",
    FieldKey.AGE: "築年数",
    FieldKey.USEFUL_LIFE: "法定耐用年数",
    FieldKey.PROJECT_NAME: "物件名",
    FieldKey.BUILDING_NAME: "建物名",
    FieldKey.LAND_TAX_VALUE: "土地評価額",
    FieldKey.BUILDING_TAX_VALUE: "建物評価額",
    FieldKey.LAND_FIXED_ASSET_TAX: "土地固定資産税",
    FieldKey.LAND_CITY_PLANNING_TAX: "土地都市計画税",
    FieldKey.BUILDING_FIXED_ASSET_TAX: "建物固定資産税",
    FieldKey.BUILDING_CITY_PLANNING_TAX: "建物都市計画税",
}

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

document_store = DocumentStore(
    ttl_seconds=settings.document_ttl_seconds,
    max_documents=settings.max_documents,
)


def _client_id(x_user_id: Optional[str]) -> str:
    return (x_user_id or "").strip() or ANONYMOUS_CLIENT


async def _load_file_bytes(file: UploadFile) -> Tuple[bytes, str]:
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    content_type = (file.content_type or "").lower()
    if contents[:5] == b"%PDF-":
        content_type = PDF_CONTENT_TYPE
    if content_type != PDF_CONTENT_TYPE and not content_type.startswith("image/"):
        raise HTTPException(status_code=415, detail="Only PDF documents and images are supported")
    return contents, content_type


def _build_refiner(settings: Settings) -> Optional[OcrRefiner]:
    if not settings.ocr_enabled:
        return None
    return OcrRefiner(
        TesseractRecognizer(lang=settings.ocr_lang, timeout=settings.ocr_timeout_seconds),
        padding=settings.ocr_padding,
        timeout=settings.ocr_timeout_seconds,
    )


def _log_timing(document_id: str, component: str, page: int, start_ts: float) -> None:
    duration_ms = (time.perf_counter() - start_ts) * 1000.0
    logger.info("TIMING|%s|%s|%s|%.2f", document_id, component, page, duration_ms)


def _missing_fields_error(exc: CalculationValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"code": "missing_fields", "fields": exc.fields, "message": str(exc)},
    )


def _ensure_finite(request: CalculatorRequest) -> None:
    fields = request.non_finite_fields()
    if fields:
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_number", "fields": fields, "message": "数値として扱えない値が含まれています"},
        )


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/estimate/parse", response_model=ExtractionResponse)
async def parse_estimate(
    files: List[UploadFile] = File(...),
    x_user_id: Optional[str] = Header(None),
) -> ExtractionResponse:
    settings = get_settings()
    if not settings.gemini_api_keys:
        raise HTTPException(status_code=503, detail="GEMINI_API_KEY が未設定です")

    uploads = [await _load_file_bytes(file) for file in files]
    client_id = _client_id(x_user_id)
    # 新しい資料の正規化前に、前回の画像を解放する
    document_store.release(client_id)

    job_timer = time.perf_counter()
    normalize_timer = time.perf_counter()
    try:
        pages = await asyncio.to_thread(
            load_document,
            uploads,
            canvas_size=settings.canvas_size,
            pdf_render_scale=settings.pdf_render_scale,
            max_pdf_pages=settings.max_pdf_pages,
        )
    except DecodeError as exc:
        logger.warning("Document decode failed: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    record = document_store.register(client_id, pages)
    _log_timing(record.document_id, "NORMALIZE", len(pages), normalize_timer)

    model_timer = time.perf_counter()
    try:
        client = GeminiClient(api_keys=settings.gemini_api_keys, model=settings.gemini_model)
        payload = await asyncio.to_thread(client.locate_fields, [encode_png(page.canvas) for page in pages])
    except GeminiError as exc:
        logger.error("Gemini extraction failed: %s", exc)
        document_store.discard(client_id, record.document_id)
        if exc.is_quota_error:
            raise HTTPException(status_code=429, detail="Gemini API quota exceeded") from exc
        raise HTTPException(status_code=502, detail="Gemini extraction failed") from exc
    _log_timing(record.document_id, "GEMINI", 0, model_timer)

    warnings = extract_warnings(payload)
    refine_timer = time.perf_counter()
    fields = await assemble(payload, pages, _build_refiner(settings), warnings=warnings)
    _log_timing(record.document_id, "OCR_REFINE", 0, refine_timer)
    document_store.update_fields(client_id, record.document_id, fields)
    _log_timing(record.document_id, "JOB_TOTAL", 0, job_timer)

    return ExtractionResponse(
        status="ok",
        document_id=record.document_id,
        pages=[
            PageGeometry(
                page=page.page,
                source_width=page.geometry.source_width,
                source_height=page.geometry.source_height,
                canvas_size=page.geometry.canvas_size,
                scale=page.geometry.scale,
                offset_x=page.geometry.offset_x,
                offset_y=page.geometry.offset_y,
            )
            for page in pages
        ],
        fields=fields,
        address_candidates=extract_address_candidates(payload),
        warnings=warnings,
    )


@app.get("/api/documents/{document_id}/highlights", response_model=HighlightResponse)
def get_highlights(document_id: str, x_user_id: Optional[str] = Header(None)) -> HighlightResponse:
    record = document_store.get(_client_id(x_user_id), document_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Document not found")
    highlights: List[HighlightRect] = []
    for field in record.fields:
        if field.box is None:
            continue
        page = record.page(field.box.page)
        if page is None:
            continue
        geometry = page.geometry
        rect = to_page_pixels(field.box, geometry).clamp(geometry.source_width, geometry.source_height)
        highlights.append(
            HighlightRect(
                key=field.key,
                label=FIELD_LABELS[field.key],
                page=geometry.page,
                left=rect.left,
                top=rect.top,
                right=rect.right,
                bottom=rect.bottom,
            )
        )
    return HighlightResponse(document_id=record.document_id, highlights=highlights)


@app.post("/api/calc/valuation", response_model=ValuationResponse)
def calc_valuation(request: ValuationRequest) -> ValuationResponse:
    _ensure_finite(request)
    try:
        result = valuation.calculate(request.to_inputs())
    except CalculationValidationError as exc:
        raise _missing_fields_error(exc) from exc
    return ValuationResponse.from_result(result, valuation.formula_lines(result))


@app.post("/api/calc/apportionment", response_model=ApportionmentResponse)
def calc_apportionment(request: ApportionmentRequest) -> ApportionmentResponse:
    _ensure_finite(request)
    try:
        result = apportionment.calculate(request.to_inputs())
    except CalculationValidationError as exc:
        raise _missing_fields_error(exc) from exc
    except ZeroDenominatorError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "zero_denominator", "message": str(exc)},
        ) from exc
    except InvalidRateError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_rate", "message": str(exc)},
        ) from exc
    return ApportionmentResponse.from_result(result)


@app.post("/api/calc/tax-proration", response_model=TaxProrationResponse)
def calc_tax_proration(request: TaxProrationRequest) -> TaxProrationResponse:
    _ensure_finite(request)
    try:
        result = proration.calculate(request.to_inputs())
    except CalculationValidationError as exc:
        raise _missing_fields_error(exc) from exc
    return TaxProrationResponse.from_result(result)


@app.on_event("startup")
def log_startup() -> None:
    settings = get_settings()
    logger.info("Gemini model: %s (%s key(s))", settings.gemini_model, len(settings.gemini_api_keys))
    logger.info(
        "Canvas: size=%s, pdf_scale=%s, max_pdf_pages=%s",
        settings.canvas_size,
        settings.pdf_render_scale,
        settings.max_pdf_pages,
    )
    logger.info(
        "OCR refinement: enabled=%s, lang=%s, timeout=%ss",
        settings.ocr_enabled,
        settings.ocr_lang,
        settings.ocr_timeout_seconds,
    )
