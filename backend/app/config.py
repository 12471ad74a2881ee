"""Application settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str
    gemini_api_keys: tuple[str, ...]
    gemini_model: str
    canvas_size: int
    pdf_render_scale: float
    max_pdf_pages: int
    ocr_enabled: bool
    ocr_timeout_seconds: float
    ocr_padding: int
    ocr_lang: str
    document_ttl_seconds: float
    max_documents: int
    cors_allow_origins: tuple[str, ...]


@lru_cache()
def get_settings() -> Settings:
    gemini_api_keys_env = os.getenv("GEMINI_API_KEYS")
    if gemini_api_keys_env:
        raw_keys = [key.strip() for key in gemini_api_keys_env.split(",")]
        gemini_api_keys = tuple(key for key in raw_keys if key)
    else:
        gemini_api_keys = tuple()

    gemini_api_key = (os.getenv("GEMINI_API_KEY") or "").strip()

    if not gemini_api_keys:
        # キー未設定でも計算APIは動かすため、ここでは例外にしない
        gemini_api_keys = (gemini_api_key,) if gemini_api_key else tuple()
    elif gemini_api_key and gemini_api_key not in gemini_api_keys:
        # Ensure GEMINI_API_KEY is always considered primary if provided separately.
        gemini_api_keys = (gemini_api_key,) + tuple(key for key in gemini_api_keys if key != gemini_api_key)
    else:
        gemini_api_key = gemini_api_keys[0]

    cors_env = os.getenv("CORS_ALLOW_ORIGINS", "*")
    cors_allow_origins = tuple(origin.strip() for origin in cors_env.split(",") if origin.strip())

    return Settings(
        gemini_api_key=gemini_api_key,
        gemini_api_keys=gemini_api_keys,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        canvas_size=int(os.getenv("CANVAS_SIZE", "1000")),
        pdf_render_scale=float(os.getenv("PDF_RENDER_SCALE", "2.0")),
        max_pdf_pages=int(os.getenv("MAX_PDF_PAGES", "10")),
        ocr_enabled=os.getenv("OCR_ENABLED", "true").strip().lower() in _TRUTHY,
        ocr_timeout_seconds=float(os.getenv("OCR_TIMEOUT_SECONDS", "5.0")),
        ocr_padding=int(os.getenv("OCR_PADDING", "10")),
        ocr_lang=os.getenv("OCR_LANG", "jpn+eng"),
        document_ttl_seconds=float(os.getenv("DOCUMENT_TTL_SECONDS", "1800")),
        max_documents=int(os.getenv("MAX_DOCUMENTS", "100")),
        cors_allow_origins=cors_allow_origins or ("*",),
    )
