"""Gemini API helper for locating valuation fields on normalized pages."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from .models import NORMALIZED_MAX

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
REQUEST_TIMEOUT_SECONDS = 120
ROTATE_STATUS_CODES = {403, 429}


class GeminiError(RuntimeError):
    """Raised when the Gemini service returns an error payload."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_quota_error(self) -> bool:
        return self.status_code == 429


class GeminiClient:
    def __init__(self, *, api_keys: Sequence[str], model: str) -> None:
        if isinstance(api_keys, str):
            api_keys = (api_keys,)
        self.api_keys = tuple(key for key in api_keys if key)
        if not self.api_keys:
            raise GeminiError("GEMINI_API_KEY が未設定です")
        self.model = model
        self.endpoint = f"{API_BASE}/{model}:generateContent"

    def locate_fields(self, page_images: Sequence[bytes]) -> Dict[str, Any]:
        """Send the PNG canvases in page order and return the parsed JSON object."""
        if not page_images:
            raise GeminiError("No pages to analyze")
        payload = self._build_payload(page_images)
        data = self._invoke_generate(payload)
        return self._parse_response(data)

    def _invoke_generate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[GeminiError] = None
        for index, api_key in enumerate(self.api_keys):
            try:
                response = requests.post(
                    self.endpoint,
                    headers={"x-goog-api-key": api_key},
                    json=payload,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                # requests の例外文言には URL が含まれるため型名だけを返す
                raise GeminiError(f"Gemini request failed: {type(exc).__name__}") from exc
            if response.status_code < 400:
                try:
                    return response.json()
                except ValueError as exc:
                    raise GeminiError("Gemini returned a non-JSON body") from exc
            last_error = GeminiError(self._extract_error(response), status_code=response.status_code)
            if response.status_code not in ROTATE_STATUS_CODES:
                raise last_error
            logger.warning(
                "Gemini key #%s rejected with %s; trying next key",
                index + 1,
                response.status_code,
            )
        if last_error is None:
            raise GeminiError("No Gemini API key was tried")
        raise last_error

    def _build_payload(self, page_images: Sequence[bytes]) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": self._prompt_text(len(page_images))}]
        for image in page_images:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": "image/png",
                        "data": base64.b64encode(image).decode("ascii"),
                    }
                }
            )
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": parts,
                }
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }

    @staticmethod
    def _prompt_text(page_count: int) -> str:
        return (
            "You are reading Japanese real-estate documents (registry extracts, tax notices, sales brochures). "
            f"The {page_count} attached image(s) are the document pages in order, numbered from 1, each drawn "
            "on a white square canvas. Return ONLY a JSON object with these keys:\n"
            "- planInfo: projectName, siteAddress, buildingName, structure (one of 木造, 軽量鉄骨造, 重量鉄骨造, "
            "RC造・SRC造), area_m2 (land area in m2), floorArea (m2), roadPrice (yen per m2), age (years), "
            "usefulLife (years), landTaxValue, buildingTaxValue (固定資産税評価額), landFixedAssetTax, "
            "landCityPlanningTax, buildingFixedAssetTax, buildingCityPlanningTax (annual tax in yen). "
            "Use null when a value is missing or unclear. Do not guess.\n"
            "- coordinates: for each field above that you found (use the keys landArea for area_m2 and address "
            "for siteAddress), an object {\"box\": [ymin, xmin, ymax, xmax], \"page\": n} locating the value text. "
            f"Box values are integers in 0-{NORMALIZED_MAX} relative to the whole square image, including its "
            "white margins.\n"
            "- address_candidates: up to 3 strings with possible site addresses.\n"
            "- warnings: strings describing ambiguities.\n"
            "Do not add explanations or markdown. Return raw JSON only."
        )

    @staticmethod
    def _extract_error(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text
        return json.dumps(payload)

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> Dict[str, Any]:
        candidates = data.get("candidates") or []
        if not candidates:
            raise GeminiError("No candidates returned from Gemini API")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            raise GeminiError("Candidate contains no parts")
        text = (parts[0].get("text") or "").strip()
        if not text:
            raise GeminiError("Gemini response did not contain text")
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or start > end:
            raise GeminiError("Valid JSON object not found in response")
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise GeminiError(f"Failed to decode JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise GeminiError("Gemini JSON payload is not an object")
        return parsed
