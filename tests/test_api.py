"""Route tests for the FastAPI app (Gemini and OCR are stubbed)."""
from dataclasses import replace
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from backend.app import main
from backend.app.config import get_settings
from backend.app.gemini import GeminiError


def _png(width, height):
    buffer = BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


PNG_200x100 = _png(200, 100)

MODEL_PAYLOAD = {
    "planInfo": {"area_m2": 120, "structure": "木造", "siteAddress": "東京都港区1-1"},
    "coordinates": {"landArea": {"box": [300, 100, 400, 500], "page": 1}},
    "address_candidates": ["東京都港区1-1"],
    "warnings": [],
}


class FakeGeminiClient:
    payload = MODEL_PAYLOAD
    error = None

    def __init__(self, *, api_keys, model):
        self.api_keys = api_keys

    def locate_fields(self, page_images):
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def settings():
    return replace(
        get_settings(),
        gemini_api_key="test-key",
        gemini_api_keys=("test-key",),
        ocr_enabled=False,
    )


@pytest.fixture
def client(monkeypatch, settings):
    FakeGeminiClient.payload = MODEL_PAYLOAD
    FakeGeminiClient.error = None
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "GeminiClient", FakeGeminiClient)
    monkeypatch.setattr(main, "document_store", main.DocumentStore())
    return TestClient(main.app)


def _upload(client, payload=None, content_type="image/png", user="user-1"):
    payload = payload if payload is not None else PNG_200x100
    return client.post(
        "/api/estimate/parse",
        files=[("files", ("plan.png", payload, content_type))],
        headers={"X-User-ID": user},
    )


class TestEstimateParse:
    """資料アップロード → 正規化 → モデル → フィールド一覧"""

    def test_success(self, client):
        response = _upload(client)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["pages"][0]["canvasSize"] == 1000
        assert body["pages"][0]["offsetY"] == pytest.approx(250)
        fields = {field["key"]: field for field in body["fields"]}
        assert len(body["fields"]) == 15
        assert fields["landArea"]["value"] == 120
        assert fields["landArea"]["box"] == {"yMin": 300, "xMin": 100, "yMax": 400, "xMax": 500, "page": 1}
        assert fields["floorArea"]["value"] is None
        assert fields["floorArea"]["box"] is None
        assert body["addressCandidates"] == ["東京都港区1-1"]

    def test_highlights_in_page_pixels(self, client):
        document_id = _upload(client).json()["documentId"]
        response = client.get(f"/api/documents/{document_id}/highlights", headers={"X-User-ID": "user-1"})
        assert response.status_code == 200
        highlights = response.json()["highlights"]
        assert len(highlights) == 1
        rect = highlights[0]
        assert rect["label"] == "土地面積"
        assert (rect["left"], rect["top"], rect["right"], rect["bottom"]) == pytest.approx((20, 10, 100, 30))

    def test_new_upload_invalidates_previous_document(self, client):
        first = _upload(client).json()["documentId"]
        second = _upload(client).json()["documentId"]
        assert client.get(f"/api/documents/{first}/highlights", headers={"X-User-ID": "user-1"}).status_code == 404
        assert client.get(f"/api/documents/{second}/highlights", headers={"X-User-ID": "user-1"}).status_code == 200

    def test_document_is_scoped_to_client(self, client):
        document_id = _upload(client).json()["documentId"]
        response = client.get(f"/api/documents/{document_id}/highlights", headers={"X-User-ID": "someone-else"})
        assert response.status_code == 404

    def test_empty_file(self, client):
        assert _upload(client, payload=b"").status_code == 400

    def test_unsupported_media_type(self, client):
        assert _upload(client, payload=b"hello", content_type="text/plain").status_code == 415

    def test_undecodable_image(self, client):
        assert _upload(client, payload=b"garbage", content_type="image/jpeg").status_code == 400

    def test_missing_api_key(self, client, monkeypatch, settings):
        monkeypatch.setattr(main, "get_settings", lambda: replace(settings, gemini_api_key="", gemini_api_keys=()))
        assert _upload(client).status_code == 503

    @pytest.mark.parametrize("upstream,expected", [(429, 429), (500, 502), (None, 502)])
    def test_gemini_errors(self, client, upstream, expected):
        FakeGeminiClient.error = GeminiError("failed", status_code=upstream)
        response = _upload(client)
        assert response.status_code == expected
        assert len(main.document_store) == 0

    def test_upstream_error_text_is_not_returned(self, client):
        FakeGeminiClient.error = GeminiError("url: /generateContent?key=SECRETKEY123", status_code=None)
        response = _upload(client)
        assert response.status_code == 502
        assert "SECRETKEY123" not in response.text


class TestCalculatorRoutes:
    def test_valuation(self, client):
        response = client.post(
            "/api/calc/valuation",
            json={
                "landMethod": "auto",
                "roadPrice": 100000,
                "landArea": 120,
                "structure": "木造",
                "age": 10,
                "floorArea": 80,
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 18_545_454
        assert body["method"] == "road"
        assert body["methodWasAuto"] is True
        assert len(body["formula"]) == 3

    def test_valuation_missing_fields(self, client):
        response = client.post("/api/calc/valuation", json={"landMethod": "road"})
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "missing_fields"
        assert detail["fields"] == ["roadPrice", "landArea", "age", "floorArea"]

    def test_apportionment(self, client):
        response = client.post(
            "/api/calc/apportionment",
            json={"salePrice": 30_000_000, "landAssessedValue": 6_000_000, "buildingAssessedValue": 4_000_000},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["landPrice"] + body["buildingPriceIncl"] == 30_000_000
        assert body["consumptionTax"] == 1_090_909

    def test_apportionment_zero_denominator(self, client):
        response = client.post(
            "/api/calc/apportionment",
            json={"salePrice": 1_000_000, "landAssessedValue": 0, "buildingAssessedValue": 0},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "zero_denominator"

    @pytest.mark.parametrize("value", ["Infinity", "-Infinity", "NaN"])
    def test_non_finite_numbers_are_rejected(self, client, value):
        response = client.post(
            "/api/calc/valuation",
            content='{"landMethod": "road", "roadPrice": ' + value + ', "landArea": 100, "age": 1, "floorArea": 50}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "invalid_number"
        assert detail["fields"] == ["roadPrice"]

    def test_negative_tax_rate_is_rejected(self, client):
        response = client.post(
            "/api/calc/apportionment",
            json={"salePrice": 1000, "landAssessedValue": 1, "buildingAssessedValue": 1, "taxRate": -100},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "invalid_rate"

    def test_tax_proration(self, client):
        response = client.post(
            "/api/calc/tax-proration",
            json={
                "landFixedAssetTax": 100000,
                "landCityPlanningTax": 20000,
                "buildingFixedAssetTax": 50000,
                "buildingCityPlanningTax": 10000,
                "settlementDate": "2023-04-01",
                "fiscalStart": "calendarYear",
                "taxable": True,
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert (body["sellerDays"], body["buyerDays"]) == (90, 275)
        assert body["buyerConsumptionTax"] == 4_520
        assert body["sellerPeriod"] == "1月1日 ～ 3月31日"

    def test_tax_proration_missing_date(self, client):
        response = client.post("/api/calc/tax-proration", json={"landFixedAssetTax": 1000})
        assert response.status_code == 422
        assert response.json()["detail"]["fields"] == ["settlementDate"]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}
