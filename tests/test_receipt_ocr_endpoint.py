from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from receipt_ocr import openai_client
from receipt_ocr.main import ReceiptOCRRequest, app, extract_receipt
from receipt_ocr.settings import Settings, get_settings


@pytest.fixture
def client(settings: Settings):
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_receipt_ocr_normalizes_model_output(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    calls: Dict[str, Any] = {}

    def fake_guess(image_src: str, *, settings: Settings) -> Dict[str, Any]:
        calls["image_src"] = image_src
        return {
            "storeName": "スターバックス",
            "date": "2025年10月10日 09:05",
            "total": "1，080",
            "categoryId": "food",
            "items": [
                {"name": "ラテ", "price": "540", "categoryId": "food"},
                {"name": "", "price": "999"},
                {"name": "タンブラー", "price": "540", "categoryId": "sports"},
            ],
        }

    monkeypatch.setattr("receipt_ocr.main.openai_client.request_receipt_guess", fake_guess)

    receipt = extract_receipt(ReceiptOCRRequest(imageSrc="https://example.com/receipt.jpg"), settings=settings)

    assert calls["image_src"] == "https://example.com/receipt.jpg"
    assert receipt.to_payload() == {
        "storeName": "スターバックス",
        "date": "2025年10月10日 09:05",
        "total": "1,080",
        "categoryId": "food",
        "items": [
            {"name": "ラテ", "price": "540", "categoryId": "food"},
            {"name": "タンブラー", "price": "540", "categoryId": "food"},
        ],
    }


def test_receipt_ocr_uses_settings_clock_for_missing_date(
    monkeypatch: pytest.MonkeyPatch, settings: Settings
) -> None:
    monkeypatch.setattr("receipt_ocr.main.openai_client.request_receipt_guess", lambda *_, **__: {})
    monkeypatch.setattr(Settings, "now", lambda self: datetime(2025, 1, 2, 3, 4))

    receipt = extract_receipt(ReceiptOCRRequest(imageSrc="data:image/png;base64,AAAA"), settings=settings)

    assert receipt.date == "2025年1月2日 03:04"


@pytest.mark.parametrize("payload", [None, ReceiptOCRRequest(), ReceiptOCRRequest(imageSrc=""), ReceiptOCRRequest(imageSrc=12)])
def test_receipt_ocr_requires_image_src(payload: Any, settings: Settings) -> None:
    with pytest.raises(HTTPException) as exc:
        extract_receipt(payload, settings=settings)

    assert exc.value.status_code == 400
    assert exc.value.detail == "imageSrc is required."


def test_receipt_ocr_requires_api_key() -> None:
    with pytest.raises(HTTPException) as exc:
        extract_receipt(ReceiptOCRRequest(imageSrc="https://example.com/r.jpg"), settings=Settings(openai_api_key=None))

    assert exc.value.status_code == 500
    assert exc.value.detail == "OPENAI_API_KEY is not set on the server."


def test_upstream_status_is_forwarded(monkeypatch: pytest.MonkeyPatch, client: TestClient) -> None:
    def fake_guess(*_: Any, **__: Any) -> Dict[str, Any]:
        raise openai_client.OpenAIAPIError("OpenAI API エラー (429): Rate limit reached", status_code=429)

    monkeypatch.setattr("receipt_ocr.main.openai_client.request_receipt_guess", fake_guess)

    response = client.post("/api/receipt-ocr", json={"imageSrc": "https://example.com/r.jpg"})

    assert response.status_code == 429
    assert response.json() == {"error": "OpenAI API エラー (429): Rate limit reached"}


def test_transport_failure_is_server_error(monkeypatch: pytest.MonkeyPatch, client: TestClient) -> None:
    def fake_guess(*_: Any, **__: Any) -> Dict[str, Any]:
        raise openai_client.OpenAIAPIError("request_failed")

    monkeypatch.setattr("receipt_ocr.main.openai_client.request_receipt_guess", fake_guess)

    response = client.post("/api/receipt-ocr", json={"imageSrc": "https://example.com/r.jpg"})

    assert response.status_code == 500
    assert response.json() == {"error": "request_failed"}


def test_unparseable_upstream_response(monkeypatch: pytest.MonkeyPatch, client: TestClient) -> None:
    def fake_guess(*_: Any, **__: Any) -> Dict[str, Any]:
        raise openai_client.OpenAIResponseError("Failed to parse OpenAI content as JSON.")

    monkeypatch.setattr("receipt_ocr.main.openai_client.request_receipt_guess", fake_guess)

    response = client.post("/api/receipt-ocr", json={"imageSrc": "https://example.com/r.jpg"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to parse OpenAI content as JSON."}


def test_success_response_body(monkeypatch: pytest.MonkeyPatch, client: TestClient) -> None:
    monkeypatch.setattr(
        "receipt_ocr.main.openai_client.request_receipt_guess",
        lambda *_, **__: {"storeName": "ローソン", "date": "2025年10月10日 21:15", "total": "450"},
    )

    response = client.post("/api/receipt-ocr", json={"imageSrc": "https://example.com/r.jpg"})

    assert response.status_code == 200
    assert response.json() == {
        "storeName": "ローソン",
        "date": "2025年10月10日 21:15",
        "total": "450",
        "categoryId": "other",
        "items": [{"name": "商品", "price": "450", "categoryId": "other"}],
    }


def test_missing_body_is_bad_request(client: TestClient) -> None:
    response = client.post("/api/receipt-ocr")

    assert response.status_code == 400
    assert response.json() == {"error": "imageSrc is required."}


def test_get_is_not_allowed(client: TestClient) -> None:
    response = client.get("/api/receipt-ocr")

    assert response.status_code == 405
    assert response.json() == {"error": "Method not allowed"}


@pytest.mark.parametrize("body", ['"abc"', "[1, 2]", "42", "null", "{not json"])
def test_non_object_body_is_bad_request(body: str, client: TestClient) -> None:
    response = client.post(
        "/api/receipt-ocr",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "imageSrc is required."}


def test_non_string_image_src_is_bad_request(client: TestClient) -> None:
    response = client.post("/api/receipt-ocr", json={"imageSrc": {"url": "https://example.com/r.jpg"}})

    assert response.status_code == 400
    assert response.json() == {"error": "imageSrc is required."}
