"""OpenAI chat-completions client used to read receipt images."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import requests
from requests import Response

from .normalizer import Category
from .settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

_CATEGORY_CHOICES = "|".join(category.value for category in Category)

SYSTEM_PROMPT = (
    "あなたは日本のレシート画像を読み取り、家計簿アプリ向けのJSONに変換するアシスタントです。"
    "説明文は付けず、次の形式のJSONオブジェクトだけを返してください。\n"
    "{\n"
    '  "storeName": "店舗名",\n'
    '  "date": "YYYY年M月D日 HH:mm（分まで）",\n'
    '  "total": "合計金額（カンマ区切り、例: 2,580）",\n'
    f'  "categoryId": "{_CATEGORY_CHOICES} のいずれか（レシート全体）",\n'
    '  "items": [\n'
    "    {\n"
    '      "name": "品目名",\n'
    '      "price": "金額（カンマ区切り）",\n'
    f'      "categoryId": "{_CATEGORY_CHOICES} のいずれか（品目ごと）"\n'
    "    }\n"
    "  ]\n"
    "}\n"
    "文字が不鮮明な箇所も、読み取れる範囲で推測して埋めてください。"
)

USER_PROMPT = "このレシート画像の内容を、指定した形式のJSONで返してください。"

MISSING_API_KEY_MESSAGE = "OPENAI_API_KEY is not set on the server."


class OpenAIAPIError(RuntimeError):
    """Raised when the OpenAI API rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, response_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class OpenAIResponseError(RuntimeError):
    """Raised when a successful OpenAI response cannot be interpreted."""

    def __init__(self, message: str, *, response_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.response_text = response_text


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def build_request_body(image_src: str, *, model: str) -> JsonDict:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": [{"type": "text", "text": SYSTEM_PROMPT}]},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_src}},
                ],
            },
        ],
        "response_format": {"type": "json_object"},
    }


def _error_message(response: Response) -> str:
    text = response.text
    message = f"OpenAI API エラー ({response.status_code})"
    try:
        payload = json.loads(text)
    except ValueError:
        return f"{message}: {text}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return f"{message}: {error['message']}"
    return f"{message}: {text}"


def _handle_response(response: Response) -> Any:
    text = response.text
    if not response.ok:
        LOGGER.error("OpenAI API error: status=%s body=%s", response.status_code, text.strip())
        raise OpenAIAPIError(
            _error_message(response),
            status_code=response.status_code,
            response_text=text,
        )

    try:
        payload = json.loads(text)
    except ValueError as exc:
        LOGGER.error("OpenAI response is not JSON: %s", text)
        raise OpenAIResponseError("Failed to parse OpenAI JSON response.", response_text=text) from exc

    content = _message_content(payload)
    if not content:
        LOGGER.error("Unexpected OpenAI response structure: %s", payload)
        raise OpenAIResponseError("Unexpected OpenAI response format.", response_text=text)

    try:
        return json.loads(content)
    except ValueError as exc:
        LOGGER.error("OpenAI message content is not JSON: %s", content)
        raise OpenAIResponseError("Failed to parse OpenAI content as JSON.", response_text=content) from exc


def _message_content(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def request_receipt_guess(image_src: str, *, settings: Optional[Settings] = None) -> Any:
    """Send ``image_src`` to the vision model and return its decoded JSON answer.

    ``image_src`` is anything the API accepts as an image URL, including
    ``data:`` URIs.  The result is untrusted and should go through
    ``normalize_receipt``.
    """

    settings = settings or get_settings()
    if not settings.openai_api_key:
        raise OpenAIAPIError(MISSING_API_KEY_MESSAGE)

    body = build_request_body(image_src, model=settings.openai_model)
    try:
        response = requests.post(
            settings.openai_api_url,
            headers=_headers(settings.openai_api_key),
            json=body,
            timeout=settings.openai_timeout,
        )
    except requests.RequestException as exc:
        LOGGER.error("OpenAI API request failure: %s", exc)
        raise OpenAIAPIError("request_failed") from exc
    return _handle_response(response)


__all__ = [
    "MISSING_API_KEY_MESSAGE",
    "OpenAIAPIError",
    "OpenAIResponseError",
    "build_request_body",
    "request_receipt_guess",
]
