"""FastAPI application exposing the receipt OCR endpoint."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import openai_client
from .normalizer import NormalizedReceipt, normalize_receipt
from .settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Receipt OCR Service")

IMAGE_SRC_REQUIRED = "imageSrc is required."


class ReceiptOCRRequest(BaseModel):
    image_src: Optional[Any] = Field(default=None, alias="imageSrc")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        detail = "Method not allowed"
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Only the body is validated, so any failure means imageSrc could not be read.
    LOGGER.info("Rejected request body: %s", exc.errors())
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": IMAGE_SRC_REQUIRED})


@app.post("/api/receipt-ocr", response_model=NormalizedReceipt)
def extract_receipt(
    payload: Optional[ReceiptOCRRequest] = None,
    settings: Settings = Depends(get_settings),
) -> NormalizedReceipt:
    if not settings.openai_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=openai_client.MISSING_API_KEY_MESSAGE,
        )

    image_src = payload.image_src if payload else None
    if not image_src or not isinstance(image_src, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=IMAGE_SRC_REQUIRED)

    try:
        guess = openai_client.request_receipt_guess(image_src, settings=settings)
    except openai_client.OpenAIAPIError as exc:
        if exc.status_code is None:
            LOGGER.exception("OpenAI request failed: %s", exc)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except openai_client.OpenAIResponseError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return normalize_receipt(guess, clock=settings.now)


__all__ = ["app"]
