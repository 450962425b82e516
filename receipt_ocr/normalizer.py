"""Normalisation of raw receipt guesses returned by the vision model.

The upstream model is asked for a specific JSON shape but nothing guarantees
that it complies.  ``normalize_receipt`` turns whatever came back into a
``NormalizedReceipt`` whose fields are always present and well-formed, by
substituting defaults for anything missing or malformed.  It never raises.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

LOGGER = logging.getLogger(__name__)

UNKNOWN_STORE_NAME = "店舗名不明"
FALLBACK_ITEM_NAME = "商品"

_THOUSANDS_SEPARATORS = re.compile(r"[,，]")
_LEADING_INTEGER = re.compile(r"\s*([+-]?[0-9]+)")

Clock = Callable[[], datetime]


class Category(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    DAILY = "daily"
    ENTERTAINMENT = "entertainment"
    MEDICAL = "medical"
    EDUCATION = "education"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> Optional["Category"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def resolve_category(value: Any, default: Category = Category.OTHER) -> Category:
    category = Category.parse(value)
    return category if category is not None else default


@dataclass
class RawItemGuess:
    name: Any = None
    price: Any = None
    category_id: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> "RawItemGuess":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            name=payload.get("name"),
            price=payload.get("price"),
            category_id=payload.get("categoryId"),
        )


@dataclass
class RawReceiptGuess:
    """Untrusted receipt data; any field may be absent or of the wrong type."""

    store_name: Any = None
    date: Any = None
    total: Any = None
    category_id: Any = None
    items: List[RawItemGuess] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawReceiptGuess":
        if not isinstance(payload, Mapping):
            return cls()
        raw_items = payload.get("items")
        items = [RawItemGuess.from_payload(entry) for entry in raw_items] if isinstance(raw_items, list) else []
        return cls(
            store_name=payload.get("storeName"),
            date=payload.get("date"),
            total=payload.get("total"),
            category_id=payload.get("categoryId"),
            items=items,
        )


class NormalizedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    price: str
    category_id: Category = Field(alias="categoryId")
    price_value: int = Field(default=0, ge=0, exclude=True)


class NormalizedReceipt(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: str = Field(alias="storeName", min_length=1)
    date: str = Field(min_length=1)
    total: str
    category_id: Category = Field(alias="categoryId")
    items: List[NormalizedItem] = Field(min_length=1)
    total_value: int = Field(default=0, ge=0, exclude=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def parse_amount(value: Any) -> int:
    """Parse a grouped integer amount such as ``"2,580"`` or ``"2，580"``.

    Parsing stops at the first non-digit, so ``"1,200円"`` yields 1200.
    Unparseable input, digit runs too long to convert and negative amounts
    become 0.
    """

    try:
        text = str(value or "0")
        match = _LEADING_INTEGER.match(_THOUSANDS_SEPARATORS.sub("", text))
        amount = int(match.group(1)) if match else 0
    except ValueError:
        LOGGER.debug("Amount has too many digits, using 0")
        return 0
    return max(amount, 0)


def format_amount(value: int) -> str:
    return f"{value:,}"


def format_timestamp(moment: datetime) -> str:
    return f"{moment.year}年{moment.month}月{moment.day}日 {moment:%H:%M}"


def _text_or_none(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            value = str(value)
        except ValueError:
            return None
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def normalize_receipt(raw: Any, *, clock: Optional[Clock] = None) -> NormalizedReceipt:
    """Build a display-ready receipt from ``raw``.

    ``raw`` may be a ``RawReceiptGuess`` or any decoded JSON value.  ``clock``
    supplies the timestamp used when the receipt carries no date; it defaults
    to the local wall clock.
    """

    guess = raw if isinstance(raw, RawReceiptGuess) else RawReceiptGuess.from_payload(raw)

    store_name = _text_or_none(guess.store_name)
    if store_name is None:
        LOGGER.debug("Store name missing, using placeholder")
        store_name = UNKNOWN_STORE_NAME

    date_text = _text_or_none(guess.date)
    if date_text is None:
        LOGGER.debug("Date missing, falling back to current time")
        date_text = format_timestamp((clock or datetime.now)())

    total = parse_amount(guess.total)
    category = resolve_category(guess.category_id)

    items: List[NormalizedItem] = []
    for entry in guess.items:
        name = _text_or_none(entry.name)
        if name is None:
            continue
        price = parse_amount(entry.price)
        items.append(
            NormalizedItem(
                name=name,
                price=format_amount(price),
                category_id=resolve_category(entry.category_id, category),
                price_value=price,
            )
        )

    if not items:
        items.append(
            NormalizedItem(
                name=FALLBACK_ITEM_NAME,
                price=format_amount(total),
                category_id=category,
                price_value=total,
            )
        )

    return NormalizedReceipt(
        store_name=store_name,
        date=date_text,
        total=format_amount(total),
        category_id=category,
        items=items,
        total_value=total,
    )


__all__ = [
    "Category",
    "FALLBACK_ITEM_NAME",
    "NormalizedItem",
    "NormalizedReceipt",
    "RawItemGuess",
    "RawReceiptGuess",
    "UNKNOWN_STORE_NAME",
    "format_amount",
    "format_timestamp",
    "normalize_receipt",
    "parse_amount",
    "resolve_category",
]
