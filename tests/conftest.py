from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from receipt_ocr.settings import Settings  # noqa: E402


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2025, 10, 10, 9, 5, 42)


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test", timezone="Asia/Tokyo")


def pytest_make_parametrize_id(config, val, argname):
    # str() of ints beyond sys.get_int_max_str_digits() raises during test-id generation.
    if isinstance(val, int) and not isinstance(val, bool) and val.bit_length() > 64:
        return f"{argname}-int{val.bit_length()}bits"
    return None
