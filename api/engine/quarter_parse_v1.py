from __future__ import annotations

import math
import re
from typing import Any

from api.engine.constants import QUARTER_STEP


QUARTER_PARSE_VERSION = "quarter_parse_v1"

_EMPTY_TOKENS = {"", "-", "\u2014"}
_EXOTIC_WHITESPACE_RE = re.compile(r"[\s\u00a0\u2000-\u200b\u202f]")


def _normalize_separators(token: str) -> str:
    last_dot = token.rfind(".")
    last_comma = token.rfind(",")

    if last_comma > -1 and last_dot > -1:
        if last_comma > last_dot:
            return token.replace(".", "").replace(",", ".", 1)
        return token.replace(",", "")

    if last_comma > -1:
        # A lone comma is read as the decimal point ("1,234" -> 1.234).
        return token.replace(",", ".", 1)

    return token


def snap_to_quarter(value: float) -> float:
    steps = math.floor((value / QUARTER_STEP) + 0.5)
    return float(steps) * QUARTER_STEP


def parse_quarter(value: Any) -> float:
    """Parse a spreadsheet cost cell into a non-negative multiple of 0.25.

    Malformed, negative and non-finite cells are clamped to 0 rather than
    rejected. When both ``,`` and ``.`` appear, whichever occurs later is the
    decimal point and the other is dropped as a thousands separator.
    """

    if value is None or isinstance(value, bool):
        return 0.0

    token = str(value).strip()
    if token in _EMPTY_TOKENS:
        return 0.0

    token = _EXOTIC_WHITESPACE_RE.sub("", token)
    token = _normalize_separators(token)
    if token == "":
        return 0.0

    try:
        number = float(token)
    except ValueError:
        return 0.0

    if not math.isfinite(number) or number < 0:
        return 0.0
    return snap_to_quarter(number)
