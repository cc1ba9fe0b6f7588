# catalog_ingest/filters/text_parsers.py

"""Heuristic price / MOQ / order-count parsing and keyword exclusion.

Every function here is pure: free text in, number (or ``None``) out.
Marketplace cards mix English and Chinese markers, currency symbols and
unit words, so each parser tries a short ordered list of patterns and the
first pattern that yields a number wins.
"""

import logging
import math
import re
from dataclasses import dataclass

from catalog_ingest.config.settings import Settings

logger = logging.getLogger("catalog_ingest.filters")

# ── Shared fragments ─────────────────────────────────────

_CURRENCY_MARKER = r"US\$|\$|USD|RMB|CNY|¥|￥"

_HAS_CURRENCY_RE = re.compile(r"[$¥￥]|USD|RMB|CNY", re.IGNORECASE)

# 1,299.00 -> 1299.00 (only true thousands groups)
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")

# ── Price ────────────────────────────────────────────────

_PRICE_WITH_MARKER_RE = re.compile(
    rf"({_CURRENCY_MARKER})\s?(\d{{1,6}}(?:\.\d{{1,2}})?)",
    re.IGNORECASE,
)

_PRICE_BARE_RE = re.compile(r"(\d{1,6}(?:\.\d{1,2})?)")

# ── MOQ ──────────────────────────────────────────────────

_MOQ_ENGLISH_RE = re.compile(
    r"(?:MOQ|Min\.?\s*Order(?:\s*Quantity)?|Minimum\s*Order(?:\s*Quantity)?|≥)"
    r"\s*[:：]?\s*([\d,]+)",
    re.IGNORECASE,
)

_MOQ_CHINESE_RE = re.compile(
    r"(?:最小起订量|最低起订量|起订量|起订)\s*[:：]?\s*([\d,]+)"
)

# "100件起订" - count before the marker
_MOQ_CHINESE_SUFFIX_RE = re.compile(
    r"([\d,]+)\s*[件个套双只台箱包批]?\s*起订"
)

_UNIT_WORDS = r"pcs?|pieces?|pairs?|sets?|units?|bags?|lots?"

_MOQ_BARE_COUNT_RE = re.compile(
    rf"(?:^|\b)([\d,]{{1,6}})(?=\s*(?:{_UNIT_WORDS})\b|\s*$)",
    re.IGNORECASE,
)

_QUANTITY_HINT_RE = re.compile(
    rf"(?<![\d.,$¥￥])(\d[\d,]{{0,5}})\s*(?:{_UNIT_WORDS}|items?)\b",
    re.IGNORECASE,
)

# ── Orders ───────────────────────────────────────────────

_ORDERS_RE = re.compile(
    r"(\d[\d,.]*?)\s*(?:sold|orders?)\b", re.IGNORECASE
)


def _to_number(raw: str) -> float | None:
    """Convert a digit string (commas allowed) to a finite float."""
    digits = raw.replace(",", "")
    if not digits:
        return None
    try:
        value = float(digits)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _to_count(raw: str) -> int | None:
    """Convert a digit string (commas allowed) to an int count."""
    value = _to_number(raw)
    return int(value) if value is not None else None


def parse_price(text: str | None) -> float | None:
    """Extract the first price from free text like ``'US$ 12.50 - 15.00'``.

    A number preceded by a currency marker is preferred; otherwise the
    first bare 1-6 digit number (optional 1-2 digit fraction) is used.
    Returns ``None`` when nothing numeric is found.
    """
    if not text:
        return None
    cleaned = _THOUSANDS_RE.sub("", text)
    match = _PRICE_WITH_MARKER_RE.search(cleaned)
    if match:
        return _to_number(match.group(2))
    bare = _PRICE_BARE_RE.search(cleaned)
    if bare:
        return _to_number(bare.group(1))
    return None


def parse_moq(text: str | None) -> int | None:
    """Extract a minimum order quantity from free text.

    Rules, in order (first that yields a number wins):

    1. English markers: ``MOQ``, ``Min. Order``, ``Minimum Order``, ``≥``.
    2. Chinese markers: ``起订``, ``起订量``, ``最小起订量``,
       ``最低起订量`` (count after the marker, or ``100件起订``).
    3. Only when the text carries no currency marker: a bare count
       followed by a unit word (pcs, pieces, pairs, sets, units, bags,
       lots) or ending the text, e.g. ``'100pcs'``.
    """
    if not text:
        return None
    stripped = str(text).strip()

    match = _MOQ_ENGLISH_RE.search(stripped)
    if match:
        count = _to_count(match.group(1))
        if count is not None:
            return count

    for pattern in (_MOQ_CHINESE_RE, _MOQ_CHINESE_SUFFIX_RE):
        match = pattern.search(stripped)
        if match:
            count = _to_count(match.group(1))
            if count is not None:
                return count

    if not _HAS_CURRENCY_RE.search(stripped):
        match = _MOQ_BARE_COUNT_RE.search(stripped)
        if match:
            return _to_count(match.group(1))

    return None


def parse_quantity_hint(text: str | None) -> int | None:
    """Find a unit count anywhere in text, ignoring currency amounts.

    Looser than :func:`parse_moq`; catches retail phrasing such as
    ``'$5 for 1 item'`` (returns 1).
    """
    if not text:
        return None
    match = _QUANTITY_HINT_RE.search(text)
    if not match:
        return None
    return _to_count(match.group(1))


def parse_orders(text: str | None) -> int | None:
    """Extract an order count from text like ``'1,234 sold'``."""
    if not text:
        return None
    match = _ORDERS_RE.search(text)
    if not match:
        return None
    digits = re.sub(r"[,.]", "", match.group(1))
    return int(digits) if digits else None


# ── Keyword exclusion ────────────────────────────────────


@dataclass
class ExclusionResult:
    """Outcome of a banned-keyword check."""

    excluded: bool
    matched: str = ""


_compiled_patterns: list[re.Pattern[str]] | None = None


def _banned_patterns() -> list[re.Pattern[str]]:
    """Compile the configured banned-keyword patterns once."""
    global _compiled_patterns
    if _compiled_patterns is None:
        _compiled_patterns = [
            re.compile(p, re.IGNORECASE)
            for p in Settings.BANNED_KEYWORD_PATTERNS
        ]
    return _compiled_patterns


def is_excluded_by_keywords(
    title: str | None,
    description: str | None = None,
    patterns: list[re.Pattern[str]] | None = None,
) -> ExclusionResult:
    """Check title + description against banned service/custom-only patterns."""
    haystack = f"{title or ''} {description or ''}"
    for pattern in patterns or _banned_patterns():
        match = pattern.search(haystack)
        if match:
            logger.debug(
                "Banned keyword '%s' in '%s'",
                match.group(0),
                (title or "")[:60],
            )
            return ExclusionResult(excluded=True, matched=match.group(0))
    return ExclusionResult(excluded=False)
