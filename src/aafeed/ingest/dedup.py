"""Content-addressable deduplication for normalized transactions.

The hash identifies "the same physical transaction" regardless of which
session or date range surfaced it:

    sha256(lower(account_ref) | YYYY-MM-DDThh:mm | amount %.2f | cleaned description)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import hashlib
import re
from typing import Protocol, TypeVar

_HASH_SEPARATOR = "|"
_MINUTE_FORMAT = "%Y-%m-%dT%H:%M"
_UNPARSEABLE_TIMESTAMP = "0001-01-01T00:00"
_CENT = Decimal("0.01")

# Order matters: suffixes, dates and times carry separators that the
# character filter at the end removes.
_HASH_NOISE_PATTERNS = (
    re.compile(r"/(?:ref|txn|order|payment|ride)\d+"),
    re.compile(r"^\d+/\d+/\d+"),
    re.compile(r"\d{2}:\d{2}:\d{2}"),
    re.compile(r"\s+"),
    re.compile(r"[^\w\s@.-]"),
)


class Hashable(Protocol):
    @property
    def account_ref(self) -> str: ...

    @property
    def posted_at(self) -> str: ...

    @property
    def amount(self) -> float: ...

    @property
    def description(self) -> str: ...


H = TypeVar("H", bound=Hashable)


def clean_description_for_hash(description: str) -> str:
    if not description:
        return ""

    cleaned = description.strip().lower()
    for pattern in _HASH_NOISE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def parse_posted_at(value: str) -> datetime | None:
    """Parse an RFC-3339 timestamp, falling back to a bare date.

    Aware timestamps are converted to UTC; naive ones are taken as UTC.
    Returns None when neither form parses.
    """
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            day = date.fromisoformat(text[:10])
        except ValueError:
            return None
        return datetime(day.year, day.month, day.day, tzinfo=UTC)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_minute(value: str) -> str:
    """Reformat a timestamp to minute granularity to absorb sub-minute jitter."""
    parsed = parse_posted_at(value)
    if parsed is None:
        return _UNPARSEABLE_TIMESTAMP
    return parsed.strftime(_MINUTE_FORMAT)


def format_amount(amount: float) -> str:
    """Round half-up to cents before formatting, so 12.3000000001 == 12.30."""
    try:
        quantized = Decimal(repr(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return repr(amount)
    return f"{quantized:.2f}"


def hash_components(txn: Hashable) -> list[str]:
    return [
        (txn.account_ref or "").lower(),
        format_minute(txn.posted_at),
        format_amount(txn.amount),
        clean_description_for_hash(txn.description),
    ]


def dedup_hash(txn: Hashable) -> str:
    """Hex SHA-256 over the normalized identity fields."""
    joined = _HASH_SEPARATOR.join(hash_components(txn))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def iter_unique(
    transactions: Iterable[H], seen: set[str] | None = None
) -> Iterator[tuple[str, H]]:
    """Yield (hash, txn) for each first occurrence not already in ``seen``.

    ``seen`` is updated in place when given.
    """
    seen_hashes = seen if seen is not None else set()
    for txn in transactions:
        digest = dedup_hash(txn)
        if digest in seen_hashes:
            continue
        seen_hashes.add(digest)
        yield digest, txn


def deduplicate(transactions: Iterable[H]) -> list[H]:
    """Keep the first occurrence of each hash, preserving order."""
    return [txn for _, txn in iter_unique(transactions)]


def filter_new(
    transactions: Iterable[H], existing_hashes: set[str]
) -> list[tuple[str, H]]:
    """Drop transactions whose hash is already persisted (or repeated in-batch)."""
    return list(iter_unique(transactions, seen=set(existing_hashes)))
