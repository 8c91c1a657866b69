"""Canonical domain types shared by the ingestion pipeline.

Consent (a bank link), normalized and stored transactions, category
overrides and data-session bookkeeping. Nothing in here talks to a provider
or a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
import enum
import re
from typing import Any
import uuid

from aafeed.core.errors import InvalidOverrideError


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class ConsentStatus(enum.Enum):
    """Lifecycle states of a consent."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


# REVOKED is terminal. Replaying the current status is handled by callers.
_ALLOWED_TRANSITIONS: dict[ConsentStatus, frozenset[ConsentStatus]] = {
    ConsentStatus.PENDING: frozenset({ConsentStatus.ACTIVE, ConsentStatus.REVOKED}),
    ConsentStatus.ACTIVE: frozenset({ConsentStatus.REVOKED}),
    ConsentStatus.REVOKED: frozenset(),
}


def can_transition(current: ConsentStatus, requested: ConsentStatus) -> bool:
    """Return True if the lifecycle allows moving from current to requested."""
    return requested in _ALLOWED_TRANSITIONS[current]


class SessionStatus(enum.Enum):
    """Provider-side status of a data session."""

    PENDING = "PENDING"
    READY = "READY"


class TransactionSource(enum.Enum):
    AGGREGATOR = "AGGREGATOR"
    MANUAL = "MANUAL"


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            msg = f"Date range end {self.end} is before start {self.start}"
            raise ValueError(msg)


@dataclass
class Consent:
    """A user's grant of read access to one financial-institution link."""

    id: str
    user_id: str
    consent_handle: str
    fi_type: str
    status: ConsentStatus
    valid_till: datetime | None = None
    purpose: str = ""
    frequency: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.valid_till is None:
            return False
        return self.valid_till <= (now or utcnow())

    def is_usable(self, now: datetime | None = None) -> bool:
        """True while data sessions may be opened under this consent."""
        return self.status is ConsentStatus.ACTIVE and not self.is_expired(now)


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """Canonical projection of one raw provider transaction."""

    description: str
    merchant_name: str
    category: str
    subcategory: str
    account_ref: str
    amount: float
    currency: str
    txn_type: str
    posted_at: str
    value_date: str | None = None
    balance_after: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredTransaction:
    """Persisted, deduplicated transaction owned by a user."""

    id: str
    user_id: str
    consent_id: str | None
    hash_dedupe: str
    posted_at: datetime
    amount: float
    currency: str
    txn_type: str
    description: str
    merchant_name: str
    account_ref: str
    category: str
    subcategory: str
    value_date: date | None = None
    balance_after: float | None = None
    source: TransactionSource = TransactionSource.AGGREGATOR
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class SubstringMatcher:
    """Case-insensitive substring match."""

    text: str

    def matches(self, description: str) -> bool:
        return self.text.lower() in description.lower()

    def to_raw(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class RegexMatcher:
    """Pattern match for matchers written as ``/pattern/``."""

    pattern: re.Pattern[str]

    def matches(self, description: str) -> bool:
        return self.pattern.search(description) is not None

    def to_raw(self) -> str:
        return f"/{self.pattern.pattern}/"


OverrideMatcher = SubstringMatcher | RegexMatcher


def parse_matcher(raw: str) -> OverrideMatcher:
    """Decide once whether a stored matcher string is a regex or a substring.

    Raises:
        InvalidOverrideError: If the matcher is empty or the regex does not compile.
    """
    if not raw or not raw.strip():
        raise InvalidOverrideError("Override matcher must not be empty")

    if len(raw) >= 2 and raw.startswith("/") and raw.endswith("/"):
        try:
            return RegexMatcher(re.compile(raw[1:-1]))
        except re.error as e:
            raise InvalidOverrideError(f"Invalid override regex {raw!r}: {e}") from e

    return SubstringMatcher(raw)


@dataclass
class CategoryOverride:
    """User-authored rule reassigning category on a description match."""

    id: str
    user_id: str
    matcher: OverrideMatcher
    category: str
    subcategory: str = ""
    position: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class DataSessionRecord:
    """Which user and consent a provider data session was opened for."""

    session_id: str
    user_id: str
    consent_id: str
    from_date: date
    to_date: date
    status: SessionStatus = SessionStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None
