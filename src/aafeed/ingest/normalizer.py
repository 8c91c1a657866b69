"""Map raw provider transactions onto the canonical transaction shape.

Everything here is a pure function of its input: the same raw record always
yields the same normalized record, which the dedup hash depends on.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from aafeed.core.domain import NormalizedTransaction

if TYPE_CHECKING:
    from aafeed.infra.clients.aggregator import RawTransaction

UNKNOWN_MERCHANT = "Unknown"
UNCATEGORIZED = "Uncategorized"

# Ordered: first keyword found in the lowercased description wins.
# (keyword, category label, brand)
MERCHANT_KEYWORDS: tuple[tuple[str, str, str], ...] = (
    ("swiggy", "Food Delivery", "Swiggy"),
    ("zomato", "Food Delivery", "Zomato"),
    ("amazon", "Shopping", "Amazon"),
    ("flipkart", "Shopping", "Flipkart"),
    ("myntra", "Shopping", "Myntra"),
    ("bigbasket", "Groceries", "BigBasket"),
    ("blinkit", "Groceries", "Blinkit"),
    ("zepto", "Groceries", "Zepto"),
    ("netflix", "Entertainment", "Netflix"),
    ("spotify", "Entertainment", "Spotify"),
    ("uber", "Transport", "Uber"),
    ("rapido", "Transport", "Rapido"),
    ("ola", "Transport", "Ola"),
    ("paytm", "Digital Payments", "Paytm"),
    ("phonepe", "Digital Payments", "PhonePe"),
    ("google pay", "Digital Payments", "Google Pay"),
    ("atm", "Cash Withdrawal", "ATM"),
    ("salary", "Income", "Salary"),
    ("interest", "Income", "Interest"),
    ("reimbursement", "Income", "Reimbursement"),
    ("neft", "Bank Transfer", "NEFT"),
    ("imps", "Bank Transfer", "IMPS"),
    ("cheque", "Bank Transfer", "Cheque"),
    # Payment rail markers last: "UPI/..." may also name the payee brand.
    ("upi", "Digital Payments", "UPI"),
)

# Ordered fallback rules applied when no merchant could be inferred.
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Food & Dining", ("food", "restaurant")),
    ("Transport", ("fuel", "petrol", "diesel")),
    ("Healthcare", ("medical", "hospital", "pharmacy")),
    ("Education", ("education", "school", "college")),
    ("Utilities", ("rent", "electricity", "water")),
    ("Income", ("salary", "income", "interest")),
    ("Cash Withdrawal", ("atm", "withdrawal")),
    ("Bank Transfer", ("transfer", "neft", "imps")),
)

_PROVIDER_PREFIX = re.compile(r"^(?:UPI|NEFT|IMPS)/")
_REFERENCE_SUFFIX = re.compile(r"/(?:REF|TXN|ORDER|PAYMENT|RIDE)\d+$")
_WHITESPACE = re.compile(r"\s+")
_DISALLOWED_CHARS = re.compile(r"[^A-Za-z0-9@.\- ]")

_UPI_ADDRESS_PATTERNS = (
    re.compile(r"upi/([^@/\s]+)@([^/\s]+)", re.IGNORECASE),
    re.compile(r"([^@/\s]+)@([^/\s]+)"),
)
_MASKED_ACCOUNT = re.compile(r"(\d{4}\*{4}\d{4})")


def clean_description(description: str) -> str:
    """Uppercase, strip provider noise and keep only display-safe characters."""
    if not description:
        return ""

    cleaned = description.strip().upper()
    cleaned = _PROVIDER_PREFIX.sub("", cleaned)
    # Suffixes can be stacked, e.g. ".../ORDER123/REF456".
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _REFERENCE_SUFFIX.sub("", cleaned)

    cleaned = cleaned.replace("/", " ")
    cleaned = _WHITESPACE.sub(" ", cleaned)
    cleaned = _DISALLOWED_CHARS.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def _match_payment_address(description: str) -> tuple[str, str] | None:
    for pattern in _UPI_ADDRESS_PATTERNS:
        match = pattern.search(description)
        if match:
            return match.group(1), match.group(2)
    return None


def match_merchant_keyword(
    description: str, merchant_hint: str | None = None
) -> tuple[str, str] | None:
    """Return (category label, brand) for the first keyword found.

    The description is searched first; the provider's merchant hint only
    when the description names no known merchant.
    """
    for text in (description, merchant_hint or ""):
        lowered = text.lower()
        for keyword, label, brand in MERCHANT_KEYWORDS:
            if keyword in lowered:
                return label, brand
    return None


def infer_merchant(description: str, merchant_hint: str | None = None) -> str:
    """Infer a merchant name from a raw description.

    Priority: keyword table (description, then provider hint), payment-address
    handle, then ``"Unknown"``. The table carries the ATM, salary and
    interest cues, labelled by the category they belong to.
    """
    keyword_match = match_merchant_keyword(description, merchant_hint)
    if keyword_match is not None:
        return keyword_match[0]

    address = _match_payment_address(description)
    if address is not None:
        return address[1].upper()

    return UNKNOWN_MERCHANT


def resolve_account_ref(account_ref: str, description: str) -> str:
    if account_ref:
        return account_ref

    address = _match_payment_address(description)
    if address is not None:
        return f"{address[0]}@{address[1]}"

    masked = _MASKED_ACCOUNT.search(description)
    if masked:
        return masked.group(1)

    return ""


def infer_category(description: str, merchant: str) -> str:
    """Merchant wins when known; otherwise the first matching keyword rule."""
    if merchant and merchant.lower() != UNKNOWN_MERCHANT.lower():
        return merchant

    lowered = description.lower()
    for category, keywords in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category

    return UNCATEGORIZED


def normalize_transaction(raw: RawTransaction) -> NormalizedTransaction:
    """Project one raw provider record onto the canonical shape."""
    description = clean_description(raw.description)
    merchant = infer_merchant(raw.description, raw.merchant_hint)
    category = infer_category(description, merchant)

    keyword_match = match_merchant_keyword(raw.description, raw.merchant_hint)
    subcategory = keyword_match[1] if keyword_match is not None else ""

    return NormalizedTransaction(
        description=description,
        merchant_name=merchant,
        category=category,
        subcategory=subcategory,
        account_ref=resolve_account_ref(raw.account_ref, raw.description),
        amount=raw.amount,
        currency=raw.currency,
        txn_type=raw.txn_type,
        posted_at=raw.posted_at,
        value_date=raw.value_date,
        balance_after=raw.balance_after,
        metadata=dict(raw.metadata),
    )


def normalize_batch(raws: list[RawTransaction]) -> list[NormalizedTransaction]:
    return [normalize_transaction(raw) for raw in raws]
