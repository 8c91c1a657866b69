"""User category overrides, applied as a display pass after normalization."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import TypeVar

from aafeed.core.domain import (
    CategoryOverride,
    NormalizedTransaction,
    StoredTransaction,
)

T = TypeVar("T", NormalizedTransaction, StoredTransaction)


def find_override(
    description: str, overrides: Sequence[CategoryOverride]
) -> CategoryOverride | None:
    """Return the first override (in user order) whose matcher hits."""
    for override in overrides:
        if override.matcher.matches(description):
            return override
    return None


def apply_category_overrides(
    transactions: Iterable[T], overrides: Sequence[CategoryOverride]
) -> list[T]:
    """Return copies of transactions with the first matching override applied.

    Inputs are never mutated; transactions without a match are returned as-is.
    """
    ordered = sorted(overrides, key=lambda o: o.position)
    result: list[T] = []
    for txn in transactions:
        override = find_override(txn.description, ordered)
        if override is None:
            result.append(txn)
            continue
        result.append(
            replace(txn, category=override.category, subcategory=override.subcategory)
        )
    return result
