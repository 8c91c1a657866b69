from __future__ import annotations

import pytest

from aafeed.core.domain import (
    CategoryOverride,
    NormalizedTransaction,
    RegexMatcher,
    SubstringMatcher,
    parse_matcher,
)
from aafeed.core.errors import InvalidOverrideError
from aafeed.ingest.overrides import apply_category_overrides, find_override


def _txn(description: str) -> NormalizedTransaction:
    return NormalizedTransaction(
        description=description,
        merchant_name="Food Delivery",
        category="Food Delivery",
        subcategory="Swiggy",
        account_ref="user@upi",
        amount=250.0,
        currency="INR",
        txn_type="DEBIT",
        posted_at="2024-01-05T10:15:00Z",
    )


def _override(
    matcher: str, category: str, *, position: int = 0, subcategory: str = ""
) -> CategoryOverride:
    return CategoryOverride(
        id=f"ovr-{category}",
        user_id="user-1",
        matcher=parse_matcher(matcher),
        category=category,
        subcategory=subcategory,
        position=position,
    )


def test_parse_matcher_distinguishes_regex_from_substring() -> None:
    assert isinstance(parse_matcher("swiggy"), SubstringMatcher)
    assert isinstance(parse_matcher("/^SWIG+Y$/"), RegexMatcher)
    assert isinstance(parse_matcher("/"), SubstringMatcher)


def test_parse_matcher_rejects_bad_input() -> None:
    with pytest.raises(InvalidOverrideError):
        parse_matcher("/[unclosed/")
    with pytest.raises(InvalidOverrideError):
        parse_matcher("   ")


def test_substring_matcher_is_case_insensitive() -> None:
    # input
    overrides = [_override("swiggy", "Eating Out")]

    # act
    result = find_override("SWIGGY INSTAMART", overrides)

    # assert
    assert result is not None
    assert result.category == "Eating Out"


def test_regex_matcher() -> None:
    # input
    overrides = [_override(r"/^UBER\b/", "Commute")]

    # act / assert
    assert find_override("UBER RIDE", overrides) is not None
    assert find_override("SUPERUBER", overrides) is None


def test_first_override_in_position_order_wins() -> None:
    # input
    transactions = [_txn("SWIGGY"), _txn("ZOMATO")]
    overrides = [
        _override("swiggy", "Second", position=2),
        _override("swig", "First", position=1, subcategory="Lunch"),
    ]

    # act
    result = apply_category_overrides(transactions, overrides)

    # assert
    assert result[0].category == "First"
    assert result[0].subcategory == "Lunch"
    assert result[1] is transactions[1]


def test_apply_does_not_mutate_inputs() -> None:
    # input
    original = _txn("SWIGGY")

    # act
    result = apply_category_overrides([original], [_override("swiggy", "Eating Out")])

    # assert
    assert original.category == "Food Delivery"
    assert result[0].category == "Eating Out"
    assert result[0].subcategory == ""
