"""Tests for the transaction identity hash and batch deduplication."""

from __future__ import annotations

from dataclasses import replace

from aafeed.core.domain import NormalizedTransaction
from aafeed.ingest.dedup import (
    clean_description_for_hash,
    dedup_hash,
    deduplicate,
    filter_new,
    format_amount,
    format_minute,
)


def _txn(**overrides: object) -> NormalizedTransaction:
    base = NormalizedTransaction(
        description="SWIGGY",
        merchant_name="Food Delivery",
        category="Food Delivery",
        subcategory="Swiggy",
        account_ref="user@upi",
        amount=250.0,
        currency="INR",
        txn_type="DEBIT",
        posted_at="2024-01-05T10:15:05Z",
    )
    return replace(base, **overrides)  # type: ignore[arg-type]


class TestDedupHash:
    def test_is_sha256_hex(self) -> None:
        digest = dedup_hash(_txn())

        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    def test_stable_under_sub_minute_jitter(self) -> None:
        # input
        first = _txn(posted_at="2024-01-05T10:15:05Z")
        second = _txn(posted_at="2024-01-05T10:15:48Z")

        # act / assert
        assert dedup_hash(first) == dedup_hash(second)

    def test_timezone_offsets_compare_in_utc(self) -> None:
        # input
        utc = _txn(posted_at="2024-01-05T10:15:00Z")
        ist = _txn(posted_at="2024-01-05T15:45:00+05:30")

        # act / assert
        assert dedup_hash(utc) == dedup_hash(ist)

    def test_stable_under_trailing_reference_suffix(self) -> None:
        # input
        first = _txn(description="swiggy/order123")
        second = _txn(description="swiggy/order999")

        # act / assert
        assert dedup_hash(first) == dedup_hash(second)

    def test_account_ref_is_case_insensitive(self) -> None:
        assert dedup_hash(_txn(account_ref="User@UPI")) == dedup_hash(_txn())

    def test_sensitive_to_amount_difference(self) -> None:
        # input
        first = _txn(amount=100.00)
        second = _txn(amount=100.02)

        # act / assert
        assert dedup_hash(first) != dedup_hash(second)

    def test_float_noise_below_a_cent_is_ignored(self) -> None:
        assert dedup_hash(_txn(amount=12.3000000001)) == dedup_hash(_txn(amount=12.3))

    def test_different_minute_differs(self) -> None:
        first = _txn(posted_at="2024-01-05T10:15:00Z")
        second = _txn(posted_at="2024-01-05T10:16:00Z")

        assert dedup_hash(first) != dedup_hash(second)


class TestHashComponents:
    def test_format_minute_date_only_fallback(self) -> None:
        assert format_minute("2024-01-05") == "2024-01-05T00:00"

    def test_format_minute_unparseable(self) -> None:
        assert format_minute("not-a-date") == "0001-01-01T00:00"

    def test_format_amount_rounds_half_up(self) -> None:
        assert format_amount(2.675) == "2.68"
        assert format_amount(10) == "10.00"

    def test_clean_description_for_hash_strips_dates_and_times(self) -> None:
        # input
        description = "12/01/2024 10:15:30 Swiggy Order #55"

        # act
        result = clean_description_for_hash(description)

        # expected
        expected = "swiggyorder55"

        # assert
        assert result == expected


class TestDeduplicate:
    def test_keeps_first_occurrence(self) -> None:
        # input
        first = _txn(category="first")
        duplicate = _txn(posted_at="2024-01-05T10:15:59Z", category="second")
        other = _txn(amount=99.0)

        # act
        result = deduplicate([first, duplicate, other])

        # assert
        assert result == [first, other]

    def test_idempotent(self) -> None:
        # input
        batch = [_txn(), _txn(posted_at="2024-01-05T10:15:30Z"), _txn(amount=1.0)]

        # act
        once = deduplicate(batch)
        twice = deduplicate(once)

        # assert
        assert once == twice

    def test_filter_new_drops_existing_hashes(self) -> None:
        # input
        stored = _txn()
        fresh = _txn(amount=75.5)
        existing = {dedup_hash(stored)}

        # act
        result = filter_new([stored, fresh], existing)

        # assert
        assert result == [(dedup_hash(fresh), fresh)]
        assert existing == {dedup_hash(stored)}
