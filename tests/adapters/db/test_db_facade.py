"""Tests for the SQLAlchemy repositories behind the DB facade."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest

from aafeed.adapters.db.facade import DB, from_cents, to_cents
from aafeed.adapters.db.repository import Repositories
from aafeed.core.domain import (
    CategoryOverride,
    Consent,
    ConsentStatus,
    DataSessionRecord,
    RegexMatcher,
    SessionStatus,
    StoredTransaction,
    TransactionSource,
    parse_matcher,
)
from aafeed.core.errors import DuplicateTransactionError, NotFoundError

NOW = datetime(2024, 1, 15, 9, 30, tzinfo=UTC)


def _consent(
    consent_id: str = "consent-1",
    *,
    user_id: str = "user-1",
    status: ConsentStatus = ConsentStatus.PENDING,
    valid_till: datetime | None = None,
) -> Consent:
    return Consent(
        id=consent_id,
        user_id=user_id,
        consent_handle=f"handle-{consent_id}",
        fi_type="SAVINGS",
        status=status,
        valid_till=valid_till,
        purpose="tracking",
        frequency="DAILY",
        created_at=NOW,
        updated_at=NOW,
    )


def _txn(
    txn_id: str,
    *,
    user_id: str = "user-1",
    hash_dedupe: str | None = None,
    posted_at: datetime = NOW,
    amount: float = 250.0,
) -> StoredTransaction:
    return StoredTransaction(
        id=txn_id,
        user_id=user_id,
        consent_id=None,
        hash_dedupe=hash_dedupe or f"hash-{txn_id}",
        posted_at=posted_at,
        amount=amount,
        currency="INR",
        txn_type="DEBIT",
        description="SWIGGY",
        merchant_name="Food Delivery",
        account_ref="user@upi",
        category="Food Delivery",
        subcategory="Swiggy",
        value_date=posted_at.date(),
        balance_after=1000.5,
        source=TransactionSource.AGGREGATOR,
        metadata={"source": "synthetic_aa"},
        created_at=NOW,
    )


def test_cents_conversion_rounds_half_up() -> None:
    assert to_cents(12.34) == 1234
    assert to_cents(2.675) == 268
    assert to_cents(-5.5) == -550
    assert from_cents(1234) == 12.34


def test_file_database_round_trip(tmp_path: Path) -> None:
    # setup
    db = DB(f"sqlite:///{tmp_path / 'aafeed.db'}")
    db.create_all()
    repos = db.repositories()

    # act
    repos.consents.create(_consent())
    reopened = DB(db.url).repositories().consents.get("consent-1")

    # assert
    assert reopened is not None
    assert reopened.consent_handle == "handle-consent-1"


class TestConsentRepository:
    def test_create_and_get(self, repositories: Repositories) -> None:
        # setup
        repositories.consents.create(_consent(valid_till=NOW + timedelta(days=30)))

        # act
        by_id = repositories.consents.get("consent-1")
        by_handle = repositories.consents.get_by_handle("handle-consent-1")

        # assert
        assert by_id is not None
        assert by_id == by_handle
        assert by_id.status is ConsentStatus.PENDING
        assert by_id.valid_till == NOW + timedelta(days=30)
        assert by_id.valid_till.tzinfo is not None
        assert by_id.created_at == NOW

    def test_missing_returns_none(self, repositories: Repositories) -> None:
        assert repositories.consents.get("nope") is None
        assert repositories.consents.get_by_handle("nope") is None

    def test_list_active_excludes_pending_revoked_and_expired(
        self, repositories: Repositories
    ) -> None:
        # setup
        repositories.consents.create(
            _consent(
                "active",
                status=ConsentStatus.ACTIVE,
                valid_till=NOW + timedelta(days=1),
            )
        )
        repositories.consents.create(
            _consent("expired", status=ConsentStatus.ACTIVE, valid_till=NOW)
        )
        repositories.consents.create(_consent("pending"))
        repositories.consents.create(_consent("revoked", status=ConsentStatus.REVOKED))
        repositories.consents.create(
            _consent("other", user_id="user-2", status=ConsentStatus.ACTIVE)
        )

        # act
        active = repositories.consents.list_active_for_user("user-1", now=NOW)
        everything = repositories.consents.list_for_user("user-1")

        # assert
        assert [c.id for c in active] == ["active"]
        assert {c.id for c in everything} == {"active", "expired", "pending", "revoked"}

    def test_update_and_update_status(self, repositories: Repositories) -> None:
        # setup
        consent = repositories.consents.create(_consent())
        consent.status = ConsentStatus.ACTIVE
        consent.valid_till = NOW + timedelta(days=30)

        # act
        updated = repositories.consents.update(consent)
        revoked = repositories.consents.update_status(
            consent.id, ConsentStatus.REVOKED
        )

        # assert
        assert updated.status is ConsentStatus.ACTIVE
        assert revoked.status is ConsentStatus.REVOKED
        assert revoked.valid_till == NOW + timedelta(days=30)

    def test_update_missing_raises(self, repositories: Repositories) -> None:
        with pytest.raises(NotFoundError):
            repositories.consents.update_status("nope", ConsentStatus.ACTIVE)
        with pytest.raises(NotFoundError):
            repositories.consents.update(_consent("nope"))


class TestTransactionRepository:
    def test_create_round_trips_fields(self, repositories: Repositories) -> None:
        # act
        repositories.transactions.create(_txn("t1", amount=199.99))
        stored = repositories.transactions.get("t1")

        # assert
        assert stored is not None
        assert stored.amount == 199.99
        assert stored.balance_after == 1000.5
        assert stored.posted_at == NOW
        assert stored.value_date == date(2024, 1, 15)
        assert stored.source is TransactionSource.AGGREGATOR
        assert stored.metadata == {"source": "synthetic_aa"}

    def test_unique_hash_per_user(self, repositories: Repositories) -> None:
        # setup
        repositories.transactions.create(_txn("t1", hash_dedupe="same"))

        # act / assert
        with pytest.raises(DuplicateTransactionError):
            repositories.transactions.create(_txn("t2", hash_dedupe="same"))
        repositories.transactions.create(
            _txn("t3", user_id="user-2", hash_dedupe="same")
        )
        assert repositories.transactions.get("t2") is None

    def test_list_for_user_pages_newest_first(
        self, repositories: Repositories
    ) -> None:
        # setup
        for day in range(1, 6):
            repositories.transactions.create(
                _txn(f"t{day}", posted_at=datetime(2024, 1, day, 12, tzinfo=UTC))
            )
        repositories.transactions.create(_txn("other", user_id="user-2"))

        # act
        page, total = repositories.transactions.list_for_user(
            "user-1", limit=2, offset=1
        )
        window, window_total = repositories.transactions.list_for_user(
            "user-1",
            start=datetime(2024, 1, 2, tzinfo=UTC),
            end=datetime(2024, 1, 3, 23, 59, tzinfo=UTC),
        )

        # assert
        assert total == 5
        assert [t.id for t in page] == ["t4", "t3"]
        assert window_total == 2
        assert [t.id for t in window] == ["t3", "t2"]

    def test_recent_hashes_are_bounded_by_posted_at(
        self, repositories: Repositories
    ) -> None:
        # setup
        for day in range(1, 6):
            repositories.transactions.create(
                _txn(f"t{day}", posted_at=datetime(2024, 1, day, tzinfo=UTC))
            )

        # act
        recent = repositories.transactions.list_recent_hashes("user-1", limit=2)

        # assert
        assert recent == {"hash-t5", "hash-t4"}

    def test_get_by_hash(self, repositories: Repositories) -> None:
        repositories.transactions.create(_txn("t1"))

        found = repositories.transactions.get_by_hash("user-1", "hash-t1")

        assert found is not None
        assert found.id == "t1"
        assert repositories.transactions.get_by_hash("user-2", "hash-t1") is None

    def test_update_category_only(self, repositories: Repositories) -> None:
        # setup
        repositories.transactions.create(_txn("t1"))

        # act
        updated = repositories.transactions.update_category("t1", "Eating Out", "")

        # assert
        assert updated.category == "Eating Out"
        assert updated.subcategory == ""
        assert updated.hash_dedupe == "hash-t1"
        assert updated.amount == 250.0

    def test_update_category_missing(self, repositories: Repositories) -> None:
        with pytest.raises(NotFoundError):
            repositories.transactions.update_category("nope", "X", "")

    def test_delete(self, repositories: Repositories) -> None:
        # setup
        repositories.transactions.create(_txn("t1"))
        repositories.transactions.create(_txn("t2"))
        repositories.transactions.create(_txn("t3", user_id="user-2"))

        # act / assert
        assert repositories.transactions.delete("t1") is True
        assert repositories.transactions.delete("t1") is False
        assert repositories.transactions.delete_all_for_user("user-1") == 1
        assert repositories.transactions.get("t3") is not None


class TestCategoryOverrideRepository:
    def test_list_in_position_order(self, repositories: Repositories) -> None:
        # setup
        for override_id, matcher, position in [
            ("o2", "/^UBER/", 2),
            ("o1", "swiggy", 1),
        ]:
            repositories.overrides.create(
                CategoryOverride(
                    id=override_id,
                    user_id="user-1",
                    matcher=parse_matcher(matcher),
                    category="Custom",
                    position=position,
                    created_at=NOW,
                )
            )

        # act
        overrides = repositories.overrides.list_for_user("user-1")

        # assert
        assert [o.id for o in overrides] == ["o1", "o2"]
        assert isinstance(overrides[1].matcher, RegexMatcher)
        assert overrides[1].matcher.to_raw() == "/^UBER/"

    def test_update_and_delete(self, repositories: Repositories) -> None:
        # setup
        override = repositories.overrides.create(
            CategoryOverride(
                id="o1",
                user_id="user-1",
                matcher=parse_matcher("swiggy"),
                category="Custom",
            )
        )
        override.category = "Eating Out"

        # act
        updated = repositories.overrides.update(override)

        # assert
        assert updated.category == "Eating Out"
        assert repositories.overrides.delete("o1") is True
        assert repositories.overrides.get("o1") is None


class TestDataSessionRepository:
    def test_lifecycle(self, repositories: Repositories) -> None:
        # setup
        repositories.consents.create(_consent())
        repositories.sessions.create(
            DataSessionRecord(
                session_id="sess-1",
                user_id="user-1",
                consent_id="consent-1",
                from_date=date(2024, 1, 1),
                to_date=date(2024, 1, 7),
                created_at=NOW,
            )
        )

        # act
        repositories.sessions.update_status("sess-1", SessionStatus.READY)
        repositories.sessions.mark_processed("sess-1", NOW)
        record = repositories.sessions.get("sess-1")

        # assert
        assert record is not None
        assert record.status is SessionStatus.READY
        assert record.processed_at == NOW
        assert record.from_date == date(2024, 1, 1)

    def test_missing_session(self, repositories: Repositories) -> None:
        assert repositories.sessions.get("nope") is None
        with pytest.raises(NotFoundError):
            repositories.sessions.mark_processed("nope", NOW)
