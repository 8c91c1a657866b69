from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import create_engine, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from aafeed.adapters.db.models import (
    Base,
    CategoryOverrideRow,
    ConsentRow,
    DataSessionRow,
    TransactionRow,
)
from aafeed.adapters.db.repository import Repositories
from aafeed.core.domain import (
    CategoryOverride,
    Consent,
    ConsentStatus,
    DataSessionRecord,
    SessionStatus,
    StoredTransaction,
    TransactionSource,
    parse_matcher,
    utcnow,
)
from aafeed.core.errors import DuplicateTransactionError, NotFoundError

_CENT = Decimal("0.01")


def to_cents(amount: float) -> int:
    """Convert a decimal amount to integer minor units, rounding half up."""
    quantized = Decimal(repr(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(quantized * 100)


def from_cents(cents: int) -> float:
    return cents / 100


def as_utc(value: datetime) -> datetime:
    """Attach or convert to UTC. SQLite hands back naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class DB:
    """Database service layer owning the engine and session lifecycle."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///aafeed.db")
        """
        self._url = url
        engine_kwargs: dict[str, Any] = {"echo": False}
        if url.startswith("sqlite"):
            # Ingestion runs on request and timer threads.
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                engine_kwargs["poolclass"] = StaticPool
        self._engine = create_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self._engine, class_=Session, expire_on_commit=False
        )

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self._engine)

    def repositories(self) -> Repositories:
        """Build the repository bundle backed by this database."""
        return Repositories(
            consents=SqlConsentRepository(self),
            transactions=SqlTransactionRepository(self),
            overrides=SqlCategoryOverrideRepository(self),
            sessions=SqlDataSessionRepository(self),
        )


def _consent_from_row(row: ConsentRow) -> Consent:
    return Consent(
        id=row.id,
        user_id=row.user_id,
        consent_handle=row.consent_handle,
        fi_type=row.fi_type,
        status=ConsentStatus(row.status),
        valid_till=_optional_utc(row.valid_till),
        purpose=row.purpose,
        frequency=row.frequency,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _txn_from_row(row: TransactionRow) -> StoredTransaction:
    return StoredTransaction(
        id=row.id,
        user_id=row.user_id,
        consent_id=row.consent_id,
        hash_dedupe=row.hash_dedupe,
        posted_at=as_utc(row.posted_at),
        amount=from_cents(row.amount_cents),
        currency=row.currency,
        txn_type=row.txn_type,
        description=row.description,
        merchant_name=row.merchant_name,
        account_ref=row.account_ref,
        category=row.category,
        subcategory=row.subcategory,
        value_date=row.value_date,
        balance_after=(
            from_cents(row.balance_after_cents)
            if row.balance_after_cents is not None
            else None
        ),
        source=TransactionSource(row.source),
        metadata=dict(row.source_meta or {}),
        created_at=as_utc(row.created_at),
    )


def _override_from_row(row: CategoryOverrideRow) -> CategoryOverride:
    return CategoryOverride(
        id=row.id,
        user_id=row.user_id,
        matcher=parse_matcher(row.matcher),
        category=row.category,
        subcategory=row.subcategory,
        position=row.position,
        created_at=as_utc(row.created_at),
    )


def _session_from_row(row: DataSessionRow) -> DataSessionRecord:
    return DataSessionRecord(
        session_id=row.session_id,
        user_id=row.user_id,
        consent_id=row.consent_id,
        from_date=row.from_date,
        to_date=row.to_date,
        status=SessionStatus(row.status),
        created_at=as_utc(row.created_at),
        processed_at=_optional_utc(row.processed_at),
    )


class SqlConsentRepository:
    def __init__(self, db: DB) -> None:
        self._db = db

    def create(self, consent: Consent) -> Consent:
        with self._db.session() as session:  # type: Session
            row = ConsentRow(
                id=consent.id,
                user_id=consent.user_id,
                consent_handle=consent.consent_handle,
                fi_type=consent.fi_type,
                status=consent.status.value,
                valid_till=_optional_utc(consent.valid_till),
                purpose=consent.purpose,
                frequency=consent.frequency,
                created_at=as_utc(consent.created_at),
                updated_at=as_utc(consent.updated_at),
            )
            session.add(row)
            session.flush()
            return _consent_from_row(row)

    def get(self, consent_id: str) -> Consent | None:
        with self._db.session() as session:  # type: Session
            row = session.get(ConsentRow, consent_id)
            return _consent_from_row(row) if row else None

    def get_by_handle(self, consent_handle: str) -> Consent | None:
        with self._db.session() as session:  # type: Session
            row = (
                session.query(ConsentRow)
                .filter(ConsentRow.consent_handle == consent_handle)
                .first()
            )
            return _consent_from_row(row) if row else None

    def list_for_user(self, user_id: str) -> list[Consent]:
        with self._db.session() as session:  # type: Session
            rows = (
                session.query(ConsentRow)
                .filter(ConsentRow.user_id == user_id)
                .order_by(ConsentRow.created_at.desc())
                .all()
            )
            return [_consent_from_row(row) for row in rows]

    def list_active_for_user(
        self, user_id: str, *, now: datetime | None = None
    ) -> list[Consent]:
        cutoff = as_utc(now or utcnow())
        with self._db.session() as session:  # type: Session
            rows = (
                session.query(ConsentRow)
                .filter(
                    ConsentRow.user_id == user_id,
                    ConsentRow.status == ConsentStatus.ACTIVE.value,
                    or_(
                        ConsentRow.valid_till.is_(None),
                        ConsentRow.valid_till > cutoff,
                    ),
                )
                .order_by(ConsentRow.created_at.desc())
                .all()
            )
            return [_consent_from_row(row) for row in rows]

    def update(self, consent: Consent) -> Consent:
        with self._db.session() as session:  # type: Session
            row = session.get(ConsentRow, consent.id)
            if row is None:
                raise NotFoundError(f"Consent {consent.id} not found")
            row.status = consent.status.value
            row.valid_till = _optional_utc(consent.valid_till)
            row.purpose = consent.purpose
            row.frequency = consent.frequency
            row.updated_at = utcnow()
            session.flush()
            return _consent_from_row(row)

    def update_status(self, consent_id: str, status: ConsentStatus) -> Consent:
        with self._db.session() as session:  # type: Session
            row = session.get(ConsentRow, consent_id)
            if row is None:
                raise NotFoundError(f"Consent {consent_id} not found")
            row.status = status.value
            row.updated_at = utcnow()
            session.flush()
            return _consent_from_row(row)


class SqlTransactionRepository:
    def __init__(self, db: DB) -> None:
        self._db = db

    def create(self, txn: StoredTransaction) -> StoredTransaction:
        try:
            with self._db.session() as session:  # type: Session
                row = TransactionRow(
                    id=txn.id,
                    user_id=txn.user_id,
                    consent_id=txn.consent_id,
                    hash_dedupe=txn.hash_dedupe,
                    posted_at=as_utc(txn.posted_at),
                    value_date=txn.value_date,
                    amount_cents=to_cents(txn.amount),
                    currency=txn.currency,
                    txn_type=txn.txn_type,
                    balance_after_cents=(
                        to_cents(txn.balance_after)
                        if txn.balance_after is not None
                        else None
                    ),
                    description=txn.description,
                    merchant_name=txn.merchant_name,
                    account_ref=txn.account_ref,
                    category=txn.category,
                    subcategory=txn.subcategory,
                    source=txn.source.value,
                    source_meta=dict(txn.metadata),
                    created_at=as_utc(txn.created_at),
                    updated_at=as_utc(txn.created_at),
                )
                session.add(row)
                session.flush()
                return _txn_from_row(row)
        except IntegrityError as e:
            raise DuplicateTransactionError(txn.user_id, txn.hash_dedupe) from e

    def get(self, transaction_id: str) -> StoredTransaction | None:
        with self._db.session() as session:  # type: Session
            row = session.get(TransactionRow, transaction_id)
            return _txn_from_row(row) if row else None

    def list_for_user(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[StoredTransaction], int]:
        """Return one page of a user's transactions, newest first, and the total."""
        with self._db.session() as session:  # type: Session
            query = session.query(TransactionRow).filter(
                TransactionRow.user_id == user_id
            )
            if start is not None:
                query = query.filter(TransactionRow.posted_at >= as_utc(start))
            if end is not None:
                query = query.filter(TransactionRow.posted_at <= as_utc(end))
            total = query.count()
            rows = (
                query.order_by(TransactionRow.posted_at.desc(), TransactionRow.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [_txn_from_row(row) for row in rows], total

    def get_by_hash(self, user_id: str, hash_dedupe: str) -> StoredTransaction | None:
        with self._db.session() as session:  # type: Session
            row = (
                session.query(TransactionRow)
                .filter(
                    TransactionRow.user_id == user_id,
                    TransactionRow.hash_dedupe == hash_dedupe,
                )
                .first()
            )
            return _txn_from_row(row) if row else None

    def list_recent_hashes(self, user_id: str, *, limit: int) -> set[str]:
        """Hashes of the user's most recently posted transactions."""
        with self._db.session() as session:  # type: Session
            rows = (
                session.query(TransactionRow.hash_dedupe)
                .filter(TransactionRow.user_id == user_id)
                .order_by(TransactionRow.posted_at.desc())
                .limit(limit)
                .all()
            )
            return {row.hash_dedupe for row in rows}

    def update_category(
        self, transaction_id: str, category: str, subcategory: str
    ) -> StoredTransaction:
        with self._db.session() as session:  # type: Session
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            row.category = category
            row.subcategory = subcategory
            row.updated_at = utcnow()
            session.flush()
            return _txn_from_row(row)

    def delete(self, transaction_id: str) -> bool:
        with self._db.session() as session:  # type: Session
            deleted = (
                session.query(TransactionRow)
                .filter(TransactionRow.id == transaction_id)
                .delete(synchronize_session=False)
            )
            return deleted > 0

    def delete_all_for_user(self, user_id: str) -> int:
        with self._db.session() as session:  # type: Session
            return (
                session.query(TransactionRow)
                .filter(TransactionRow.user_id == user_id)
                .delete(synchronize_session=False)
            )


class SqlCategoryOverrideRepository:
    def __init__(self, db: DB) -> None:
        self._db = db

    def create(self, override: CategoryOverride) -> CategoryOverride:
        with self._db.session() as session:  # type: Session
            row = CategoryOverrideRow(
                id=override.id,
                user_id=override.user_id,
                matcher=override.matcher.to_raw(),
                category=override.category,
                subcategory=override.subcategory,
                position=override.position,
                created_at=as_utc(override.created_at),
            )
            session.add(row)
            session.flush()
            return _override_from_row(row)

    def get(self, override_id: str) -> CategoryOverride | None:
        with self._db.session() as session:  # type: Session
            row = session.get(CategoryOverrideRow, override_id)
            return _override_from_row(row) if row else None

    def list_for_user(self, user_id: str) -> list[CategoryOverride]:
        """Overrides in evaluation order (position, then creation)."""
        with self._db.session() as session:  # type: Session
            rows = (
                session.query(CategoryOverrideRow)
                .filter(CategoryOverrideRow.user_id == user_id)
                .order_by(CategoryOverrideRow.position, CategoryOverrideRow.created_at)
                .all()
            )
            return [_override_from_row(row) for row in rows]

    def update(self, override: CategoryOverride) -> CategoryOverride:
        with self._db.session() as session:  # type: Session
            row = session.get(CategoryOverrideRow, override.id)
            if row is None:
                raise NotFoundError(f"Category override {override.id} not found")
            row.matcher = override.matcher.to_raw()
            row.category = override.category
            row.subcategory = override.subcategory
            row.position = override.position
            session.flush()
            return _override_from_row(row)

    def delete(self, override_id: str) -> bool:
        with self._db.session() as session:  # type: Session
            deleted = (
                session.query(CategoryOverrideRow)
                .filter(CategoryOverrideRow.id == override_id)
                .delete(synchronize_session=False)
            )
            return deleted > 0


class SqlDataSessionRepository:
    def __init__(self, db: DB) -> None:
        self._db = db

    def create(self, record: DataSessionRecord) -> DataSessionRecord:
        with self._db.session() as session:  # type: Session
            row = DataSessionRow(
                session_id=record.session_id,
                user_id=record.user_id,
                consent_id=record.consent_id,
                from_date=record.from_date,
                to_date=record.to_date,
                status=record.status.value,
                created_at=as_utc(record.created_at),
                processed_at=_optional_utc(record.processed_at),
            )
            session.add(row)
            session.flush()
            return _session_from_row(row)

    def get(self, session_id: str) -> DataSessionRecord | None:
        with self._db.session() as session:  # type: Session
            row = session.get(DataSessionRow, session_id)
            return _session_from_row(row) if row else None

    def update_status(self, session_id: str, status: SessionStatus) -> None:
        with self._db.session() as session:  # type: Session
            row = session.get(DataSessionRow, session_id)
            if row is None:
                raise NotFoundError(f"Data session {session_id} not found")
            row.status = status.value

    def mark_processed(self, session_id: str, processed_at: datetime) -> None:
        with self._db.session() as session:  # type: Session
            row = session.get(DataSessionRow, session_id)
            if row is None:
                raise NotFoundError(f"Data session {session_id} not found")
            row.processed_at = as_utc(processed_at)
