"""Persistence contract consumed by the ingestion orchestrator.

Any datastore can back these protocols; ``aafeed.adapters.db.facade`` ships
the SQLAlchemy implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from aafeed.core.domain import (
    CategoryOverride,
    Consent,
    ConsentStatus,
    DataSessionRecord,
    SessionStatus,
    StoredTransaction,
)


class ConsentRepository(Protocol):
    def create(self, consent: Consent) -> Consent: ...

    def get(self, consent_id: str) -> Consent | None: ...

    def get_by_handle(self, consent_handle: str) -> Consent | None: ...

    def list_for_user(self, user_id: str) -> list[Consent]: ...

    def list_active_for_user(
        self, user_id: str, *, now: datetime | None = None
    ) -> list[Consent]: ...

    def update(self, consent: Consent) -> Consent: ...

    def update_status(self, consent_id: str, status: ConsentStatus) -> Consent: ...


class TransactionRepository(Protocol):
    def create(self, txn: StoredTransaction) -> StoredTransaction:
        """Insert a transaction.

        Raises:
            DuplicateTransactionError: If (user_id, hash_dedupe) already exists.
        """
        ...

    def get(self, transaction_id: str) -> StoredTransaction | None: ...

    def list_for_user(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[StoredTransaction], int]: ...

    def get_by_hash(
        self, user_id: str, hash_dedupe: str
    ) -> StoredTransaction | None: ...

    def list_recent_hashes(self, user_id: str, *, limit: int) -> set[str]: ...

    def update_category(
        self, transaction_id: str, category: str, subcategory: str
    ) -> StoredTransaction: ...

    def delete(self, transaction_id: str) -> bool: ...

    def delete_all_for_user(self, user_id: str) -> int: ...


class CategoryOverrideRepository(Protocol):
    def create(self, override: CategoryOverride) -> CategoryOverride: ...

    def get(self, override_id: str) -> CategoryOverride | None: ...

    def list_for_user(self, user_id: str) -> list[CategoryOverride]: ...

    def update(self, override: CategoryOverride) -> CategoryOverride: ...

    def delete(self, override_id: str) -> bool: ...


class DataSessionRepository(Protocol):
    def create(self, record: DataSessionRecord) -> DataSessionRecord: ...

    def get(self, session_id: str) -> DataSessionRecord | None: ...

    def update_status(self, session_id: str, status: SessionStatus) -> None: ...

    def mark_processed(self, session_id: str, processed_at: datetime) -> None: ...


@dataclass
class Repositories:
    """Bundle of repositories handed to the orchestrator."""

    consents: ConsentRepository
    transactions: TransactionRepository
    overrides: CategoryOverrideRepository
    sessions: DataSessionRepository
