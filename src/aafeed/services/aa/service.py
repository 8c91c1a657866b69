"""Consent lifecycle and transaction ingestion orchestration.

``AAService`` is the only component that talks to both the aggregator client
and the repositories. Every ingestion run for a user happens under that
user's lock; the unique (user_id, hash_dedupe) constraint catches whatever
slips past the in-memory hash diff.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from aafeed.adapters.db.repository import Repositories
from aafeed.core.config import DEFAULT_CONSENT_VALIDITY_DAYS, DEFAULT_HASH_LOOKBACK
from aafeed.core.domain import (
    CategoryOverride,
    Consent,
    ConsentStatus,
    DataSessionRecord,
    DateRange,
    NormalizedTransaction,
    SessionStatus,
    StoredTransaction,
    TransactionSource,
    can_transition,
    new_id,
    parse_matcher,
    utcnow,
)
from aafeed.core.errors import (
    ConsentNotActiveError,
    DuplicateTransactionError,
    InvalidConsentTransitionError,
    NotFoundError,
    SessionNotReadyError,
    UnauthorizedError,
)
from aafeed.infra.clients.aggregator import (
    AggregatorClient,
    ConsentDateRange,
    ConsentRequest,
    RawTransaction,
)
from aafeed.ingest.dedup import (
    dedup_hash,
    deduplicate,
    filter_new,
    parse_posted_at,
)
from aafeed.ingest.normalizer import normalize_batch, normalize_transaction
from aafeed.ingest.overrides import apply_category_overrides
from aafeed.services.aa.locks import IngestionLocks
from aafeed.services.aa.logger import AAServiceLogger
from aafeed.services.aa.types import FetchResult, IngestOutcome, InitiatedConsent


def _parse_value_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class AAService:
    """Consent-gated ingestion of aggregator transactions for many users."""

    def __init__(
        self,
        client: AggregatorClient,
        repositories: Repositories,
        *,
        consent_validity_days: int = DEFAULT_CONSENT_VALIDITY_DAYS,
        hash_lookback: int = DEFAULT_HASH_LOOKBACK,
        redirect_url: str = "",
        webhook_url: str = "",
        locks: IngestionLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
        service_logger: AAServiceLogger | None = None,
    ) -> None:
        self._client = client
        self._repos = repositories
        self._consent_validity = timedelta(days=consent_validity_days)
        self._hash_lookback = hash_lookback
        self._redirect_url = redirect_url
        self._webhook_url = webhook_url
        self._locks = locks or IngestionLocks()
        self._clock = clock
        self._logger = service_logger or AAServiceLogger()

    # ------------------------------------------------------------------
    # Consent lifecycle
    # ------------------------------------------------------------------

    def initiate_consent(
        self,
        user_id: str,
        fi_type: str,
        purpose: str,
        date_range: DateRange,
        frequency: str,
    ) -> InitiatedConsent:
        """Ask the provider for a consent and persist it as PENDING.

        Nothing is written locally if the provider call fails.
        """
        request = ConsentRequest(
            user_id=user_id,
            fi_type=fi_type,
            purpose=purpose,
            date_range=ConsentDateRange(
                from_date=date_range.start, to_date=date_range.end
            ),
            frequency=frequency,
            redirect_url=self._redirect_url,
            webhook_url=self._webhook_url,
        )
        handle = self._client.create_consent(request)

        now = self._clock()
        consent = self._repos.consents.create(
            Consent(
                id=new_id(),
                user_id=user_id,
                consent_handle=handle.consent_handle,
                fi_type=fi_type,
                status=ConsentStatus.PENDING,
                purpose=purpose,
                frequency=frequency,
                created_at=now,
                updated_at=now,
            )
        )
        self._logger.consent_initiated(user_id, consent.id, fi_type)
        return InitiatedConsent(consent=consent, redirect_url=handle.redirect_url)

    def handle_consent_callback(
        self, consent_handle: str, status: ConsentStatus | str
    ) -> Consent:
        """Apply a provider-reported status to the consent with that handle."""
        consent = self._repos.consents.get_by_handle(consent_handle)
        if consent is None:
            raise NotFoundError(f"Consent with handle {consent_handle} not found")
        return self._apply_status(consent, ConsentStatus(status))

    def refresh_consent_status(self, user_id: str, consent_id: str) -> Consent:
        """Poll the provider for the consent status instead of awaiting a callback."""
        consent = self._owned_consent(user_id, consent_id)
        status = self._client.get_consent_status(consent.consent_handle)
        return self._apply_status(consent, status)

    def revoke_consent(self, user_id: str, consent_id: str) -> Consent:
        """Revoke remotely, then locally. A failed remote call changes nothing."""
        consent = self._owned_consent(user_id, consent_id)
        if consent.status is ConsentStatus.REVOKED:
            self._logger.consent_already_revoked(consent.id)
            return consent

        self._client.revoke_consent(consent.consent_handle)
        revoked = self._repos.consents.update_status(consent.id, ConsentStatus.REVOKED)
        self._logger.consent_revoked(user_id, consent.id)
        return revoked

    def list_active_consents(self, user_id: str) -> list[Consent]:
        return self._repos.consents.list_active_for_user(user_id, now=self._clock())

    def list_consents(self, user_id: str) -> list[Consent]:
        return self._repos.consents.list_for_user(user_id)

    def _apply_status(self, consent: Consent, status: ConsentStatus) -> Consent:
        if status is consent.status:
            # Replays keep the original expiry.
            self._logger.consent_status_replayed(consent.id, status.value)
            return consent
        if not can_transition(consent.status, status):
            raise InvalidConsentTransitionError(consent.status.value, status.value)

        previous = consent.status
        consent.status = status
        if status is ConsentStatus.ACTIVE:
            consent.valid_till = self._clock() + self._consent_validity
        updated = self._repos.consents.update(consent)
        self._logger.consent_status_changed(consent.id, previous.value, status.value)
        return updated

    def _owned_consent(self, user_id: str, consent_id: str) -> Consent:
        consent = self._repos.consents.get(consent_id)
        if consent is None:
            raise NotFoundError(f"Consent {consent_id} not found")
        if consent.user_id != user_id:
            raise UnauthorizedError(f"Consent {consent_id} does not belong to user")
        return consent

    def _require_usable(self, consent: Consent) -> None:
        now = self._clock()
        if not consent.is_usable(now):
            raise ConsentNotActiveError(
                consent.status.value, expired=consent.is_expired(now)
            )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def fetch_transactions(
        self, user_id: str, consent_id: str, from_date: date, to_date: date
    ) -> FetchResult:
        """Open a data session and ingest it now if the provider is already READY.

        Otherwise the returned result carries the session id; completion
        arrives through ``handle_data_ready_webhook`` or ``poll_session``.
        """
        window = DateRange(start=from_date, end=to_date)
        consent = self._owned_consent(user_id, consent_id)
        self._require_usable(consent)

        session = self._client.create_data_session(
            consent.consent_handle, window.start, window.end
        )
        record = self._repos.sessions.create(
            DataSessionRecord(
                session_id=session.session_id,
                user_id=user_id,
                consent_id=consent.id,
                from_date=window.start,
                to_date=window.end,
                status=session.status,
                created_at=self._clock(),
            )
        )
        self._logger.session_opened(
            user_id, consent.id, record.session_id, session.status.value
        )

        if session.status is not SessionStatus.READY:
            self._logger.session_pending(record.session_id)
            return FetchResult(
                session_id=record.session_id, status=session.status, processed=False
            )

        return self._process_session(record)

    def handle_data_ready_webhook(self, session_id: str) -> FetchResult:
        """Ingest a session the provider reports as ready."""
        record = self._repos.sessions.get(session_id)
        if record is None:
            raise NotFoundError(f"Data session {session_id} not found")

        status = self._client.get_session_status(session_id)
        if status is not SessionStatus.READY:
            raise SessionNotReadyError(session_id, status.value)
        return self._process_session(record)

    def poll_session(self, user_id: str, session_id: str) -> FetchResult:
        """Check a session once; ingest it if READY."""
        record = self._repos.sessions.get(session_id)
        if record is None:
            raise NotFoundError(f"Data session {session_id} not found")
        if record.user_id != user_id:
            raise UnauthorizedError(
                f"Data session {session_id} does not belong to user"
            )

        status = self._client.get_session_status(session_id)
        if status is not SessionStatus.READY:
            return FetchResult(session_id=session_id, status=status, processed=False)
        return self._process_session(record)

    def _process_session(self, record: DataSessionRecord) -> FetchResult:
        consent = self._repos.consents.get(record.consent_id)
        if consent is None:
            raise NotFoundError(f"Consent {record.consent_id} not found")
        self._require_usable(consent)

        if record.status is not SessionStatus.READY:
            self._repos.sessions.update_status(record.session_id, SessionStatus.READY)

        with self._locks.hold(record.user_id):
            self._logger.ingest_start(record.user_id, record.session_id)
            raws = self._client.fetch_transactions(record.session_id)
            outcome = self._ingest(
                record.user_id, consent.id, raws, TransactionSource.AGGREGATOR
            )
            self._repos.sessions.mark_processed(record.session_id, self._clock())

        self._logger.ingest_complete(
            record.user_id,
            record.session_id,
            outcome.fetched,
            outcome.new_count,
            outcome.batch_duplicates + outcome.existing_duplicates,
            outcome.failed,
        )
        return FetchResult(
            session_id=record.session_id,
            status=SessionStatus.READY,
            processed=True,
            transactions=outcome.created,
            outcome=outcome,
        )

    def _ingest(
        self,
        user_id: str,
        consent_id: str | None,
        raws: list[RawTransaction],
        source: TransactionSource,
    ) -> IngestOutcome:
        """Normalize, dedup and persist one batch. Caller holds the user lock."""
        outcome = IngestOutcome(fetched=len(raws))

        normalized = normalize_batch(raws)
        unique = deduplicate(normalized)
        outcome.batch_duplicates = len(normalized) - len(unique)

        existing = self._repos.transactions.list_recent_hashes(
            user_id, limit=self._hash_lookback
        )
        fresh = filter_new(unique, existing)
        outcome.existing_duplicates = len(unique) - len(fresh)

        for digest, txn in fresh:
            try:
                stored = self._repos.transactions.create(
                    self._to_stored(user_id, consent_id, digest, txn, source)
                )
            except DuplicateTransactionError:
                self._logger.duplicate_skipped(user_id, digest)
                outcome.existing_duplicates += 1
                continue
            except Exception as e:
                self._logger.record_skipped(user_id, str(e))
                outcome.failed += 1
                continue
            outcome.created.append(stored)

        return outcome

    def _to_stored(
        self,
        user_id: str,
        consent_id: str | None,
        digest: str,
        txn: NormalizedTransaction,
        source: TransactionSource,
    ) -> StoredTransaction:
        posted_at = parse_posted_at(txn.posted_at)
        if posted_at is None:
            raise ValueError(f"Malformed posted_at {txn.posted_at!r}")

        return StoredTransaction(
            id=new_id(),
            user_id=user_id,
            consent_id=consent_id,
            hash_dedupe=digest,
            posted_at=posted_at,
            amount=txn.amount,
            currency=txn.currency,
            txn_type=txn.txn_type,
            description=txn.description,
            merchant_name=txn.merchant_name,
            account_ref=txn.account_ref,
            category=txn.category,
            subcategory=txn.subcategory,
            value_date=_parse_value_date(txn.value_date),
            balance_after=txn.balance_after,
            source=source,
            metadata=dict(txn.metadata),
            created_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Stored transactions
    # ------------------------------------------------------------------

    def record_manual_transaction(
        self, user_id: str, raw: RawTransaction | dict[str, Any]
    ) -> StoredTransaction:
        """Store a user-entered transaction under the same identity hash.

        Returns the existing record when the same transaction is already stored.
        """
        if not isinstance(raw, RawTransaction):
            raw = RawTransaction.parse(raw)

        with self._locks.hold(user_id):
            outcome = self._ingest(user_id, None, [raw], TransactionSource.MANUAL)

        if outcome.created:
            stored = outcome.created[0]
            self._logger.manual_recorded(user_id, stored.id)
            return stored

        if outcome.failed:
            raise ValueError(
                f"Manual transaction could not be stored: {raw.posted_at!r}"
            )

        existing = self._repos.transactions.get_by_hash(
            user_id, dedup_hash(normalize_transaction(raw))
        )
        if existing is None:
            raise NotFoundError("Matching stored transaction not found")
        return existing

    def list_transactions(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[StoredTransaction], int]:
        """Page through stored transactions with the user's overrides applied."""
        rows, total = self._repos.transactions.list_for_user(
            user_id, start=start, end=end, limit=limit, offset=offset
        )
        overrides = self._repos.overrides.list_for_user(user_id)
        return apply_category_overrides(rows, overrides), total

    def recategorize_transaction(
        self, user_id: str, transaction_id: str, category: str, subcategory: str = ""
    ) -> StoredTransaction:
        txn = self._repos.transactions.get(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if txn.user_id != user_id:
            raise UnauthorizedError(
                f"Transaction {transaction_id} does not belong to user"
            )
        updated = self._repos.transactions.update_category(
            transaction_id, category, subcategory
        )
        self._logger.transaction_recategorized(transaction_id, category, subcategory)
        return updated

    def delete_user_transactions(self, user_id: str) -> int:
        """Account deletion: drop every stored transaction of the user."""
        with self._locks.hold(user_id):
            return self._repos.transactions.delete_all_for_user(user_id)

    # ------------------------------------------------------------------
    # Category overrides
    # ------------------------------------------------------------------

    def add_category_override(
        self,
        user_id: str,
        matcher: str,
        category: str,
        subcategory: str = "",
        *,
        position: int | None = None,
    ) -> CategoryOverride:
        """Add an override; without a position it is evaluated after existing ones."""
        parsed = parse_matcher(matcher)
        if position is None:
            existing = self._repos.overrides.list_for_user(user_id)
            position = max((o.position for o in existing), default=-1) + 1
        return self._repos.overrides.create(
            CategoryOverride(
                id=new_id(),
                user_id=user_id,
                matcher=parsed,
                category=category,
                subcategory=subcategory,
                position=position,
                created_at=self._clock(),
            )
        )

    def list_category_overrides(self, user_id: str) -> list[CategoryOverride]:
        return self._repos.overrides.list_for_user(user_id)

    def delete_category_override(self, user_id: str, override_id: str) -> None:
        override = self._repos.overrides.get(override_id)
        if override is None:
            raise NotFoundError(f"Category override {override_id} not found")
        if override.user_id != user_id:
            raise UnauthorizedError(
                f"Category override {override_id} does not belong to user"
            )
        self._repos.overrides.delete(override_id)
