from __future__ import annotations

import loguru
from loguru import logger


class AAServiceLogger:
    """Handles all logging for AAService with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def consent_initiated(self, user_id: str, consent_id: str, fi_type: str) -> None:
        self._logger.bind(user_id=user_id, consent_id=consent_id).info(
            "Consent {} initiated for user {} ({})", consent_id, user_id, fi_type
        )

    def consent_status_changed(
        self, consent_id: str, previous: str, current: str
    ) -> None:
        self._logger.bind(
            consent_id=consent_id, previous=previous, current=current
        ).info("Consent {} moved {} -> {}", consent_id, previous, current)

    def consent_status_replayed(self, consent_id: str, status: str) -> None:
        self._logger.bind(consent_id=consent_id, status=status).debug(
            "Consent {} already {}, nothing to change", consent_id, status
        )

    def consent_revoked(self, user_id: str, consent_id: str) -> None:
        self._logger.bind(user_id=user_id, consent_id=consent_id).info(
            "Consent {} revoked by user {}", consent_id, user_id
        )

    def consent_already_revoked(self, consent_id: str) -> None:
        self._logger.bind(consent_id=consent_id).debug(
            "Consent {} already revoked", consent_id
        )

    def session_opened(
        self, user_id: str, consent_id: str, session_id: str, status: str
    ) -> None:
        self._logger.bind(
            user_id=user_id, consent_id=consent_id, session_id=session_id
        ).info(
            "Data session {} opened for consent {} ({})",
            session_id,
            consent_id,
            status,
        )

    def session_pending(self, session_id: str) -> None:
        self._logger.bind(session_id=session_id).info(
            "Data session {} not ready yet; waiting for webhook or poll", session_id
        )

    def ingest_start(self, user_id: str, session_id: str) -> None:
        self._logger.bind(user_id=user_id, session_id=session_id).info(
            "Ingesting session {} for user {}", session_id, user_id
        )

    def ingest_complete(
        self,
        user_id: str,
        session_id: str,
        fetched: int,
        created: int,
        duplicates: int,
        failed: int,
    ) -> None:
        self._logger.bind(
            user_id=user_id,
            session_id=session_id,
            fetched=fetched,
            created=created,
            duplicates=duplicates,
            failed=failed,
        ).info(
            "Session {}: {} fetched, {} new, {} duplicates, {} failed",
            session_id,
            fetched,
            created,
            duplicates,
            failed,
        )

    def record_skipped(self, user_id: str, reason: str) -> None:
        self._logger.bind(user_id=user_id).warning(
            "Skipping transaction for user {}: {}", user_id, reason
        )

    def duplicate_skipped(self, user_id: str, hash_dedupe: str) -> None:
        self._logger.bind(user_id=user_id, hash_dedupe=hash_dedupe).info(
            "Transaction {} already stored for user {}", hash_dedupe[:12], user_id
        )

    def manual_recorded(self, user_id: str, transaction_id: str) -> None:
        self._logger.bind(user_id=user_id, transaction_id=transaction_id).info(
            "Manual transaction {} recorded for user {}", transaction_id, user_id
        )

    def transaction_recategorized(
        self, transaction_id: str, category: str, subcategory: str
    ) -> None:
        self._logger.bind(transaction_id=transaction_id).info(
            "Transaction {} recategorized to {}/{}",
            transaction_id,
            category,
            subcategory or "-",
        )
