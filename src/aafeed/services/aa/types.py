from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from aafeed.core.domain import Consent, SessionStatus, StoredTransaction


@dataclass
class InitiatedConsent:
    """A freshly created PENDING consent and where to send the user."""

    consent: Consent
    redirect_url: str


@dataclass
class IngestOutcome:
    """Counts from one run of the ingestion pipeline."""

    fetched: int = 0
    batch_duplicates: int = 0
    existing_duplicates: int = 0
    failed: int = 0
    created: list[StoredTransaction] = field(default_factory=list)

    @property
    def new_count(self) -> int:
        return len(self.created)


@dataclass
class FetchResult:
    """Result of a fetch request or a data-ready webhook."""

    session_id: str
    status: SessionStatus
    processed: bool
    transactions: list[StoredTransaction] = field(default_factory=list)
    outcome: IngestOutcome | None = None

    def to_summary(self) -> dict[str, Any]:
        """JSON-serializable summary; filtered duplicates are not an error."""
        outcome = self.outcome or IngestOutcome()
        return {
            "status": "success",
            "session_id": self.session_id,
            "session_status": self.status.value,
            "processed": self.processed,
            "fetched_count": outcome.fetched,
            "new_count": outcome.new_count,
            "duplicate_count": outcome.batch_duplicates + outcome.existing_duplicates,
            "failed_count": outcome.failed,
            "transaction_ids": [txn.id for txn in self.transactions],
        }
