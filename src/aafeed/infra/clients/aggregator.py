"""Provider-agnostic Account Aggregator client contract.

Provider adapters (synthetic today, a real aggregator later) implement
``AggregatorClient``; the orchestrator depends only on this module.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Protocol, Self

from pydantic import BaseModel, ConfigDict, Field

from aafeed.core.domain import ConsentStatus, SessionStatus


class AggregatorBaseModel(BaseModel):
    """Shared base for provider messages with a short parse alias."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class ConsentDateRange(AggregatorBaseModel):
    from_date: date = Field(alias="from")
    to_date: date = Field(alias="to")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ConsentRequest(AggregatorBaseModel):
    user_id: str
    fi_type: str
    purpose: str
    date_range: ConsentDateRange
    frequency: str
    redirect_url: str = ""
    webhook_url: str = ""


class ConsentHandle(AggregatorBaseModel):
    consent_handle: str
    redirect_url: str
    status: ConsentStatus = ConsentStatus.PENDING


class DataSession(AggregatorBaseModel):
    session_id: str
    status: SessionStatus = SessionStatus.PENDING


class RawTransaction(AggregatorBaseModel):
    """Transaction as received from the provider; never persisted as-is."""

    description: str = ""
    amount: float
    currency: str = "INR"
    txn_type: str = Field(default="DEBIT", alias="type")
    posted_at: str
    value_date: str | None = None
    balance_after: float | None = None
    account_ref: str = ""
    merchant_hint: str | None = Field(default=None, alias="merchant")
    metadata: dict[str, Any] = Field(default_factory=dict, alias="source_meta")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AggregatorClient(Protocol):
    """Capabilities the orchestrator needs from an aggregator.

    Every method raises ``ProviderError`` when the provider call fails or
    times out.
    """

    def create_consent(self, request: ConsentRequest) -> ConsentHandle: ...

    def get_consent_status(self, consent_handle: str) -> ConsentStatus: ...

    def create_data_session(
        self, consent_handle: str, from_date: date, to_date: date
    ) -> DataSession: ...

    def get_session_status(self, session_id: str) -> SessionStatus: ...

    def fetch_transactions(self, session_id: str) -> list[RawTransaction]: ...

    def revoke_consent(self, consent_handle: str) -> None: ...
