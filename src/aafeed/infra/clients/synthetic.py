"""In-process synthetic aggregator used when no live provider is configured.

Consents and sessions live in a ``SyntheticProviderState`` handed to the
client, never in module globals. Sessions flip from PENDING to READY on a
timer callback that takes the same lock as every read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
import random
import threading
import uuid

import loguru
from loguru import logger

from aafeed.core.domain import ConsentStatus, SessionStatus
from aafeed.core.errors import ProviderError
from aafeed.infra.clients.aggregator import (
    ConsentHandle,
    ConsentRequest,
    DataSession,
    RawTransaction,
)

SYNTHETIC_REDIRECT_BASE = "https://mock-aa.example/consent"

_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

CREDIT_MERCHANTS = (
    "INTEREST CREDIT",
    "SALARY CREDIT",
    "REIMBURSEMENT",
    "NEFT",
    "IMPS",
    "REFUND",
    "CASH DEPOSIT",
    "CHEQUE",
    "UPI",
)

DEBIT_MERCHANTS = (
    "SWIGGY",
    "ZOMATO",
    "AMAZON",
    "FLIPKART",
    "NETFLIX",
    "SPOTIFY",
    "UBER",
    "OLA",
    "PAYTM",
    "PHONEPE",
    "GOOGLE PAY",
    "BHARAT QR",
    "ATM WITHDRAWAL",
    "NEFT",
    "IMPS",
    "UPI",
    "CHEQUE",
)

ACCOUNT_REFS = (
    "XXXX1234",
    "user@upi",
    "user@okicici",
    "user@paytm",
    "user@ybl",
)


@dataclass
class SyntheticConsent:
    consent_handle: str
    user_id: str
    fi_type: str
    status: ConsentStatus
    redirect_url: str
    created_at: datetime


@dataclass
class SyntheticSession:
    session_id: str
    consent_handle: str
    from_date: date
    to_date: date
    status: SessionStatus
    created_at: datetime


@dataclass
class SyntheticProviderState:
    """Mutable provider-side bookkeeping; all access goes through ``lock``."""

    consents: dict[str, SyntheticConsent] = field(default_factory=dict)
    sessions: dict[str, SyntheticSession] = field(default_factory=dict)
    timers: dict[str, threading.Timer] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)


class SyntheticProviderLogger:
    """Handles all logging for the synthetic provider."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def consent_created(self, consent_handle: str, user_id: str) -> None:
        self._logger.bind(consent_handle=consent_handle, user_id=user_id).debug(
            "Synthetic consent {} created for user {}", consent_handle, user_id
        )

    def session_created(self, session_id: str, delay_seconds: float) -> None:
        self._logger.bind(session_id=session_id, delay=delay_seconds).debug(
            "Synthetic session {} created (ready in {:.1f}s)",
            session_id,
            delay_seconds,
        )

    def session_ready(self, session_id: str) -> None:
        self._logger.bind(session_id=session_id).debug(
            "Synthetic session {} is READY", session_id
        )

    def transactions_generated(self, session_id: str, count: int) -> None:
        self._logger.bind(session_id=session_id, count=count).debug(
            "Generated {} synthetic transactions for session {}", count, session_id
        )


def _random_token(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(_CHARSET) for _ in range(length))


def _describe(rng: random.Random, merchant: str) -> str:
    if merchant in ("SWIGGY", "ZOMATO"):
        return f"{merchant}/ORDER/{_random_token(rng, 8)}"
    if merchant in ("AMAZON", "FLIPKART"):
        return f"{merchant}/PAYMENT/{_random_token(rng, 8)}"
    if merchant in ("UBER", "OLA"):
        return f"{merchant}/RIDE/{_random_token(rng, 8)}"
    if merchant in ("PAYTM", "PHONEPE", "GOOGLE PAY"):
        local = _random_token(rng, 6).lower()
        handle = _random_token(rng, 3).lower()
        return f"{merchant}/UPI/{local}@{handle}"
    if merchant == "ATM WITHDRAWAL":
        return "ATM WITHDRAWAL/XXXX1234/BRANCH"
    if merchant in ("NEFT", "IMPS"):
        return f"{merchant}/TRANSFER/{_random_token(rng, 8)}"
    if merchant == "UPI":
        local = _random_token(rng, 6).lower()
        handle = _random_token(rng, 3).lower()
        return f"UPI/{local}@{handle}"
    if merchant == "INTEREST CREDIT":
        return "INTEREST CREDIT/SAVINGS ACCOUNT"
    if merchant == "SALARY CREDIT":
        return "SALARY CREDIT/COMPANY NAME"
    return f"{merchant}/{_random_token(rng, 8)}"


def generate_day_transactions(
    *, seed: str, consent_handle: str, day: date
) -> list[RawTransaction]:
    """Generate 1-5 plausible transactions for one day.

    The generator is seeded per (seed, consent, day), so a day always yields
    the same records no matter which date range it was requested under.
    """
    rng = random.Random(f"{seed}:{consent_handle}:{day.isoformat()}")
    account_ref = ACCOUNT_REFS[
        random.Random(f"{seed}:{consent_handle}").randrange(len(ACCOUNT_REFS))
    ]

    transactions: list[RawTransaction] = []
    for _ in range(rng.randint(1, 5)):
        posted_at = datetime(
            day.year,
            day.month,
            day.day,
            rng.randrange(24),
            rng.randrange(60),
            tzinfo=UTC,
        )
        amount = float(rng.randint(100, 9999))
        txn_type = "CREDIT" if rng.random() < 0.3 else "DEBIT"
        merchants = CREDIT_MERCHANTS if txn_type == "CREDIT" else DEBIT_MERCHANTS
        merchant = rng.choice(merchants)

        transactions.append(
            RawTransaction(
                description=_describe(rng, merchant),
                amount=amount,
                currency="INR",
                txn_type=txn_type,
                posted_at=posted_at.isoformat().replace("+00:00", "Z"),
                value_date=day.isoformat(),
                balance_after=None,
                account_ref=account_ref,
                merchant_hint=merchant,
                metadata={"source": "synthetic_aa"},
            )
        )
    return transactions


def generate_transactions(
    *, seed: str, consent_handle: str, from_date: date, to_date: date
) -> list[RawTransaction]:
    transactions: list[RawTransaction] = []
    current = from_date
    while current <= to_date:
        transactions.extend(
            generate_day_transactions(
                seed=seed, consent_handle=consent_handle, day=current
            )
        )
        current += timedelta(days=1)
    return transactions


class SyntheticAggregatorClient:
    """Aggregator stand-in that generates transaction streams locally."""

    def __init__(
        self,
        state: SyntheticProviderState,
        *,
        ready_delay_seconds: float = 2.0,
        seed: str = "aafeed",
        redirect_base_url: str = SYNTHETIC_REDIRECT_BASE,
    ) -> None:
        self._state = state
        self._ready_delay_seconds = ready_delay_seconds
        self._seed = seed
        self._redirect_base_url = redirect_base_url.rstrip("/")
        self._logger = SyntheticProviderLogger()

    def create_consent(self, request: ConsentRequest) -> ConsentHandle:
        consent_handle = f"consent_{uuid.uuid4().hex[:8]}"
        redirect_url = f"{self._redirect_base_url}/{consent_handle}"

        with self._state.lock:
            self._state.consents[consent_handle] = SyntheticConsent(
                consent_handle=consent_handle,
                user_id=request.user_id,
                fi_type=request.fi_type,
                status=ConsentStatus.PENDING,
                redirect_url=redirect_url,
                created_at=datetime.now(UTC),
            )

        self._logger.consent_created(consent_handle, request.user_id)
        return ConsentHandle(
            consent_handle=consent_handle,
            redirect_url=redirect_url,
            status=ConsentStatus.PENDING,
        )

    def get_consent_status(self, consent_handle: str) -> ConsentStatus:
        with self._state.lock:
            return self._get_consent(consent_handle).status

    def approve_consent(self, consent_handle: str) -> None:
        """Simulate the user approving the consent on the provider's screen."""
        with self._state.lock:
            consent = self._get_consent(consent_handle)
            if consent.status is ConsentStatus.REVOKED:
                raise ProviderError(f"Consent already revoked: {consent_handle}")
            consent.status = ConsentStatus.ACTIVE

    def create_data_session(
        self, consent_handle: str, from_date: date, to_date: date
    ) -> DataSession:
        session_id = f"session_{uuid.uuid4().hex[:8]}"
        ready_now = self._ready_delay_seconds <= 0

        with self._state.lock:
            consent = self._get_consent(consent_handle)
            if consent.status is not ConsentStatus.ACTIVE:
                raise ProviderError(f"Consent is not active: {consent_handle}")

            session = SyntheticSession(
                session_id=session_id,
                consent_handle=consent_handle,
                from_date=from_date,
                to_date=to_date,
                status=SessionStatus.READY if ready_now else SessionStatus.PENDING,
                created_at=datetime.now(UTC),
            )
            self._state.sessions[session_id] = session

            if not ready_now:
                timer = threading.Timer(
                    self._ready_delay_seconds, self._mark_ready, args=(session_id,)
                )
                timer.daemon = True
                self._state.timers[session_id] = timer
                timer.start()

            status = session.status

        self._logger.session_created(session_id, self._ready_delay_seconds)
        return DataSession(session_id=session_id, status=status)

    def get_session_status(self, session_id: str) -> SessionStatus:
        with self._state.lock:
            return self._get_session(session_id).status

    def fetch_transactions(self, session_id: str) -> list[RawTransaction]:
        with self._state.lock:
            session = self._get_session(session_id)
            if session.status is not SessionStatus.READY:
                raise ProviderError(f"Session is not ready: {session_id}")
            consent_handle = session.consent_handle
            from_date, to_date = session.from_date, session.to_date

        transactions = generate_transactions(
            seed=self._seed,
            consent_handle=consent_handle,
            from_date=from_date,
            to_date=to_date,
        )
        self._logger.transactions_generated(session_id, len(transactions))
        return transactions

    def revoke_consent(self, consent_handle: str) -> None:
        """Revoke a consent; revoking twice is a no-op."""
        with self._state.lock:
            self._get_consent(consent_handle).status = ConsentStatus.REVOKED

    def close(self) -> None:
        """Cancel pending readiness timers."""
        with self._state.lock:
            timers = list(self._state.timers.values())
            self._state.timers.clear()
        for timer in timers:
            timer.cancel()

    def _mark_ready(self, session_id: str) -> None:
        with self._state.lock:
            self._state.timers.pop(session_id, None)
            session = self._state.sessions.get(session_id)
            if session is None:
                return
            session.status = SessionStatus.READY
        self._logger.session_ready(session_id)

    def _get_consent(self, consent_handle: str) -> SyntheticConsent:
        consent = self._state.consents.get(consent_handle)
        if consent is None:
            raise ProviderError(f"Consent not found: {consent_handle}")
        return consent

    def _get_session(self, session_id: str) -> SyntheticSession:
        session = self._state.sessions.get(session_id)
        if session is None:
            raise ProviderError(f"Session not found: {session_id}")
        return session
