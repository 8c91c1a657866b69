from __future__ import annotations

from collections.abc import Callable
import concurrent.futures
from datetime import date
from typing import TypeVar

from aafeed.core.config import DEFAULT_PROVIDER_TIMEOUT_SECONDS
from aafeed.core.domain import ConsentStatus, SessionStatus
from aafeed.core.errors import ProviderError
from aafeed.infra.clients.aggregator import (
    AggregatorClient,
    ConsentHandle,
    ConsentRequest,
    DataSession,
    RawTransaction,
)

R = TypeVar("R")


class TimeoutAggregatorClient:
    """Bound every provider call so a stalled aggregator cannot hang ingestion.

    Calls run on a small worker pool; a call still running after
    ``timeout_seconds`` is abandoned and surfaced as ``ProviderError``.
    Unexpected exceptions from the wrapped client are surfaced the same way.
    """

    def __init__(
        self,
        inner: AggregatorClient,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        max_workers: int = 8,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._inner = inner
        self._timeout_seconds = timeout_seconds
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="aafeed-provider"
        )

    @property
    def inner(self) -> AggregatorClient:
        return self._inner

    def _call(self, operation: str, fn: Callable[[], R]) -> R:
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=self._timeout_seconds)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise ProviderError(
                f"Aggregator {operation} timed out after {self._timeout_seconds}s"
            ) from e
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Aggregator {operation} failed: {e}") from e

    def create_consent(self, request: ConsentRequest) -> ConsentHandle:
        return self._call(
            "create_consent", lambda: self._inner.create_consent(request)
        )

    def get_consent_status(self, consent_handle: str) -> ConsentStatus:
        return self._call(
            "get_consent_status",
            lambda: self._inner.get_consent_status(consent_handle),
        )

    def create_data_session(
        self, consent_handle: str, from_date: date, to_date: date
    ) -> DataSession:
        return self._call(
            "create_data_session",
            lambda: self._inner.create_data_session(consent_handle, from_date, to_date),
        )

    def get_session_status(self, session_id: str) -> SessionStatus:
        return self._call(
            "get_session_status", lambda: self._inner.get_session_status(session_id)
        )

    def fetch_transactions(self, session_id: str) -> list[RawTransaction]:
        return self._call(
            "fetch_transactions", lambda: self._inner.fetch_transactions(session_id)
        )

    def revoke_consent(self, consent_handle: str) -> None:
        self._call("revoke_consent", lambda: self._inner.revoke_consent(consent_handle))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
