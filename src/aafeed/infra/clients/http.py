from __future__ import annotations

from datetime import date
import json
import os
from typing import Any, TypeVar, cast
import urllib.error
import urllib.parse
import urllib.request

from pydantic import Field, ValidationError

from aafeed.core.config import DEFAULT_PROVIDER_TIMEOUT_SECONDS
from aafeed.core.domain import ConsentStatus, SessionStatus
from aafeed.core.errors import ProviderError
from aafeed.infra.clients.aggregator import (
    AggregatorBaseModel,
    ConsentHandle,
    ConsentRequest,
    DataSession,
    RawTransaction,
)


M = TypeVar("M", bound=AggregatorBaseModel)


class ConsentStatusResponse(AggregatorBaseModel):
    status: ConsentStatus


class SessionStatusResponse(AggregatorBaseModel):
    status: SessionStatus


class TransactionsResponse(AggregatorBaseModel):
    transactions: list[RawTransaction] = Field(default_factory=list)


class HttpAggregatorClient:
    """JSON-over-HTTPS adapter for a live Account Aggregator."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        if not base_url:
            raise ProviderError("Aggregator base URL is required")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_env(cls) -> HttpAggregatorClient:
        """Construct a client from environment variables.

        Required:
        - AAFEED_PROVIDER_BASE_URL
        - AAFEED_PROVIDER_API_KEY
        Optional:
        - AAFEED_PROVIDER_TIMEOUT_SECONDS (defaults to 20)
        """
        base_url = cls._getenv_or_die("AAFEED_PROVIDER_BASE_URL")
        api_key = cls._getenv_or_die("AAFEED_PROVIDER_API_KEY")
        timeout_raw = os.getenv("AAFEED_PROVIDER_TIMEOUT_SECONDS", "")
        try:
            timeout = (
                float(timeout_raw) if timeout_raw else DEFAULT_PROVIDER_TIMEOUT_SECONDS
            )
        except ValueError as e:
            raise ProviderError(
                f"Invalid AAFEED_PROVIDER_TIMEOUT_SECONDS={timeout_raw!r}"
            ) from e
        return cls(base_url=base_url, api_key=api_key, timeout_seconds=timeout)

    @staticmethod
    def _getenv_or_die(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise ProviderError(f"Missing required environment variable: {name}")
        return value

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        if not body:
            return {}
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"Failed to parse aggregator response as JSON: {e}: {body}"
            ) from e

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._base_url + path
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method=method,
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout_seconds
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:  # pragma: no cover - network-dependent
            err_body = e.read().decode("utf-8", "ignore")
            raise ProviderError(f"Aggregator API error ({e.code}): {err_body}") from e
        except urllib.error.URLError as e:  # pragma: no cover - network-dependent
            raise ProviderError(f"Network error calling aggregator: {e}") from e
        except TimeoutError as e:
            raise ProviderError(
                f"Aggregator call {method} {path} timed out after "
                f"{self._timeout_seconds}s"
            ) from e

        return self._parse_json_response(body)

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", path, payload)

    def _get(self, path: str) -> dict[str, Any]:
        return self._request("GET", path)

    @staticmethod
    def _quote(value: str) -> str:
        return urllib.parse.quote(value, safe="")

    def _parse(self, model: type[M], data: Any) -> M:
        try:
            return model.parse(data)
        except ValidationError as e:
            raise ProviderError(f"Unexpected aggregator response: {e}") from e

    # High-level APIs -----------------------------------------------------

    def create_consent(self, request: ConsentRequest) -> ConsentHandle:
        payload = request.model_dump(mode="json", by_alias=True)
        return self._parse(ConsentHandle, self._post("/consents", payload))

    def get_consent_status(self, consent_handle: str) -> ConsentStatus:
        resp = self._parse(
            ConsentStatusResponse,
            self._get(f"/consents/{self._quote(consent_handle)}"),
        )
        return resp.status

    def create_data_session(
        self, consent_handle: str, from_date: date, to_date: date
    ) -> DataSession:
        payload = {"from": from_date.isoformat(), "to": to_date.isoformat()}
        return self._parse(
            DataSession,
            self._post(f"/consents/{self._quote(consent_handle)}/sessions", payload),
        )

    def get_session_status(self, session_id: str) -> SessionStatus:
        resp = self._parse(
            SessionStatusResponse,
            self._get(f"/sessions/{self._quote(session_id)}"),
        )
        return resp.status

    def fetch_transactions(self, session_id: str) -> list[RawTransaction]:
        resp = self._parse(
            TransactionsResponse,
            self._get(f"/sessions/{self._quote(session_id)}/transactions"),
        )
        return resp.transactions

    def revoke_consent(self, consent_handle: str) -> None:
        self._post(f"/consents/{self._quote(consent_handle)}/revoke", {})
