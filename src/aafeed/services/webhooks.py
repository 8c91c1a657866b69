"""Signed inbound callbacks from the aggregator.

Both entry points take the raw request body and the signature header value
separately. The signature is checked against the exact bytes received before
anything is parsed or any state changes.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any

import loguru
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from aafeed.core.config import AAFeedConfig
from aafeed.core.domain import ConsentStatus
from aafeed.core.errors import SignatureInvalidError
from aafeed.services.aa.service import AAService
from aafeed.services.aa.types import FetchResult


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature.strip().lower())


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse_body(cls, body: bytes) -> Any:
        return cls.model_validate_json(body)


class ConsentCallbackPayload(WebhookPayload):
    consent_id: str
    status: ConsentStatus


class DataReadyPayload(WebhookPayload):
    session_id: str
    status: str | None = None
    event_type: str | None = None


class WebhookLogger:
    """Handles all logging for WebhookHandler."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def signature_rejected(self, endpoint: str) -> None:
        self._logger.bind(endpoint=endpoint).warning(
            "Rejected {} webhook: invalid signature", endpoint
        )

    def payload_rejected(self, endpoint: str, error: str) -> None:
        self._logger.bind(endpoint=endpoint).warning(
            "Rejected {} webhook: malformed payload ({})", endpoint, error
        )

    def received(self, endpoint: str, reference: str) -> None:
        self._logger.bind(endpoint=endpoint, reference=reference).info(
            "Accepted {} webhook for {}", endpoint, reference
        )


class WebhookHandler:
    """Verify, parse and dispatch aggregator callbacks to ``AAService``."""

    def __init__(
        self,
        service: AAService,
        secret: str,
        *,
        webhook_logger: WebhookLogger | None = None,
    ) -> None:
        self._service = service
        self._secret = secret
        self._logger = webhook_logger or WebhookLogger()

    def _verify(self, endpoint: str, body: bytes, signature: str | None) -> None:
        if not verify_signature(self._secret, body, signature):
            self._logger.signature_rejected(endpoint)
            raise SignatureInvalidError(f"Invalid signature on {endpoint} webhook")

    def handle_consent_callback(
        self, body: bytes, signature: str | None
    ) -> dict[str, Any]:
        """Apply a consent status change reported by the provider.

        Raises:
            SignatureInvalidError: If the signature does not match the body.
            ValueError: If the body is not a valid consent callback.
        """
        self._verify("consent", body, signature)
        try:
            payload = ConsentCallbackPayload.parse_body(body)
        except ValidationError as e:
            self._logger.payload_rejected("consent", str(e))
            raise ValueError(f"Malformed consent callback: {e}") from e

        self._logger.received("consent", payload.consent_id)
        consent = self._service.handle_consent_callback(
            payload.consent_id, payload.status
        )
        return {
            "status": "success",
            "consent_id": consent.id,
            "consent_status": consent.status.value,
        }

    def handle_data_ready(self, body: bytes, signature: str | None) -> FetchResult:
        """Ingest the session named in a data-ready notification.

        Raises:
            SignatureInvalidError: If the signature does not match the body.
            ValueError: If the body is not a valid data-ready notification.
        """
        self._verify("data-ready", body, signature)
        try:
            payload = DataReadyPayload.parse_body(body)
        except ValidationError as e:
            self._logger.payload_rejected("data-ready", str(e))
            raise ValueError(f"Malformed data-ready notification: {e}") from e

        self._logger.received("data-ready", payload.session_id)
        return self._service.handle_data_ready_webhook(payload.session_id)


def build_webhook_handler(config: AAFeedConfig, service: AAService) -> WebhookHandler:
    """Create the inbound webhook handler from configuration.

    Raises:
        ValueError: If AAFEED_WEBHOOK_SECRET is not configured.
    """
    if not config.webhook_secret:
        raise ValueError("AAFEED_WEBHOOK_SECRET is required to accept webhooks")
    return WebhookHandler(service, config.webhook_secret)
