from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from ..errors import InvalidInputError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


class PaymentIntent(BaseModel):
    """Subset of the processor's payment-intent object the app relies on."""

    id: str
    status: str
    amount: int = Field(description="Amount in the smallest currency unit (cents).")
    currency: str = "usd"
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentProvider(ABC):
    """
    Payment processor capability. The server only trusts amounts and
    statuses read back from the processor, never values sent by the client.
    """

    @abstractmethod
    async def create_payment_intent(
        self, amount_cents: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent: ...

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent: ...


class StripePaymentProvider(PaymentProvider):
    """
    Stripe REST client over httpx. Requests are form-encoded with bearer
    auth and a pinned API version; no retries are attempted.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com/v1",
        api_version: str = "2023-10-16",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Stripe-Version": self.api_version,
            "Accept": "application/json",
        }

    async def _request(
        self, method: str, path: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._get_headers(),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, data=data)
        except httpx.HTTPError as exc:
            logger.error("Stripe request %s %s failed: %s", method, path, exc)
            raise UpstreamUnavailableError(
                "Payment provider is unavailable", status_code=502
            ) from exc

        if response.status_code == 404:
            raise InvalidInputError("Payment intent not found")
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(
                "Stripe request %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                message,
            )
            if response.status_code < 500:
                raise InvalidInputError(f"Payment provider rejected the request: {message}")
            raise UpstreamUnavailableError(
                "Payment provider is unavailable", status_code=502
            )
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("message", response.text)
        except ValueError:
            return response.text

    async def create_payment_intent(
        self, amount_cents: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        data: Dict[str, Any] = {"amount": amount_cents, "currency": currency}
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value
        payload = await self._request("POST", "/payment_intents", data=data)
        return PaymentIntent.model_validate(payload)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        payload = await self._request("GET", f"/payment_intents/{payment_intent_id}")
        return PaymentIntent.model_validate(payload)
