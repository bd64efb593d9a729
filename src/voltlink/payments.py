"""Payment collaborator: pre-authorization before start, capture handoff after stop."""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import PaymentDeclined

logger = logging.getLogger(__name__)


@dataclass
class PreAuthorization:
    success: bool
    payment_intent_id: Optional[str] = None
    reason: str = ""


class PaymentAuthorizer(ABC):
    """Interface to the payment service. Capture logic itself lives there."""

    @abstractmethod
    async def pre_authorize(self, amount: float, payment_method_id: str | None) -> PreAuthorization:
        """Reserve ``amount`` on the payment method."""

    @abstractmethod
    async def capture(self, payment_intent_id: str, amount: float) -> None:
        """Hand the final amount of a finished session to the payment service."""

    async def close(self):
        pass


class AcceptAllAuthorizer(PaymentAuthorizer):
    """Used when no payment service is configured; every request succeeds."""

    async def pre_authorize(self, amount, payment_method_id):
        return PreAuthorization(success=True, payment_intent_id=f"local-{uuid.uuid4().hex[:12]}")

    async def capture(self, payment_intent_id, amount):
        logger.info(f"Capture handoff for {payment_intent_id}: {amount:.2f}")


class HttpPaymentAuthorizer(PaymentAuthorizer):
    """
    Talks to the web application's payment endpoints.

    POST {base_url}/preauthorize  {amount, paymentMethodId} -> {success, paymentIntentId}
    POST {base_url}/capture       {paymentIntentId, amount}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def pre_authorize(self, amount, payment_method_id):
        try:
            response = await self.client.post(
                "/preauthorize", json={"amount": amount, "paymentMethodId": payment_method_id}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Pre-authorization request failed: {e}")
            return PreAuthorization(success=False, reason=str(e))

        return PreAuthorization(
            success=bool(data.get("success")),
            payment_intent_id=data.get("paymentIntentId"),
            reason=data.get("error", ""),
        )

    async def capture(self, payment_intent_id, amount):
        response = await self.client.post(
            "/capture", json={"paymentIntentId": payment_intent_id, "amount": round(amount, 2)}
        )
        response.raise_for_status()

    async def close(self):
        await self.client.aclose()


async def require_pre_authorization(
    authorizer: PaymentAuthorizer, amount: float, payment_method_id: str | None
) -> PreAuthorization:
    """Pre-authorize or raise PaymentDeclined."""
    result = await authorizer.pre_authorize(amount, payment_method_id)
    if not result.success:
        raise PaymentDeclined(result.reason)
    return result
