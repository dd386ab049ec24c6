import logging
import uuid
from typing import Protocol

import httpx

from .config import (
    MOMO_API_KEY,
    MOMO_BASE_URL,
    MOMO_CALLBACK_URL,
    MOMO_SUBSCRIPTION_KEY,
    MOMO_TIMEOUT_SECONDS,
)
from .errors import UpstreamError

logger = logging.getLogger(__name__)

REQUEST_TO_PAY_PATH = "/collection/v1_0/requesttopay"


class PaymentProvider(Protocol):
    async def request_to_pay(self, amount: float, currency: str, phone: str, reference: str, description: str) -> str:
        ...


class MomoClient:
    """
    Mobile-money collection client. request_to_pay returns the provider
    reference that the webhook later reports back as transactionId.
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        subscription_key: str | None = None,
        callback_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.subscription_key = subscription_key
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport
        self.enabled = bool(base_url)

    def _headers(self, reference_id: str) -> dict:
        headers = {"X-Reference-Id": reference_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.subscription_key:
            headers["Ocp-Apim-Subscription-Key"] = self.subscription_key
        if self.callback_url:
            headers["X-Callback-Url"] = self.callback_url
        return headers

    async def request_to_pay(self, amount: float, currency: str, phone: str, reference: str, description: str) -> str:
        reference_id = str(uuid.uuid4())

        if not self.enabled:
            logger.warning("mobile money provider not configured; issuing local reference %s", reference_id)
            return reference_id

        body = {
            "amount": f"{amount:.2f}",
            "currency": currency,
            "externalId": reference,
            "payer": {"partyIdType": "MSISDN", "partyId": phone},
            "payerMessage": description,
            "payeeNote": description,
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.post(REQUEST_TO_PAY_PATH, json=body, headers=self._headers(reference_id))
                resp.raise_for_status()
        except httpx.TimeoutException:
            raise UpstreamError("Timeout calling payment provider")
        except httpx.HTTPStatusError as e:
            # provider responded but with error code
            raise UpstreamError(
                f"Payment provider rejected request ({e.response.status_code})",
                code="PAYMENT_PROVIDER_ERROR",
            )
        except httpx.HTTPError:
            raise UpstreamError("Bad gateway calling payment provider")

        logger.info("request-to-pay %s sent for %s", reference_id, reference)
        return reference_id


momo_client = MomoClient(
    MOMO_BASE_URL,
    api_key=MOMO_API_KEY,
    subscription_key=MOMO_SUBSCRIPTION_KEY,
    callback_url=MOMO_CALLBACK_URL,
    timeout=MOMO_TIMEOUT_SECONDS,
)
