import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.core.errors import GatewayRejected
from app.models.payment import PaymentTransaction

logger = logging.getLogger(__name__)


class PayoutGateway:
    """Hands an accepted withdrawal to the payment gateway; the outcome arrives later by webhook."""

    async def submit_payout(self, tx: PaymentTransaction) -> None:
        raise NotImplementedError


class NullPayoutGateway(PayoutGateway):
    async def submit_payout(self, tx: PaymentTransaction) -> None:
        logger.info("payout %s queued for gateway %s (webhook pending)", tx.external_id, tx.gateway_id)


class HttpPayoutGateway(PayoutGateway):
    def __init__(self, url: str, timeout: float = 10, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(self.url, json=payload)

    async def submit_payout(self, tx: PaymentTransaction) -> None:
        payload = {
            "gatewayId": tx.gateway_id,
            "externalId": tx.external_id,
            "userId": tx.user_id,
            "amount": str(tx.amount),
        }
        try:
            if self._client is not None:
                resp = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await self._post(client, payload)
        except httpx.HTTPError as e:
            # unknown outcome: the withdrawal stays pending until the webhook says otherwise
            logger.exception("payout %s not delivered: %s", tx.external_id, e)
            return

        if 400 <= resp.status_code < 500:
            raise GatewayRejected(
                f"gateway refused payout {tx.external_id}: {resp.status_code}",
                status=resp.status_code, body=resp.text[:200],
            )
        if resp.status_code >= 500:
            logger.error("payout %s: gateway answered %s, left pending", tx.external_id, resp.status_code)
            return
        logger.info("payout %s accepted by gateway", tx.external_id)


def get_payout_gateway() -> PayoutGateway:
    if settings.PAYOUT_GATEWAY_URL:
        return HttpPayoutGateway(settings.PAYOUT_GATEWAY_URL, timeout=settings.PAYOUT_GATEWAY_TIMEOUT)
    return NullPayoutGateway()
