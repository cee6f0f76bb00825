from __future__ import annotations

import logging
from uuid import uuid4

import httpx

from royalty_ledger.platform.config import settings

logger = logging.getLogger(__name__)


class PaymentRejected(Exception):
    """The payment service refused the transfer; nothing was executed."""


class PaymentOutcomeUnknown(Exception):
    """The transfer may or may not have executed."""


class PaymentExecutionClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url if base_url is not None else settings.payment_service_url or "").rstrip("/")
        self._api_key = api_key if api_key is not None else settings.payment_service_api_key
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.payment_timeout_seconds
        self._transport = transport

    @property
    def is_live(self) -> bool:
        return bool(self._base_url)

    async def execute(self, *, destination_address: str, amount: int, chain: str, idempotency_key: str) -> str:
        if not self.is_live:
            return f"simulated:{uuid4()}"

        headers = {"Idempotency-Key": idempotency_key}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        payload = {
            "destinationAddress": destination_address,
            "amount": amount,
            "chain": chain,
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.post(f"{self._base_url}/transfers", json=payload, headers=headers)
            except httpx.ConnectError as exc:
                raise PaymentRejected(f"payment service unreachable: {exc}") from exc
            except httpx.TimeoutException as exc:
                raise PaymentOutcomeUnknown("payment service timed out") from exc
            except httpx.RequestError as exc:
                raise PaymentOutcomeUnknown(f"payment service connection lost: {exc}") from exc

        if resp.status_code >= 500:
            raise PaymentOutcomeUnknown(f"payment service error {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            if resp.is_success:
                raise PaymentOutcomeUnknown("payment service returned an unreadable body") from exc
            raise PaymentRejected(f"payment service rejected transfer ({resp.status_code})") from exc

        if not resp.is_success:
            message = body.get("error") if isinstance(body, dict) else None
            raise PaymentRejected(str(message or f"payment service rejected transfer ({resp.status_code})"))

        tx_ref = body.get("transactionRef") if isinstance(body, dict) else None
        if not isinstance(tx_ref, str) or not tx_ref:
            error = body.get("error") if isinstance(body, dict) else None
            if error:
                raise PaymentRejected(str(error))
            raise PaymentOutcomeUnknown("payment service returned no transaction reference")

        logger.info("Payment executed: %s -> %s (%d minor units)", idempotency_key, tx_ref, amount)
        return tx_ref
