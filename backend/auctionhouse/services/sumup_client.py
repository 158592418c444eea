# Overview: HTTP client for the SumUp card provider (hosted checkouts and app deep links).

"""
SumUp provider client

Hosted checkout (web / QR):
    POST {base}/v0.1/checkouts           -> {id, hosted_checkout_url}
    GET  {base}/v0.1/checkouts?checkout_reference=<intent id>
         -> [{status: PENDING|FAILED|PAID, transactions: [{id}]}]

App payments do not call the API at all: the cashier's device opens a
sumupmerchant:// deep link carrying the intent id as foreign-tx-id, and the
app reports back through the callback routes.

Network failures and timeouts raise TransientProviderError so callers can
fail closed; nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from flask import current_app

from ..errors import TransientProviderError
from .money import minor_to_major


DEEP_LINK_BASE = "sumupmerchant://pay/1.0"


@dataclass(frozen=True)
class HostedCheckout:
    checkout_id: str
    url: str


class SumUpClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        merchant_code: str | None = None,
        return_url: str | None = None,
        base_url: str = "https://api.sumup.com",
        timeout: float = 10.0,
        affiliate_key: str | None = None,
        app_id: str | None = None,
        callback_success: str | None = None,
        callback_fail: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.merchant_code = merchant_code
        self.return_url = return_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.affiliate_key = affiliate_key
        self.app_id = app_id
        self.callback_success = callback_success
        self.callback_fail = callback_fail
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "SumUpClient":
        return cls(
            api_key=config.get("SUMUP_API_KEY"),
            merchant_code=config.get("SUMUP_MERCHANT_CODE"),
            return_url=config.get("SUMUP_RETURN_URL"),
            base_url=config.get("SUMUP_API_BASE_URL") or "https://api.sumup.com",
            timeout=float(config.get("PROVIDER_TIMEOUT_SECONDS", 10)),
            affiliate_key=config.get("SUMUP_AFFILIATE_KEY"),
            app_id=config.get("SUMUP_APP_ID"),
            callback_success=config.get("SUMUP_CALLBACK_SUCCESS"),
            callback_fail=config.get("SUMUP_CALLBACK_FAIL"),
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    # =========================================================================
    # HOSTED CHECKOUT
    # =========================================================================

    def create_hosted_checkout(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        description: str,
    ) -> HostedCheckout | None:
        """
        Create a hosted checkout for `reference` (the intent id).

        Returns None when no API key / merchant code is configured.

        Raises:
            TransientProviderError: network error, timeout, non-2xx or malformed reply
        """
        if not self.api_key or not self.merchant_code:
            current_app.logger.warning("SumUp hosted checkout not configured; skipping checkout creation")
            return None

        body = {
            "amount": float(minor_to_major(amount_minor)),
            "currency": currency,
            "merchant_code": self.merchant_code,
            "checkout_reference": reference,
            "description": description,
            "hosted_checkout": {"enabled": True},
            "return_url": self.return_url,
        }
        try:
            with self._client() as client:
                response = client.post("/v0.1/checkouts", json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.error("SumUp checkout creation failed for %s: %s", reference, exc)
            raise TransientProviderError("Payment provider unavailable", reference=reference)

        if not isinstance(data, dict) or not data.get("hosted_checkout_url") or not data.get("id"):
            current_app.logger.error("Invalid SumUp checkout response for %s", reference)
            raise TransientProviderError("Invalid payment provider response", reference=reference)

        return HostedCheckout(checkout_id=str(data["id"]), url=data["hosted_checkout_url"])

    def get_checkouts_by_reference(self, reference: str) -> list[dict]:
        """
        Checkouts SumUp holds for `reference`, oldest first.

        Raises:
            TransientProviderError: network error, timeout or non-2xx
        """
        if not self.api_key:
            return []
        try:
            with self._client() as client:
                response = client.get("/v0.1/checkouts", params={"checkout_reference": reference})
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.warning("SumUp checkout lookup failed for %s: %s", reference, exc)
            raise TransientProviderError("Payment provider unavailable", reference=reference)

        return data if isinstance(data, list) else []

    # =========================================================================
    # APP DEEP LINK
    # =========================================================================

    def build_deep_link(
        self,
        amount_minor: int,
        currency: str,
        title: str | None = None,
        foreign_tx_id: str | None = None,
    ) -> str:
        params = {
            "amount": str(minor_to_major(amount_minor)),
            "currency": currency,
            "affiliate-key": self.affiliate_key or "",
            "app-id": self.app_id or "",
        }
        if title:
            params["title"] = title
        params["callbacksuccess"] = self.callback_success or ""
        params["callbackfail"] = self.callback_fail or ""
        if foreign_tx_id:
            params["foreign-tx-id"] = foreign_tx_id

        link = f"{DEEP_LINK_BASE}?{urlencode(params)}"
        current_app.logger.debug("Deep link generated: %s", link)
        return link


def get_payment_provider() -> SumUpClient:
    """The application's provider client (created in create_app)."""
    return current_app.extensions["payment_provider"]
