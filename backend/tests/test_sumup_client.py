# Overview: Pytest coverage for the SumUp HTTP client using httpx mock transports.

"""
SumUp Client Tests

Covers:
- Hosted checkout request body / auth header
- Failure modes mapped to TransientProviderError
- Checkout lookup by reference
- App deep link parameters
"""

import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from auctionhouse.errors import TransientProviderError
from auctionhouse.services.sumup_client import SumUpClient


def make_client(handler, **kwargs):
    kwargs.setdefault("api_key", "sk_test")
    kwargs.setdefault("merchant_code", "MC123")
    return SumUpClient(
        base_url="https://api.sumup.test",
        return_url="https://auction.test/api/payments/sumup/webhook",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestHostedCheckout:

    def test_creates_checkout(self, app):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "chk-9", "hosted_checkout_url": "https://pay.test/chk-9"})

        checkout = make_client(handler).create_hosted_checkout(1250, "GBP", "intent-1", "Bidder 7")

        assert checkout.checkout_id == "chk-9"
        assert checkout.url == "https://pay.test/chk-9"
        assert seen["url"] == "https://api.sumup.test/v0.1/checkouts"
        assert seen["auth"] == "Bearer sk_test"
        assert seen["body"]["amount"] == 12.5
        assert seen["body"]["checkout_reference"] == "intent-1"
        assert seen["body"]["merchant_code"] == "MC123"
        assert seen["body"]["hosted_checkout"] == {"enabled": True}

    def test_unconfigured_client_skips_call(self, app):
        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(handler, api_key=None)
        assert client.create_hosted_checkout(100, "GBP", "intent-1", "x") is None

    def test_server_error_is_transient(self, app):
        client = make_client(lambda request: httpx.Response(500, json={"error": "boom"}))
        with pytest.raises(TransientProviderError):
            client.create_hosted_checkout(100, "GBP", "intent-1", "x")

    def test_timeout_is_transient(self, app):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientProviderError):
            make_client(handler).create_hosted_checkout(100, "GBP", "intent-1", "x")

    def test_malformed_reply_is_transient(self, app):
        client = make_client(lambda request: httpx.Response(200, json={"id": "chk-1"}))
        with pytest.raises(TransientProviderError):
            client.create_hosted_checkout(100, "GBP", "intent-1", "x")


class TestCheckoutLookup:

    def test_lookup_by_reference(self, app):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"status": "PAID", "transactions": [{"id": "tx"}]}])

        checkouts = make_client(handler).get_checkouts_by_reference("intent-5")

        assert seen["params"] == {"checkout_reference": "intent-5"}
        assert checkouts[0]["status"] == "PAID"

    def test_non_list_reply_is_empty(self, app):
        client = make_client(lambda request: httpx.Response(200, json={"unexpected": True}))
        assert client.get_checkouts_by_reference("intent-5") == []

    def test_lookup_failure_is_transient(self, app):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientProviderError):
            make_client(handler).get_checkouts_by_reference("intent-5")


class TestDeepLink:

    def test_deep_link_parameters(self, app):
        client = SumUpClient(
            affiliate_key="aff",
            app_id="com.example.auction",
            callback_success="https://auction.test/ok",
            callback_fail="https://auction.test/fail",
        )

        link = client.build_deep_link(4000, "GBP", "Bidder 12", "intent-7")

        parts = urlsplit(link)
        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert link.startswith("sumupmerchant://pay/1.0?")
        assert params == {
            "amount": "40.00",
            "currency": "GBP",
            "affiliate-key": "aff",
            "app-id": "com.example.auction",
            "title": "Bidder 12",
            "callbacksuccess": "https://auction.test/ok",
            "callbackfail": "https://auction.test/fail",
            "foreign-tx-id": "intent-7",
        }
