# backend/auctionhouse/config.py
from __future__ import annotations
import os


# Currencies accepted by the SumUp APIs
SUMUP_CURRENCIES = {
    "BGN", "BRL", "CHF", "CLP", "CZK", "DKK", "EUR",
    "GBP", "HUF", "NOK", "PLN", "SEK", "USD",
}


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def validate_currency(value: str | None, default: str = "GBP") -> str:
    if not value:
        return default
    normalized = value.strip().upper()
    if normalized not in SUMUP_CURRENCIES:
        raise ValueError(
            f'Invalid CURRENCY "{value}". Expected one of: {", ".join(sorted(SUMUP_CURRENCIES))}.'
        )
    return normalized


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/auction.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///auction.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Auction state guard
    AUCTION_STATE_CACHE_TTL_SECONDS = float(os.environ.get("AUCTION_STATE_CACHE_TTL_SECONDS", "5"))

    # Browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173").split(",") if o.strip()
    )

    # Limits
    MAX_ITEMS = int(os.environ.get("MAX_ITEMS", "500"))
    MAX_AUCTIONS = int(os.environ.get("MAX_AUCTIONS", "20"))

    # Identity headers set by the authenticating proxy
    IDENTITY_HEADER_USER = os.environ.get("IDENTITY_HEADER_USER", "X-Auth-User")
    IDENTITY_HEADER_ROLE = os.environ.get("IDENTITY_HEADER_ROLE", "X-Auth-Role")

    # Payments
    CURRENCY = validate_currency(os.environ.get("CURRENCY"), "GBP")
    PAYMENT_INTENT_TTL_MINUTES = int(os.environ.get("PAYMENT_INTENT_TTL_MINUTES", "20"))
    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "10"))

    CASH_PAYMENT_ENABLED = parse_bool_env("CASH_PAYMENT_ENABLED", True)
    MANUAL_CARD_PAYMENT_ENABLED = parse_bool_env("MANUAL_CARD_PAYMENT_ENABLED", True)
    PAYPAL_PAYMENT_ENABLED = parse_bool_env("PAYPAL_PAYMENT_ENABLED", False)

    # SumUp hosted checkout (web / QR)
    SUMUP_WEB_ENABLED = parse_bool_env("SUMUP_WEB_ENABLED", False)
    SUMUP_API_BASE_URL = os.environ.get("SUMUP_API_BASE_URL", "https://api.sumup.com")
    SUMUP_API_KEY = os.environ.get("SUMUP_API_KEY")
    SUMUP_MERCHANT_CODE = os.environ.get("SUMUP_MERCHANT_CODE")
    SUMUP_RETURN_URL = os.environ.get("SUMUP_RETURN_URL")

    # SumUp app deep link (card present)
    SUMUP_CARD_PRESENT_ENABLED = parse_bool_env("SUMUP_CARD_PRESENT_ENABLED", False)
    SUMUP_APP_INDIRECT_ENABLED = parse_bool_env("SUMUP_APP_INDIRECT_ENABLED", False)
    SUMUP_AFFILIATE_KEY = os.environ.get("SUMUP_AFFILIATE_KEY")
    SUMUP_APP_ID = os.environ.get("SUMUP_APP_ID")
    SUMUP_CALLBACK_SUCCESS = os.environ.get("SUMUP_CALLBACK_SUCCESS")
    SUMUP_CALLBACK_FAIL = os.environ.get("SUMUP_CALLBACK_FAIL")
