from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class GatewayConfigError(RuntimeError):
    """A gateway key pair is half-configured or uses the same key twice."""


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 60 * 24 * 7
    log_level: str = "INFO"
    database_url: str = "sqlite:///./storefront.db"
    # Comma separated origins; "*" in development
    cors_origins: str = "*"
    environment: str = "development"
    rate_limit_per_minute: int = 60
    rate_limit_checkout_per_minute: int = 10
    # All money is stored in minor units (kobo for NGN)
    currency: str = "NGN"
    tax_rate_bps: int = 0
    # "max_grams:fee" pairs, ascending by weight
    delivery_weight_tiers: str = "1000:1200,5000:1500,10000:3500,25000:3500,50000:4500"
    # "zone:fee" pairs added on top of the weight tier; zone = lower-case state
    delivery_zone_surcharges: str = ""
    delivery_flat_fee: int | None = None
    # Paystack (card). secret key authenticates API calls, webhook secret signs callbacks
    paystack_secret_key: str = ""
    paystack_webhook_secret: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_callback_url: str = ""
    # OPay (mobile wallet). public key creates cashier orders, private key signs
    opay_public_key: str = ""
    opay_private_key: str = ""
    opay_merchant_id: str = ""
    opay_base_url: str = "https://testapi.opaycheckout.com"
    opay_country: str = "NG"
    opay_return_url: str = ""
    opay_callback_url: str = ""
    gateway_timeout_seconds: float = 30.0
    # Manual bank transfer destination accounts
    bank_one_name: str = ""
    bank_one_account_name: str = ""
    bank_one_account_number: str = ""
    bank_one_sort_code: str = ""
    bank_two_name: str = ""
    bank_two_account_name: str = ""
    bank_two_account_number: str = ""
    bank_two_sort_code: str = ""
    bank_transfer_instructions_hours: int = 24
    wallet_min_deposit: int = 100
    admin_secret: str = ""
    reverify_min_age_minutes: int = 10
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "orders@storefront.local"
    smtp_from_name: str = "Storefront"
    smtp_use_tls: bool = True
    frontend_url: str = "http://127.0.0.1:8000"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator(
        "paystack_secret_key",
        "paystack_webhook_secret",
        "opay_public_key",
        "opay_private_key",
        "opay_merchant_id",
        mode="before",
    )
    @classmethod
    def strip_keys(cls, v: str | None) -> str:
        """Pasted keys often carry stray whitespace."""
        return (v or "").strip()

    @field_validator("delivery_flat_fee", mode="before")
    @classmethod
    def empty_flat_fee(cls, v):
        if v == "" or v is None:
            return None
        return v


settings = Settings()


def _check_pair(gateway: str, request_key: str, signing_key: str) -> bool:
    if not request_key and not signing_key:
        return False
    if not request_key or not signing_key:
        raise GatewayConfigError(
            f"{gateway}: both the request key and the signing key must be set (only one is configured)"
        )
    if request_key == signing_key:
        raise GatewayConfigError(f"{gateway}: request key and signing key must be different secrets")
    return True


def validate_gateway_settings(cfg: Settings | None = None) -> dict[str, bool]:
    """
    Checks every gateway key pair at startup.
    Returns {gateway: enabled}; raises GatewayConfigError on a half or mixed-up pair.
    """
    cfg = cfg or settings
    opay_enabled = _check_pair("opay", cfg.opay_public_key, cfg.opay_private_key)
    if opay_enabled and not cfg.opay_merchant_id:
        raise GatewayConfigError("opay: OPAY_MERCHANT_ID is required when OPay keys are set")
    return {
        "paystack": _check_pair("paystack", cfg.paystack_secret_key, cfg.paystack_webhook_secret),
        "opay": opay_enabled,
    }


def bank_accounts(cfg: Settings | None = None) -> list[dict]:
    """Configured bank transfer destinations (accounts without a number are skipped)."""
    cfg = cfg or settings
    out = []
    for prefix in ("bank_one", "bank_two"):
        number = (getattr(cfg, f"{prefix}_account_number", "") or "").strip()
        if not number:
            continue
        out.append(
            {
                "bank_name": getattr(cfg, f"{prefix}_name", ""),
                "account_name": getattr(cfg, f"{prefix}_account_name", ""),
                "account_number": number,
                "sort_code": getattr(cfg, f"{prefix}_sort_code", "") or None,
            }
        )
    return out
