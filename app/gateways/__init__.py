"""Payment gateways keyed by payment method; resolved once per checkout or webhook."""
from typing import Callable

from sqlmodel import Session

from app.core.config import Settings, bank_accounts, validate_gateway_settings
from app.gateways.bank_transfer import ManualBankTransferGateway
from app.gateways.base import (
    Charge,
    Customer,
    GatewayAdapter,
    PaymentHandle,
    PaymentMethod,
    PaymentOutcome,
    Verification,
    WebhookEvent,
)
from app.gateways.card import CardGateway
from app.gateways.internal_wallet import InternalWalletGateway
from app.gateways.mobile_wallet import MobileWalletGateway
from app.services.errors import GatewayNotConfigured, NotFound, ValidationError


class GatewayRegistry:
    def __init__(self, adapters: list[GatewayAdapter]):
        self._by_method = {a.method: a for a in adapters}

    def get(self, method_key: str | PaymentMethod) -> GatewayAdapter:
        try:
            method = PaymentMethod(method_key)
        except ValueError:
            supported = ", ".join(m.value for m in PaymentMethod)
            raise ValidationError(f"Invalid payment method. Supported methods: {supported}") from None
        adapter = self._by_method.get(method)
        if adapter is None:
            raise GatewayNotConfigured(f"Payment method {method.value} is not available right now.")
        return adapter

    def for_provider(self, provider: str) -> GatewayAdapter:
        """Adapter behind /webhooks/{provider}; only adapters with a signature scheme qualify."""
        for adapter in self._by_method.values():
            if adapter.provider == provider and adapter.signature_header:
                return adapter
        raise NotFound(f"Unknown webhook provider: {provider}")

    def enabled(self) -> list[str]:
        return sorted(m.value for m in self._by_method)


def build_registry(cfg: Settings, session_factory: Callable[[], Session]) -> GatewayRegistry:
    enabled = validate_gateway_settings(cfg)
    timeout = cfg.gateway_timeout_seconds
    adapters: list[GatewayAdapter] = [InternalWalletGateway(session_factory)]
    accounts = bank_accounts(cfg)
    # No account to send the buyer to: bank transfer is refused before any order exists
    if accounts:
        adapters.append(ManualBankTransferGateway(accounts, cfg.bank_transfer_instructions_hours))
    if enabled["paystack"]:
        adapters.append(
            CardGateway(
                cfg.paystack_secret_key,
                cfg.paystack_webhook_secret,
                base_url=cfg.paystack_base_url,
                callback_url=cfg.paystack_callback_url,
                timeout=timeout,
            )
        )
    if enabled["opay"]:
        adapters.append(
            MobileWalletGateway(
                cfg.opay_public_key,
                cfg.opay_private_key,
                cfg.opay_merchant_id,
                base_url=cfg.opay_base_url,
                country=cfg.opay_country,
                return_url=cfg.opay_return_url,
                callback_url=cfg.opay_callback_url,
                timeout=timeout,
            )
        )
    return GatewayRegistry(adapters)


__all__ = [
    "CardGateway",
    "Charge",
    "Customer",
    "GatewayAdapter",
    "GatewayRegistry",
    "InternalWalletGateway",
    "ManualBankTransferGateway",
    "MobileWalletGateway",
    "PaymentHandle",
    "PaymentMethod",
    "PaymentOutcome",
    "Verification",
    "WebhookEvent",
    "build_registry",
]
