from .checkout import (
    Address,
    CartLineIn,
    CheckoutCreate,
    CheckoutCreated,
    CheckoutItemOut,
    CheckoutOut,
    CheckoutPage,
    CheckoutPatch,
    InvoiceOut,
    OrderItemOut,
    OrderOut,
)
from .payment import ManualDecision, SweepRequest, VerifyResponse
from .wallet import DepositRequest, DepositResponse, WalletBalance, WalletTransactionOut, WalletVerifyRequest

__all__ = [
    "Address",
    "CartLineIn",
    "CheckoutCreate",
    "CheckoutCreated",
    "CheckoutItemOut",
    "CheckoutOut",
    "CheckoutPage",
    "CheckoutPatch",
    "DepositRequest",
    "DepositResponse",
    "InvoiceOut",
    "ManualDecision",
    "OrderItemOut",
    "OrderOut",
    "SweepRequest",
    "VerifyResponse",
    "WalletBalance",
    "WalletTransactionOut",
    "WalletVerifyRequest",
]
