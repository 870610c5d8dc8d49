from .audit import AuditLog
from .catalog import CartItem, Coupon, Product
from .checkout import Checkout, CheckoutItem, CheckoutStatus, PaymentStatus
from .error_log import ErrorLog
from .invoice import Invoice, InvoicePayment, InvoiceStatus
from .order import Order, OrderItem, OrderStatus
from .security_log import SecurityLog
from .user import User
from .wallet import Wallet, WalletTransaction, WalletTransactionStatus, WalletTransactionType

__all__ = [
    "AuditLog",
    "CartItem",
    "Checkout",
    "CheckoutItem",
    "CheckoutStatus",
    "Coupon",
    "ErrorLog",
    "Invoice",
    "InvoicePayment",
    "InvoiceStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
    "SecurityLog",
    "User",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionStatus",
    "WalletTransactionType",
]
