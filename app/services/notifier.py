"""Customer emails after reconciliation: order confirmed, payment failed, wallet credited."""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from app.core.config import settings

log = logging.getLogger("storefront.notify")


def format_amount(minor: int, currency: str = "NGN") -> str:
    return f"{currency} {minor / 100:,.2f}"


def is_mail_configured() -> bool:
    host = getattr(settings, "smtp_host", None) or ""
    return bool(host.strip())


def send_email(to: str, subject: str, html_body: str) -> bool:
    """Sends one HTML email. True on success; never raises."""
    if not is_mail_configured():
        log.warning("SMTP not configured; email not sent to %s", to)
        return False
    host = (settings.smtp_host or "").strip()
    port = int(getattr(settings, "smtp_port", 587) or 587)
    user = (getattr(settings, "smtp_user", None) or "").strip()
    password = (getattr(settings, "smtp_password", None) or "").strip()
    from_addr = (getattr(settings, "smtp_from", None) or "orders@storefront.local").strip()
    from_name = (getattr(settings, "smtp_from_name", None) or "").strip()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(host, port, timeout=15) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.sendmail(from_addr, [to], msg.as_string())
        log.info("Email sent to %s subject=%s", to, subject[:50])
        return True
    except Exception as e:
        log.exception("Failed to send email to %s: %s", to, e)
        return False


def _wrap(title: str, body_html: str) -> str:
    from_name = escape(settings.smtp_from_name or "Storefront")
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8" /><title>{escape(title)}</title></head>
<body style="margin:0;padding:24px;background:#f1f5f9;font-family:'Segoe UI',system-ui,sans-serif;">
  <div style="max-width:520px;margin:0 auto;background:#ffffff;border-radius:12px;padding:24px;">
    <div style="font-size:14px;font-weight:700;letter-spacing:0.1em;color:#0d9488;">{from_name}</div>
    <h2 style="color:#1e293b;">{escape(title)}</h2>
    {body_html}
  </div>
</body>
</html>"""


class EmailNotifier:
    """Fire-and-forget; callers invoke it after the financial change is committed."""

    def order_confirmed(self, order, invoice, email: str | None) -> bool:
        if not email:
            return False
        link = f"{settings.frontend_url.rstrip('/')}/orders/{order.id}"
        body = (
            f"<p>Thank you! Payment for order <b>{escape(order.order_number)}</b> was received.</p>"
            f"<p>Total paid: <b>{format_amount(order.total, order.currency)}</b><br/>"
            f"Invoice: {escape(invoice.invoice_number) if invoice else '-'}</p>"
            f'<p><a href="{escape(link)}">View your order</a></p>'
        )
        return send_email(email, f"Order {order.order_number} confirmed", _wrap("Order confirmed", body))

    def payment_failed(self, order, email: str | None) -> bool:
        if not email:
            return False
        body = (
            f"<p>We could not confirm payment for order <b>{escape(order.order_number)}</b>.</p>"
            "<p>No money was taken for this order. You can place it again from your cart.</p>"
        )
        return send_email(email, f"Payment failed for {order.order_number}", _wrap("Payment failed", body))

    def wallet_credited(self, txn, email: str | None) -> bool:
        if not email:
            return False
        body = (
            f"<p>Your wallet was credited with <b>{format_amount(txn.amount)}</b>.</p>"
            f"<p>New balance: {format_amount(txn.balance_after)}<br/>Reference: {escape(txn.reference)}</p>"
        )
        return send_email(email, "Wallet top-up received", _wrap("Wallet credited", body))
