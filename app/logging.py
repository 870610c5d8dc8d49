"""
Logging configuration.
Everything goes to stdout. Payment decisions log under storefront.*; anomalies and rejected
signatures are WARNING so they survive a quieter LOG_LEVEL.
"""
import logging
import sys

# Loggers that carry money movements; never quieter than INFO
PAYMENT_LOGGERS = (
    "storefront.checkout",
    "storefront.reconcile",
    "storefront.wallet",
    "storefront.webhooks",
)


def _resolve(level: int | str | None) -> int:
    """Accepts 10 or "debug"; an unknown name falls back to INFO."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName((level or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: int | str | None = logging.INFO,
    format_string: str | None = None,
) -> None:
    level = _resolve(level)
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    logging.getLogger("storefront").setLevel(level)
    for name in PAYMENT_LOGGERS:
        logging.getLogger(name).setLevel(min(level, logging.INFO))
    # SQL echo only when explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if level > logging.DEBUG else logging.INFO)
