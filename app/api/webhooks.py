"""
Gateway webhooks: POST /webhooks/{provider}.

200 once the signature is valid and the event was processed, whatever the business outcome, so the
provider stops retrying. 400 for signature or parse failures, 404 for an unknown reference, 503 when
retrying can help (gateway unreachable, database unavailable).
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_client_ip, get_notifier, get_registry
from app.core.database import get_db
from app.gateways import GatewayRegistry
from app.services.errors import GatewayUnavailable, NotFound, SignatureInvalid, StorefrontError, ValidationError
from app.services.notifier import EmailNotifier
from app.services.reconciliation import ReconciliationHandler

log = logging.getLogger("storefront.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _reply(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


@router.post("/{provider}")
async def gateway_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_registry),
    notifier: EmailNotifier = Depends(get_notifier),
):
    raw_body = await request.body()
    try:
        adapter = registry.for_provider(provider)
    except NotFound as e:
        return _reply(404, {"error": e.message, "code": e.code})
    signature = request.headers.get(adapter.signature_header)
    ip = get_client_ip(request)
    handler = ReconciliationHandler(db, registry, notifier)
    try:
        # Sync DB work and the verify call run off the event loop
        result = await run_in_threadpool(handler.handle_webhook, provider, raw_body, signature, ip)
    except (SignatureInvalid, ValidationError) as e:
        return _reply(400, {"error": e.message, "code": e.code})
    except NotFound as e:
        log.info("webhook %s: %s", provider, e.message)
        return _reply(404, {"error": e.message, "code": e.code})
    except GatewayUnavailable as e:
        db.rollback()
        log.warning("webhook %s: verification unavailable, asking for redelivery: %s", provider, e.message)
        return _reply(503, {"error": e.message, "code": e.code})
    except OperationalError as e:
        db.rollback()
        log.error("webhook %s: database unavailable: %s", provider, e)
        return _reply(503, {"error": "Temporarily unavailable", "code": "database_unavailable"})
    except StorefrontError as e:
        # Signature was valid and retrying would not change the answer
        db.rollback()
        log.exception("webhook %s processing failed: %s", provider, e.message)
        return _reply(200, {"status": "ok", "processed": False})
    return _reply(
        200,
        {
            "status": "ok",
            "processed": True,
            "reference": result.reference,
            "outcome": result.outcome.value,
            "applied": result.applied,
        },
    )
