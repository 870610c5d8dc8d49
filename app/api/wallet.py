from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_current_user_id, get_orchestrator, get_reconciler
from app.api.views import verify_out
from app.core.config import settings
from app.core.rate_limit import checkout_limit, limiter, verify_limit
from app.schemas import (
    DepositRequest,
    DepositResponse,
    VerifyResponse,
    WalletBalance,
    WalletTransactionOut,
    WalletVerifyRequest,
)
from app.services.checkout import CheckoutOrchestrator
from app.services.errors import ValidationError
from app.services.reconciliation import ReconciliationHandler
from app.services.wallet import WalletLedger, is_deposit_reference

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/balance", response_model=WalletBalance)
def wallet_balance(
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    wallet = WalletLedger(orch.db).get_wallet(owner_id)
    if wallet is None:
        return WalletBalance(balance=0, currency=settings.currency)
    return WalletBalance(balance=wallet.balance, currency=wallet.currency, is_active=wallet.is_active)


@router.get("/transactions", response_model=list[WalletTransactionOut])
def wallet_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return [WalletTransactionOut.model_validate(t) for t in WalletLedger(orch.db).transactions(owner_id, limit, offset)]


@router.post("/deposit", status_code=201, response_model=DepositResponse)
@limiter.limit(checkout_limit)
def wallet_deposit(
    request: Request,
    body: DepositRequest,
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    txn, payment = orch.start_wallet_deposit(owner_id, body.amount, body.provider)
    return DepositResponse(transaction=WalletTransactionOut.model_validate(txn), payment_instructions=payment)


@router.post("/verify", response_model=VerifyResponse)
@limiter.limit(verify_limit)
def wallet_verify(
    request: Request,
    body: WalletVerifyRequest,
    owner_id: int = Depends(get_current_user_id),
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    reference = body.reference.strip()
    if not is_deposit_reference(reference):
        raise ValidationError("Not a wallet deposit reference.")
    return verify_out(reconciler.verify_reference(owner_id, reference))
