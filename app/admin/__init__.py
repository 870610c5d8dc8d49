"""Operator API under /admin, guarded by X-Admin-Secret."""
from fastapi import APIRouter

from app.admin.routers import payments

admin_router = APIRouter(prefix="/admin", tags=["admin"])

admin_router.include_router(payments.router, prefix="/payments", tags=["admin-payments"])
