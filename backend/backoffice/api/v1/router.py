from __future__ import annotations

from fastapi import APIRouter, Depends

from backoffice.api.v1.endpoints import credit_notes, invoices
from backoffice.core.security import require_basic_auth


api_router = APIRouter(dependencies=[Depends(require_basic_auth)])

api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(credit_notes.router, prefix="/credit-notes", tags=["credit-notes"])
