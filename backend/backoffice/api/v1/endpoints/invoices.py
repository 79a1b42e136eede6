from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.core.db import get_session
from backoffice.core.security import require_basic_auth
from backoffice.models.invoice import Invoice
from backoffice.schemas.invoice import InvoiceBatchOut, InvoiceCreate, InvoiceOut
from backoffice.services.afip_gateway import AfipGateway, get_afip_gateway
from backoffice.services.invoices import create_invoices


router = APIRouter()


@router.post("", response_model=InvoiceBatchOut, status_code=201)
async def create_invoices_endpoint(
    data: InvoiceCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
    gateway: AfipGateway = Depends(get_afip_gateway),
):
    try:
        result = await create_invoices(session, actor=actor, data=data, gateway=gateway)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    out = InvoiceBatchOut(
        success=result.success,
        message=result.message,
        invoices=[InvoiceOut.model_validate(inv) for inv in result.invoices],
        errors=result.errors,
        reconciliation_errors=result.reconciliation_errors,
    )
    if not result.success:
        return JSONResponse(status_code=409, content=out.model_dump(mode="json"))
    return out


@router.get("", response_model=list[InvoiceOut])
async def list_invoices(booking_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[InvoiceOut]:
    rows = (
        await session.execute(
            select(Invoice)
            .where(Invoice.booking_id == booking_id)
            .order_by(Invoice.agency_invoice_id)
            .options(selectinload(Invoice.items))
        )
    ).scalars().all()
    return [InvoiceOut.model_validate(r) for r in rows]


@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(invoice_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> InvoiceOut:
    invoice = (
        await session.execute(select(Invoice).where(Invoice.id == invoice_id).options(selectinload(Invoice.items)))
    ).scalar_one_or_none()
    if invoice is None:
        raise HTTPException(status_code=404, detail="Not found")
    return InvoiceOut.model_validate(invoice)
