from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.core.db import get_session
from backoffice.core.security import require_basic_auth
from backoffice.models.credit_note import CreditNote
from backoffice.schemas.credit_note import CreditNoteCreate, CreditNoteOut, CreditNoteResultOut
from backoffice.services.afip_gateway import AfipGateway, get_afip_gateway
from backoffice.services.credit_notes import create_credit_note
from backoffice.services.errors import VoucherAuthorizationError, VoucherStoreError


router = APIRouter()


@router.post("", response_model=CreditNoteResultOut, status_code=201)
async def create_credit_note_endpoint(
    data: CreditNoteCreate,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
    gateway: AfipGateway = Depends(get_afip_gateway),
) -> CreditNoteResultOut:
    try:
        credit_note = await create_credit_note(session, actor=actor, data=data, gateway=gateway)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except (ValueError, VoucherAuthorizationError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except VoucherStoreError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    credit_note = (
        await session.execute(
            select(CreditNote).where(CreditNote.id == credit_note.id).options(selectinload(CreditNote.items))
        )
    ).scalar_one()
    return CreditNoteResultOut(
        success=True,
        message=f"Credit note {credit_note.display_number} issued",
        credit_note=CreditNoteOut.model_validate(credit_note),
    )


@router.get("", response_model=list[CreditNoteOut])
async def list_credit_notes(invoice_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> list[CreditNoteOut]:
    rows = (
        await session.execute(
            select(CreditNote)
            .where(CreditNote.invoice_id == invoice_id)
            .order_by(CreditNote.agency_credit_note_id)
            .options(selectinload(CreditNote.items))
        )
    ).scalars().all()
    return [CreditNoteOut.model_validate(r) for r in rows]
