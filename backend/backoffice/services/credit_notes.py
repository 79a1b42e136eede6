from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import get_settings
from backoffice.core.enums import (
    CREDIT_NOTE_TYPE_FOR_INVOICE,
    CREDIT_NOTE_VOUCHER_TYPES,
    AgencyCounterKey,
    RecipientDocType,
    VatCategory,
    VoucherStatus,
    VoucherType,
)
from backoffice.models.agency import Agency
from backoffice.models.amounts import AMOUNT_FIELDS
from backoffice.models.credit_note import CreditNote, CreditNoteItem
from backoffice.models.invoice import Invoice
from backoffice.schemas.credit_note import CreditNoteCreate
from backoffice.services.afip_gateway import AfipGateway, authorize_voucher, get_afip_gateway
from backoffice.services.audit import audit_log
from backoffice.services.counters import next_agency_counter
from backoffice.services.errors import (
    DuplicateVoucherError,
    ManualTotalsError,
    VoucherAuthorizationError,
    VoucherNotFoundError,
    VoucherStoreError,
    VoucherValidationError,
)
from backoffice.services.issuance_lock import agency_issuance_lock
from backoffice.services.money import ZERO, round2
from backoffice.services.splitting import ManualTotals
from backoffice.services.vat import (
    DEFAULT_BUCKET_LABELS,
    VatBreakdown,
    breakdown_from_buckets,
    buckets_from_afip,
    compute_manual_totals,
)
from backoffice.services.voucher_numbers import VoucherNumbering, find_duplicate_voucher, is_voucher_number_conflict
from backoffice.services.vouchers import (
    AssociatedVoucher,
    ServicePeriod,
    build_voucher_request,
    default_cae_due_date,
    validate_invoice_date,
)


logger = logging.getLogger(__name__)

_DESCRIPTION_KEYS: dict[VatCategory, str] = {
    VatCategory.RATE_21: "21",
    VatCategory.RATE_10_5: "10_5",
    VatCategory.EXEMPT: "exempt",
}


def stored_voucher_data(payload: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Authorized voucher data of an invoice; older rows stored it flat in the payload."""
    if not isinstance(payload, Mapping):
        return None
    voucher = payload.get("voucher")
    if isinstance(voucher, Mapping) and voucher:
        return dict(voucher)
    if "CbteTipo" in payload:
        return dict(payload)
    return None


def credit_note_breakdown(
    *,
    manual_totals: ManualTotals | None,
    payload: Mapping[str, Any],
    voucher: Mapping[str, Any],
) -> VatBreakdown:
    """
    VAT buckets to credit, by priority:

    1. totals entered for this credit note (must be valid);
    2. manual totals stored with the invoice, when they still validate;
    3. the `Iva` array AFIP authorized for the invoice.
    """
    if manual_totals is not None:
        return compute_manual_totals(manual_totals)

    stored_raw = payload.get("manual_totals")
    stored = ManualTotals.from_mapping(stored_raw) if isinstance(stored_raw, Mapping) else None
    if stored is not None:
        try:
            return compute_manual_totals(stored)
        except ManualTotalsError as e:
            logger.info("Stored manual totals ignored", extra={"reason": str(e)})

    buckets = buckets_from_afip(voucher.get("Iva"))
    if not buckets:
        raise VoucherValidationError("Invoice has no VAT breakdown to credit")
    return breakdown_from_buckets(buckets)


def credit_note_items(breakdown: VatBreakdown, descriptions: Mapping[str, Any] | None) -> list[CreditNoteItem]:
    descriptions = descriptions if isinstance(descriptions, Mapping) else {}
    items: list[CreditNoteItem] = []
    for idx, bucket in enumerate(breakdown.buckets):
        given = descriptions.get(_DESCRIPTION_KEYS[bucket.category])
        description = DEFAULT_BUCKET_LABELS[bucket.category]
        if isinstance(given, list) and given and str(given[0]).strip():
            description = str(given[0]).strip()

        amounts = {"sale_price": round2(bucket.base + bucket.amount)}
        if bucket.category == VatCategory.RATE_21:
            amounts.update(taxable_base_21=bucket.base, tax_21=bucket.amount)
        elif bucket.category == VatCategory.RATE_10_5:
            amounts.update(taxable_base_10_5=bucket.base, tax_10_5=bucket.amount)
        else:
            amounts.update(non_computable=bucket.base)
        items.append(CreditNoteItem(position=idx, description=description[:500], **_with_zeroes(amounts)))
    return items


def _with_zeroes(amounts: dict[str, Any]) -> dict[str, Any]:
    return {name: amounts.get(name, ZERO) for name in AMOUNT_FIELDS}


def _recipient_from_voucher(voucher: Mapping[str, Any]) -> tuple[RecipientDocType, str]:
    try:
        doc_type = RecipientDocType(int(voucher["DocTipo"]))
        doc_number = str(int(voucher["DocNro"]))
    except (KeyError, TypeError, ValueError) as e:
        raise VoucherValidationError("Original voucher has no usable recipient document") from e
    return doc_type, doc_number


async def create_credit_note(
    session: AsyncSession,
    *,
    actor: str,
    data: CreditNoteCreate,
    gateway: AfipGateway | None = None,
    today: date | None = None,
) -> CreditNote:
    settings = get_settings()
    gateway = gateway or get_afip_gateway()
    today = today or date.today()

    voucher_type = VoucherType(data.voucher_type)
    if voucher_type not in CREDIT_NOTE_VOUCHER_TYPES:
        raise VoucherValidationError("Voucher type must be Nota de Crédito A (3) or Nota de Crédito B (8)")
    voucher_date = validate_invoice_date(
        data.credit_note_date, today=today, window_days=settings.invoice_date_window_days
    )

    async with session.begin():
        invoice = await session.get(Invoice, data.invoice_id)
        if invoice is None:
            raise VoucherNotFoundError("Invoice not found")
        agency_id: uuid.UUID = invoice.agency_id
        invoice_id: uuid.UUID = invoice.id
        invoice_type = int(invoice.voucher_type)
        invoice_currency = invoice.currency
        recipient = invoice.recipient
        payload: dict[str, Any] = dict(invoice.payload or {})
        agency = await session.get(Agency, agency_id)
        issuer_tax_id = agency.tax_id if agency is not None else None

    voucher = stored_voucher_data(payload)
    if voucher is None:
        raise VoucherValidationError("Invoice has no stored voucher data")

    try:
        expected = CREDIT_NOTE_TYPE_FOR_INVOICE.get(VoucherType(invoice_type))
    except ValueError:
        expected = None
    if expected != voucher_type:
        raise VoucherValidationError(f"{voucher_type.label} cannot credit voucher type {invoice_type}")

    manual = ManualTotals.from_mapping(data.manual_totals.model_dump()) if data.manual_totals is not None else None
    breakdown = credit_note_breakdown(manual_totals=manual, payload=payload, voucher=voucher)
    associated = AssociatedVoucher.from_voucher_data(voucher)
    doc_type, doc_number = _recipient_from_voucher(voucher)

    request = build_voucher_request(
        voucher_type=voucher_type,
        recipient_doc_type=doc_type,
        recipient_doc_number=doc_number,
        breakdown=breakdown,
        currency=str(voucher.get("MonId") or invoice_currency),
        exchange_rate=data.exchange_rate,
        voucher_date=voucher_date,
        associated_vouchers=[associated],
        service_period=ServicePeriod.from_payload(payload.get("service_period")),
    )

    async with agency_issuance_lock(session, agency_id):
        auth = await authorize_voucher(gateway, request, issuer_tax_id=issuer_tax_id)
        if not auth.success:
            logger.warning("Credit note not authorized", extra={"invoice_id": str(invoice_id), "reason": auth.message})
            raise VoucherAuthorizationError(auth.message)

        try:
            numbering = VoucherNumbering.from_details(auth.details)
        except ValueError as e:
            raise VoucherAuthorizationError(str(e)) from e

        try:
            async with session.begin():
                existing = await find_duplicate_voucher(
                    session,
                    CreditNote,
                    agency_id=agency_id,
                    point_of_sale=numbering.point_of_sale,
                    voucher_type=numbering.voucher_type,
                    number=numbering.number,
                )
                if existing is not None:
                    raise DuplicateVoucherError(
                        f"Voucher {numbering.display_number} is already recorded; authorization CAE {auth.cae} was not stored"
                    )

                sequence = await next_agency_counter(session, agency_id=agency_id, key=AgencyCounterKey.CREDIT_NOTE)
                issue_date = auth.voucher_date or voucher_date or date.today()
                credit_note = CreditNote(
                    agency_id=agency_id,
                    agency_credit_note_id=sequence,
                    invoice_id=invoice_id,
                    point_of_sale=numbering.point_of_sale,
                    voucher_type=numbering.voucher_type,
                    voucher_number=numbering.voucher_number,
                    display_number=numbering.display_number,
                    legacy_number=numbering.legacy_number,
                    cae=auth.cae,
                    cae_due_date=auth.cae_due_date or default_cae_due_date(issue_date),
                    issue_date=issue_date,
                    total_amount=breakdown.total,
                    currency=request.currency,
                    exchange_rate=request.exchange_rate or auth.exchange_rate,
                    status=VoucherStatus.AUTHORIZED,
                    recipient=recipient,
                    associated_vouchers=[associated.to_afip()],
                    payload={
                        "voucher": auth.details,
                        "request": request.to_payload(),
                        "qr_url": auth.qr_url,
                        "qr_base64": auth.qr_base64,
                        "manual_totals": manual.to_payload() if manual is not None else None,
                    },
                    items=credit_note_items(breakdown, payload.get("descriptions")),
                )
                session.add(credit_note)
                await session.flush()

                await audit_log(
                    session,
                    actor=actor,
                    agency_id=agency_id,
                    entity_type="credit_note",
                    entity_id=credit_note.id,
                    action="issue",
                    after={
                        "display_number": credit_note.display_number,
                        "cae": credit_note.cae,
                        "invoice_id": invoice_id,
                        "total_amount": credit_note.total_amount,
                        "currency": credit_note.currency,
                    },
                )
        except DuplicateVoucherError:
            logger.error("Authorized credit note is a duplicate", extra={"invoice_id": str(invoice_id), "cae": auth.cae})
            raise
        except IntegrityError as e:
            if is_voucher_number_conflict(e, CreditNote):
                logger.error(
                    "Authorized credit note collided with a stored number",
                    extra={"invoice_id": str(invoice_id), "cae": auth.cae},
                )
                raise DuplicateVoucherError("Voucher already exists for this point of sale and type") from e
            logger.exception(
                "Authorized credit note could not be stored", extra={"invoice_id": str(invoice_id), "cae": auth.cae}
            )
            raise VoucherStoreError(
                f"Credit note was authorized with CAE {auth.cae} but could not be stored; record it manually"
            ) from e

    return credit_note
