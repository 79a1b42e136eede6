from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.core.config import get_settings
from backoffice.core.enums import INVOICE_VOUCHER_TYPES, AgencyCounterKey, VoucherStatus, VoucherType
from backoffice.models.agency import Agency, Client
from backoffice.models.booking import Booking, Service
from backoffice.models.invoice import Invoice, InvoiceItem
from backoffice.schemas.invoice import InvoiceCreate
from backoffice.services.afip_gateway import AfipGateway, VoucherAuthorization, authorize_voucher, get_afip_gateway
from backoffice.services.audit import audit_log
from backoffice.services.counters import next_agency_counter
from backoffice.services.errors import (
    DuplicateVoucherError,
    IssuanceBusyError,
    ManualTotalsError,
    VoucherNotFoundError,
    VoucherValidationError,
)
from backoffice.services.issuance_lock import agency_issuance_lock
from backoffice.services.shares import validate_payer_shares
from backoffice.services.splitting import (
    ManualTotals,
    ServiceLine,
    ensure_single_currency,
    split_manual_totals,
    split_service_lines,
)
from backoffice.services.vat import VatBreakdown, breakdown_from_lines, compute_manual_totals
from backoffice.services.voucher_numbers import VoucherNumbering, find_duplicate_voucher, is_voucher_number_conflict
from backoffice.services.vouchers import (
    VoucherRequest,
    build_voucher_request,
    default_cae_due_date,
    group_by_currency,
    recipient_document,
    service_period_for,
    validate_invoice_date,
)


logger = logging.getLogger(__name__)

DUPLICATE_VOUCHER_MESSAGE = "Voucher already exists for this point of sale and type"


def store_failure_message(cae: str) -> str:
    return f"Voucher was authorized with CAE {cae} but could not be stored; record it manually"


@dataclass(frozen=True, slots=True)
class _Payer:
    client_id: uuid.UUID
    name: str
    dni_number: str | None
    tax_id: str | None


@dataclass(slots=True)
class InvoiceBatchResult:
    invoices: list[Invoice] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    reconciliation_errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.invoices)

    @property
    def message(self) -> str:
        if not self.invoices:
            return self.errors[0] if self.errors else "No voucher was issued"
        issued = f"{len(self.invoices)} voucher(s) issued"
        if self.errors:
            return f"{issued}; {len(self.errors)} failed"
        return issued

    def add_error(self, message: str) -> None:
        if message not in self.errors:
            self.errors.append(message)

    def add_reconciliation_error(self, message: str) -> None:
        self.add_error(message)
        if message not in self.reconciliation_errors:
            self.reconciliation_errors.append(message)


async def _load_service_lines(
    session: AsyncSession,
    *,
    agency_id: uuid.UUID,
    booking_id: uuid.UUID,
    service_ids: list[uuid.UUID],
) -> list[ServiceLine]:
    wanted = list(dict.fromkeys(service_ids))
    rows = (
        await session.execute(
            select(Service).where(
                Service.id.in_(wanted),
                Service.booking_id == booking_id,
                Service.agency_id == agency_id,
            )
        )
    ).scalars().all()
    by_id = {r.id: r for r in rows}
    missing = [str(sid) for sid in wanted if sid not in by_id]
    if missing:
        raise VoucherNotFoundError(f"Services not found in booking: {', '.join(missing)}")
    return [ServiceLine.from_service(by_id[sid]) for sid in wanted]


async def _load_payers(session: AsyncSession, *, agency_id: uuid.UUID, payer_ids: list[uuid.UUID]) -> list[_Payer]:
    rows = (
        await session.execute(select(Client).where(Client.id.in_(payer_ids), Client.agency_id == agency_id))
    ).scalars().all()
    by_id = {r.id: r for r in rows}
    missing = [str(pid) for pid in payer_ids if pid not in by_id]
    if missing:
        raise VoucherNotFoundError(f"Payers not found: {', '.join(missing)}")
    return [
        _Payer(
            client_id=c.id,
            name=c.display_name or str(c.id),
            dni_number=c.dni_number,
            tax_id=c.tax_id,
        )
        for c in (by_id[pid] for pid in payer_ids)
    ]


async def _store_invoice(
    session: AsyncSession,
    *,
    actor: str,
    agency_id: uuid.UUID,
    booking_id: uuid.UUID,
    payer: _Payer,
    request: VoucherRequest,
    auth: VoucherAuthorization,
    lines: list[ServiceLine],
    payload: dict[str, Any],
) -> Invoice:
    numbering = VoucherNumbering.from_details(auth.details)
    async with session.begin():
        existing = await find_duplicate_voucher(
            session,
            Invoice,
            agency_id=agency_id,
            point_of_sale=numbering.point_of_sale,
            voucher_type=numbering.voucher_type,
            number=numbering.number,
        )
        if existing is not None:
            raise DuplicateVoucherError(
                f"Voucher {numbering.display_number} is already recorded; authorization CAE {auth.cae} was not stored"
            )

        sequence = await next_agency_counter(session, agency_id=agency_id, key=AgencyCounterKey.INVOICE)
        issue_date = auth.voucher_date or request.voucher_date or date.today()
        invoice = Invoice(
            agency_id=agency_id,
            agency_invoice_id=sequence,
            booking_id=booking_id,
            client_id=payer.client_id,
            point_of_sale=numbering.point_of_sale,
            voucher_type=numbering.voucher_type,
            voucher_number=numbering.voucher_number,
            display_number=numbering.display_number,
            legacy_number=numbering.legacy_number,
            cae=auth.cae,
            cae_due_date=auth.cae_due_date or default_cae_due_date(issue_date),
            issue_date=issue_date,
            total_amount=request.breakdown.total,
            currency=request.currency,
            exchange_rate=request.exchange_rate or auth.exchange_rate,
            status=VoucherStatus.AUTHORIZED,
            recipient=payer.name[:200],
            payload=payload,
            items=[
                InvoiceItem(service_id=line.service_id, position=idx, description=line.description, **line.amounts())
                for idx, line in enumerate(lines)
            ],
        )
        session.add(invoice)
        await session.flush()

        await audit_log(
            session,
            actor=actor,
            agency_id=agency_id,
            entity_type="invoice",
            entity_id=invoice.id,
            action="issue",
            after={
                "display_number": invoice.display_number,
                "cae": invoice.cae,
                "client_id": payer.client_id,
                "total_amount": invoice.total_amount,
                "currency": invoice.currency,
            },
        )
    return invoice


async def create_invoices(
    session: AsyncSession,
    *,
    actor: str,
    data: InvoiceCreate,
    gateway: AfipGateway | None = None,
    today: date | None = None,
) -> InvoiceBatchResult:
    """
    Issue one voucher per payer and currency for the selected services of a booking.

    Request-level problems (unknown booking/services/payers, bad shares, unusable
    manual totals) raise before anything is sent to AFIP. Per-payer problems are
    collected in the result while the remaining payers keep going; every stored
    voucher is committed on its own, so later failures never undo earlier ones.
    Authorization and storage run under the agency issuance lock; when another
    request holds it past the wait limit, `IssuanceBusyError` is raised before
    anything is sent. The session must not be inside a transaction when called.
    """
    settings = get_settings()
    gateway = gateway or get_afip_gateway()
    today = today or date.today()

    voucher_type = VoucherType(data.voucher_type)
    if voucher_type not in INVOICE_VOUCHER_TYPES:
        raise VoucherValidationError("Voucher type must be Factura A (1) or Factura B (6)")
    voucher_date = validate_invoice_date(data.invoice_date, today=today, window_days=settings.invoice_date_window_days)

    async with session.begin():
        booking = await session.get(Booking, data.booking_id)
        if booking is None:
            raise VoucherNotFoundError("Booking not found")
        agency_id = booking.agency_id
        booking_id = booking.id
        agency = await session.get(Agency, agency_id)
        issuer_tax_id = agency.tax_id if agency is not None else None
        lines = await _load_service_lines(
            session, agency_id=agency_id, booking_id=booking_id, service_ids=list(data.service_ids)
        )
        payers = await _load_payers(session, agency_id=agency_id, payer_ids=list(data.payer_ids))

    try:
        shares = validate_payer_shares(data.payer_shares, payer_count=len(payers))
    except ValueError as e:
        raise VoucherValidationError(str(e)) from e

    manual: ManualTotals | None = None
    manual_currency = ""
    payer_totals: list[ManualTotals] = []
    if data.manual_totals is not None:
        manual = ManualTotals.from_mapping(data.manual_totals.model_dump())
    if manual is not None:
        manual_currency = ensure_single_currency(lines)
        compute_manual_totals(manual)
        payer_totals = split_manual_totals(manual, shares)

    payer_lines = split_service_lines(lines, shares)
    descriptions = {
        "21": list(data.description_21),
        "10_5": list(data.description_10_5),
        "exempt": list(data.description_non_computable),
    }

    result = InvoiceBatchResult()
    issued_ids: list[uuid.UUID] = []

    lease_lost = False
    async with agency_issuance_lock(session, agency_id) as lease:
        for idx, payer in enumerate(payers):
            if lease_lost:
                break
            try:
                doc_type, doc_number = recipient_document(voucher_type, dni_number=payer.dni_number, tax_id=payer.tax_id)
            except VoucherValidationError as e:
                logger.warning("Payer skipped", extra={"client_id": str(payer.client_id), "reason": str(e)})
                result.add_error(f"{payer.name}: {e}")
                continue

            groups: list[tuple[str, list[ServiceLine], VatBreakdown]]
            if manual is not None:
                try:
                    groups = [(manual_currency, payer_lines[idx], compute_manual_totals(payer_totals[idx]))]
                except ManualTotalsError as e:
                    result.add_error(f"{payer.name}: {e}")
                    continue
            else:
                groups = [
                    (currency, group, breakdown_from_lines(group))
                    for currency, group in group_by_currency(payer_lines[idx]).items()
                ]

            for currency, group, breakdown in groups:
                label = f"{payer.name} ({currency})"
                try:
                    request = build_voucher_request(
                        voucher_type=voucher_type,
                        recipient_doc_type=doc_type,
                        recipient_doc_number=doc_number,
                        breakdown=breakdown,
                        currency=currency,
                        exchange_rate=data.exchange_rate,
                        voucher_date=voucher_date,
                        service_period=service_period_for(group),
                    )
                except VoucherValidationError as e:
                    result.add_error(f"{label}: {e}")
                    continue

                try:
                    await lease.renew()
                except IssuanceBusyError as e:
                    result.add_error(f"{label}: {e}")
                    lease_lost = True
                    break

                auth = await authorize_voucher(gateway, request, issuer_tax_id=issuer_tax_id)
                if not auth.success:
                    logger.warning(
                        "Voucher not authorized",
                        extra={"client_id": str(payer.client_id), "currency": currency, "reason": auth.message},
                    )
                    result.add_error(f"{label}: {auth.message}")
                    continue

                payload = {
                    "voucher": auth.details,
                    "request": request.to_payload(),
                    "qr_url": auth.qr_url,
                    "qr_base64": auth.qr_base64,
                    "descriptions": descriptions,
                    "manual_totals": payer_totals[idx].to_payload() if manual is not None else None,
                    "service_period": request.service_period.to_payload() if request.service_period else None,
                    "share": shares[idx],
                }
                try:
                    invoice = await _store_invoice(
                        session,
                        actor=actor,
                        agency_id=agency_id,
                        booking_id=booking_id,
                        payer=payer,
                        request=request,
                        auth=auth,
                        lines=group,
                        payload=payload,
                    )
                except DuplicateVoucherError as e:
                    logger.error("Authorized voucher is a duplicate", extra={"client_id": str(payer.client_id), "detail": str(e)})
                    result.add_reconciliation_error(f"{label}: {e}")
                    continue
                except IntegrityError as e:
                    if is_voucher_number_conflict(e, Invoice):
                        logger.error(
                            "Authorized voucher collided with a stored number",
                            extra={"client_id": str(payer.client_id), "cae": auth.cae},
                        )
                        result.add_reconciliation_error(f"{label}: {DUPLICATE_VOUCHER_MESSAGE}")
                    else:
                        logger.exception(
                            "Authorized voucher could not be stored",
                            extra={"client_id": str(payer.client_id), "cae": auth.cae},
                        )
                        result.add_reconciliation_error(f"{label}: {store_failure_message(auth.cae)}")
                    continue
                except ValueError as e:
                    logger.error("Authorized voucher has no usable number", extra={"client_id": str(payer.client_id)})
                    result.add_reconciliation_error(f"{label}: {e}")
                    continue

                issued_ids.append(invoice.id)

    if issued_ids:
        # A failed store rolls back and expires everything loaded so far; reload what was issued.
        async with session.begin():
            rows = (
                await session.execute(
                    select(Invoice)
                    .where(Invoice.id.in_(issued_ids))
                    .options(selectinload(Invoice.items))
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()
        by_id = {r.id: r for r in rows}
        result.invoices = [by_id[i] for i in issued_ids if i in by_id]

    return result
