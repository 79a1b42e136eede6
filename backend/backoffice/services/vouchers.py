from __future__ import annotations

import base64
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from backoffice.core.enums import (
    ReceiverVatCondition,
    RecipientDocType,
    VoucherConcept,
    VoucherType,
)
from backoffice.services.errors import VoucherValidationError
from backoffice.services.money import round2, to_decimal
from backoffice.services.splitting import ServiceLine
from backoffice.services.vat import VatBreakdown


AFIP_QR_BASE_URL = "https://www.afip.gob.ar/fe/qr/"

# Internal ISO-ish codes -> AFIP `MonId`. Anything else passes through upper-cased.
AFIP_CURRENCY_CODES: dict[str, str] = {
    "ARS": "PES",
    "USD": "DOL",
}
AFIP_LOCAL_CURRENCY = "PES"


def to_afip_currency(code: str) -> str:
    normalized = (code or "").strip().upper()
    if not normalized:
        raise VoucherValidationError("Currency is required")
    return AFIP_CURRENCY_CODES.get(normalized, normalized)


def afip_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def parse_afip_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    s = str(value).strip().replace("-", "")
    if len(s) != 8 or not s.isdigit():
        return None
    try:
        return date(int(s[:4]), int(s[4:6]), int(s[6:]))
    except ValueError:
        return None


def validate_invoice_date(value: date | None, *, today: date, window_days: int) -> date | None:
    if value is None:
        return None
    if abs((value - today).days) > window_days:
        raise VoucherValidationError(f"Invoice date must be within {window_days} days of today")
    return value


@dataclass(frozen=True, slots=True)
class AssociatedVoucher:
    voucher_type: int
    point_of_sale: int
    number: int

    def to_afip(self) -> dict[str, int]:
        return {"Tipo": self.voucher_type, "PtoVta": self.point_of_sale, "Nro": self.number}

    @classmethod
    def from_voucher_data(cls, voucher: Mapping[str, Any]) -> "AssociatedVoucher":
        try:
            return cls(
                voucher_type=int(voucher["CbteTipo"]),
                point_of_sale=int(voucher["PtoVta"]),
                number=int(voucher["CbteDesde"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise VoucherValidationError("Original voucher data is incomplete (CbteTipo/PtoVta/CbteDesde)") from e


@dataclass(frozen=True, slots=True)
class ServicePeriod:
    start: date
    end: date

    def to_payload(self) -> dict[str, str]:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}

    @classmethod
    def from_payload(cls, raw: Any) -> "ServicePeriod | None":
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls(start=date.fromisoformat(str(raw["from"])), end=date.fromisoformat(str(raw["to"])))
        except (KeyError, ValueError):
            return None


def service_period_for(lines: Sequence[ServiceLine]) -> ServicePeriod | None:
    starts = [l.departure_date for l in lines if l.departure_date is not None]
    ends = [l.return_date for l in lines if l.return_date is not None]
    if not starts and not ends:
        return None
    start = min(starts) if starts else min(ends)
    end = max(ends) if ends else max(starts)
    if end < start:
        end = start
    return ServicePeriod(start=start, end=end)


def group_by_currency(lines: Sequence[ServiceLine]) -> dict[str, list[ServiceLine]]:
    grouped: dict[str, list[ServiceLine]] = {}
    for line in lines:
        grouped.setdefault(line.currency.strip().upper(), []).append(line)
    return grouped


def recipient_document(
    voucher_type: VoucherType,
    *,
    dni_number: str | None,
    tax_id: str | None,
) -> tuple[RecipientDocType, str]:
    """B vouchers go to final consumers (DNI); A vouchers require a registered CUIT."""
    if voucher_type.letter == "B":
        doc_type, raw = RecipientDocType.DNI, dni_number
    else:
        doc_type, raw = RecipientDocType.CUIT, tax_id

    digits = "".join(ch for ch in (raw or "") if ch.isdigit())
    if not digits or int(digits) == 0:
        kind = "DNI" if doc_type == RecipientDocType.DNI else "CUIT"
        raise VoucherValidationError(f"Recipient has no {kind} for a {voucher_type.label}")
    return doc_type, digits


def receiver_vat_condition(voucher_type: VoucherType) -> ReceiverVatCondition:
    if voucher_type.letter == "B":
        return ReceiverVatCondition.FINAL_CONSUMER
    return ReceiverVatCondition.REGISTERED_TAXPAYER


@dataclass(frozen=True, slots=True)
class VoucherRequest:
    """Everything the tax-authority gateway needs to authorize one voucher."""

    voucher_type: VoucherType
    recipient_doc_type: RecipientDocType
    recipient_doc_number: str
    breakdown: VatBreakdown
    currency: str
    exchange_rate: Decimal | None = None
    voucher_date: date | None = None
    associated_vouchers: tuple[AssociatedVoucher, ...] = field(default_factory=tuple)
    service_period: ServicePeriod | None = None

    @property
    def concept(self) -> VoucherConcept:
        return VoucherConcept.SERVICES if self.service_period is not None else VoucherConcept.PRODUCTS

    @property
    def receiver_vat_condition(self) -> ReceiverVatCondition:
        return receiver_vat_condition(self.voucher_type)

    def to_payload(self) -> dict[str, Any]:
        """
        AFIP `FECAESolicitar` shaped payload, minus point of sale and numbering.

        The gateway owns `PtoVta` / `CbteDesde` / `CbteHasta` because only it knows the
        last authorized number.
        """
        payload: dict[str, Any] = {
            "CantReg": 1,
            "CbteTipo": int(self.voucher_type),
            "Concepto": int(self.concept),
            "DocTipo": int(self.recipient_doc_type),
            "DocNro": int(self.recipient_doc_number),
            "ImpTotal": float(self.breakdown.total),
            "ImpTotConc": 0,
            "ImpNeto": float(self.breakdown.net),
            "ImpIVA": float(self.breakdown.vat),
            "MonId": self.currency,
            "Iva": [b.to_afip() for b in self.breakdown.buckets],
            "CondicionIVAReceptorId": int(self.receiver_vat_condition),
        }
        if self.exchange_rate is not None:
            payload["MonCotiz"] = float(self.exchange_rate)
        if self.voucher_date is not None:
            payload["CbteFch"] = afip_date(self.voucher_date)
        if self.associated_vouchers:
            payload["CbtesAsoc"] = [a.to_afip() for a in self.associated_vouchers]
        if self.service_period is not None:
            payload["FchServDesde"] = afip_date(self.service_period.start)
            payload["FchServHasta"] = afip_date(self.service_period.end)
            payload["FchVtoPago"] = afip_date(self.voucher_date or self.service_period.start)
        return payload


def build_voucher_request(
    *,
    voucher_type: VoucherType,
    recipient_doc_type: RecipientDocType,
    recipient_doc_number: str,
    breakdown: VatBreakdown,
    currency: str,
    exchange_rate: Decimal | float | None = None,
    voucher_date: date | None = None,
    associated_vouchers: Sequence[AssociatedVoucher] = (),
    service_period: ServicePeriod | None = None,
) -> VoucherRequest:
    if not breakdown.buckets or breakdown.total <= 0:
        raise VoucherValidationError("Voucher total must be greater than zero")
    if voucher_type.is_credit_note and not associated_vouchers:
        raise VoucherValidationError("A credit note must reference the voucher it credits")

    afip_currency = to_afip_currency(currency)
    rate: Decimal | None
    if afip_currency == AFIP_LOCAL_CURRENCY:
        rate = Decimal("1")
    elif exchange_rate is None:
        rate = None
    else:
        rate = to_decimal(exchange_rate)
        if rate <= 0:
            raise VoucherValidationError("Exchange rate must be a positive number")

    return VoucherRequest(
        voucher_type=voucher_type,
        recipient_doc_type=recipient_doc_type,
        recipient_doc_number=recipient_doc_number,
        breakdown=breakdown,
        currency=afip_currency,
        exchange_rate=rate,
        voucher_date=voucher_date,
        associated_vouchers=tuple(associated_vouchers),
        service_period=service_period,
    )


def afip_qr_base64(*, issuer_tax_id: str | None, details: Mapping[str, Any]) -> str:
    """Base64 JSON payload of the QR code AFIP requires on printed vouchers (RG 4291)."""
    issuer_digits = "".join(ch for ch in (issuer_tax_id or "") if ch.isdigit())
    qr_payload = {
        "ver": 1,
        "fecha": str(details.get("CbteFch") or ""),
        "cuit": int(issuer_digits) if issuer_digits else 0,
        "ptoVta": int(details.get("PtoVta") or 0),
        "tipoCmp": int(details.get("CbteTipo") or 0),
        "nroCmp": int(details.get("CbteDesde") or 0),
        "importe": float(round2(details.get("ImpTotal"))),
        "moneda": str(details.get("MonId") or ""),
        "ctz": float(to_decimal(details.get("MonCotiz") or 1)),
        "tipoDocRec": int(details.get("DocTipo") or 0),
        "nroDocRec": int(details.get("DocNro") or 0),
        "tipoCodAut": "E",
        "codAut": int(str(details.get("CAE") or "0")),
    }
    return base64.b64encode(json.dumps(qr_payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def default_cae_due_date(issue_date: date) -> date:
    return issue_date + timedelta(days=10)
