from __future__ import annotations

import base64
import json
import uuid
from datetime import date
from decimal import Decimal

import pytest

from backoffice.core.enums import ReceiverVatCondition, RecipientDocType, VatCategory, VoucherConcept, VoucherType
from backoffice.services.errors import VoucherValidationError
from backoffice.services.splitting import ServiceLine
from backoffice.services.vat import VatBucket, breakdown_from_buckets
from backoffice.services.vouchers import (
    AFIP_CURRENCY_CODES,
    AssociatedVoucher,
    ServicePeriod,
    afip_qr_base64,
    build_voucher_request,
    group_by_currency,
    parse_afip_date,
    recipient_document,
    service_period_for,
    to_afip_currency,
    validate_invoice_date,
)


def _breakdown(base: str = "1000", vat: str = "210"):
    return breakdown_from_buckets([VatBucket(VatCategory.RATE_21, Decimal(base), Decimal(vat))])


def _line(currency: str, departure: date | None = None, ret: date | None = None) -> ServiceLine:
    return ServiceLine(
        service_id=uuid.uuid4(),
        description="svc",
        currency=currency,
        departure_date=departure,
        return_date=ret,
    )


@pytest.mark.parametrize("code,expected", [("ARS", "PES"), ("ars", "PES"), (" USD ", "DOL"), ("EUR", "EUR"), ("brl", "BRL")])
def test_to_afip_currency(code: str, expected: str) -> None:
    assert to_afip_currency(code) == expected


def test_currency_table_covers_local_and_dollar() -> None:
    assert AFIP_CURRENCY_CODES == {"ARS": "PES", "USD": "DOL"}
    with pytest.raises(VoucherValidationError):
        to_afip_currency("  ")


def test_recipient_document_by_voucher_letter() -> None:
    assert recipient_document(VoucherType.INVOICE_B, dni_number="30.111.222", tax_id=None) == (
        RecipientDocType.DNI,
        "30111222",
    )
    assert recipient_document(VoucherType.CREDIT_NOTE_A, dni_number=None, tax_id="27-30111222-9") == (
        RecipientDocType.CUIT,
        "27301112229",
    )


@pytest.mark.parametrize(
    "voucher_type,dni,cuit,message",
    [
        (VoucherType.INVOICE_A, "30111222", None, "no CUIT"),
        (VoucherType.INVOICE_B, None, "27301112229", "no DNI"),
        (VoucherType.INVOICE_B, "0", None, "no DNI"),
    ],
)
def test_recipient_document_missing(voucher_type, dni, cuit, message) -> None:
    with pytest.raises(VoucherValidationError, match=message):
        recipient_document(voucher_type, dni_number=dni, tax_id=cuit)


def test_service_period_spans_all_lines() -> None:
    period = service_period_for(
        [
            _line("ARS", date(2026, 3, 2), date(2026, 3, 5)),
            _line("ARS", date(2026, 2, 27), None),
            _line("ARS", None, date(2026, 3, 9)),
        ]
    )
    assert period == ServicePeriod(start=date(2026, 2, 27), end=date(2026, 3, 9))
    assert service_period_for([_line("ARS")]) is None
    assert service_period_for([_line("ARS", None, date(2026, 1, 2))]) == ServicePeriod(date(2026, 1, 2), date(2026, 1, 2))


def test_service_period_payload_round_trip() -> None:
    period = ServicePeriod(start=date(2026, 3, 1), end=date(2026, 3, 8))
    assert ServicePeriod.from_payload(period.to_payload()) == period
    assert ServicePeriod.from_payload({"from": "bad"}) is None
    assert ServicePeriod.from_payload(None) is None


def test_group_by_currency_keeps_first_seen_order() -> None:
    groups = group_by_currency([_line("usd"), _line("ARS"), _line("USD")])
    assert list(groups) == ["USD", "ARS"]
    assert len(groups["USD"]) == 2


def test_validate_invoice_date_window() -> None:
    today = date(2026, 3, 10)
    assert validate_invoice_date(None, today=today, window_days=5) is None
    assert validate_invoice_date(date(2026, 3, 5), today=today, window_days=5) == date(2026, 3, 5)
    assert validate_invoice_date(date(2026, 3, 15), today=today, window_days=5) == date(2026, 3, 15)
    with pytest.raises(VoucherValidationError, match="within 5 days"):
        validate_invoice_date(date(2026, 3, 4), today=today, window_days=5)
    with pytest.raises(VoucherValidationError):
        validate_invoice_date(date(2026, 3, 16), today=today, window_days=5)


def test_parse_afip_date() -> None:
    assert parse_afip_date("20260310") == date(2026, 3, 10)
    assert parse_afip_date("2026-03-10") == date(2026, 3, 10)
    assert parse_afip_date(20260310) == date(2026, 3, 10)
    assert parse_afip_date("20261340") is None
    assert parse_afip_date("") is None
    assert parse_afip_date(None) is None


def test_build_invoice_request_payload() -> None:
    request = build_voucher_request(
        voucher_type=VoucherType.INVOICE_B,
        recipient_doc_type=RecipientDocType.DNI,
        recipient_doc_number="30111222",
        breakdown=_breakdown(),
        currency="ARS",
        exchange_rate=Decimal("1200"),
        voucher_date=date(2026, 3, 10),
        service_period=ServicePeriod(date(2026, 3, 1), date(2026, 3, 8)),
    )
    assert request.currency == "PES"
    assert request.exchange_rate == Decimal("1")
    assert request.concept == VoucherConcept.SERVICES
    assert request.receiver_vat_condition == ReceiverVatCondition.FINAL_CONSUMER

    payload = request.to_payload()
    assert payload["CbteTipo"] == 6
    assert payload["DocTipo"] == 96
    assert payload["DocNro"] == 30111222
    assert payload["ImpTotal"] == 1210.0
    assert payload["ImpNeto"] == 1000.0
    assert payload["ImpIVA"] == 210.0
    assert payload["MonId"] == "PES"
    assert payload["MonCotiz"] == 1.0
    assert payload["Iva"] == [{"Id": 5, "BaseImp": 1000.0, "Importe": 210.0}]
    assert payload["CbteFch"] == "20260310"
    assert payload["FchServDesde"] == "20260301"
    assert payload["FchServHasta"] == "20260308"
    assert payload["CondicionIVAReceptorId"] == 5
    assert "CbtesAsoc" not in payload


def test_foreign_currency_rate_is_left_to_the_gateway_unless_fixed() -> None:
    common = dict(
        voucher_type=VoucherType.INVOICE_A,
        recipient_doc_type=RecipientDocType.CUIT,
        recipient_doc_number="27301112229",
        breakdown=_breakdown(),
        currency="USD",
    )
    resolved = build_voucher_request(**common)
    assert resolved.currency == "DOL"
    assert resolved.exchange_rate is None
    assert "MonCotiz" not in resolved.to_payload()
    assert resolved.to_payload()["CondicionIVAReceptorId"] == 1

    fixed = build_voucher_request(**common, exchange_rate=1185.5)
    assert fixed.exchange_rate == Decimal("1185.5")

    with pytest.raises(VoucherValidationError, match="Exchange rate"):
        build_voucher_request(**common, exchange_rate=Decimal("-1"))


def test_build_request_rejects_empty_total_and_unlinked_credit_note() -> None:
    with pytest.raises(VoucherValidationError, match="greater than zero"):
        build_voucher_request(
            voucher_type=VoucherType.INVOICE_B,
            recipient_doc_type=RecipientDocType.DNI,
            recipient_doc_number="30111222",
            breakdown=breakdown_from_buckets([]),
            currency="ARS",
        )
    with pytest.raises(VoucherValidationError, match="must reference"):
        build_voucher_request(
            voucher_type=VoucherType.CREDIT_NOTE_B,
            recipient_doc_type=RecipientDocType.DNI,
            recipient_doc_number="30111222",
            breakdown=_breakdown(),
            currency="ARS",
        )


def test_credit_note_request_carries_associated_voucher() -> None:
    associated = AssociatedVoucher.from_voucher_data({"CbteTipo": 6, "PtoVta": 3, "CbteDesde": 41})
    request = build_voucher_request(
        voucher_type=VoucherType.CREDIT_NOTE_B,
        recipient_doc_type=RecipientDocType.DNI,
        recipient_doc_number="30111222",
        breakdown=_breakdown(),
        currency="PES",
        associated_vouchers=[associated],
    )
    payload = request.to_payload()
    assert payload["CbtesAsoc"] == [{"Tipo": 6, "PtoVta": 3, "Nro": 41}]
    assert payload["Concepto"] == int(VoucherConcept.PRODUCTS)
    assert "FchServDesde" not in payload

    with pytest.raises(VoucherValidationError):
        AssociatedVoucher.from_voucher_data({"CbteTipo": 6})


def test_qr_payload_encodes_authorized_data() -> None:
    encoded = afip_qr_base64(
        issuer_tax_id="30-71234567-9",
        details={
            "CbteFch": "20260310",
            "PtoVta": 3,
            "CbteTipo": 6,
            "CbteDesde": 41,
            "ImpTotal": 1210,
            "MonId": "PES",
            "MonCotiz": 1,
            "DocTipo": 96,
            "DocNro": 30111222,
            "CAE": "76123456789012",
        },
    )
    decoded = json.loads(base64.b64decode(encoded))
    assert decoded["cuit"] == 30712345679
    assert decoded["nroCmp"] == 41
    assert decoded["importe"] == 1210.0
    assert decoded["codAut"] == 76123456789012
    assert decoded["tipoCodAut"] == "E"
