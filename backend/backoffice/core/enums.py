from __future__ import annotations

from enum import IntEnum, StrEnum


class VoucherType(IntEnum):
    """AFIP `CbteTipo` codes handled by the back-office."""

    INVOICE_A = 1
    CREDIT_NOTE_A = 3
    INVOICE_B = 6
    CREDIT_NOTE_B = 8

    @property
    def letter(self) -> str:
        return "A" if self in (VoucherType.INVOICE_A, VoucherType.CREDIT_NOTE_A) else "B"

    @property
    def is_credit_note(self) -> bool:
        return self in (VoucherType.CREDIT_NOTE_A, VoucherType.CREDIT_NOTE_B)

    @property
    def label(self) -> str:
        return {
            VoucherType.INVOICE_A: "Factura A",
            VoucherType.CREDIT_NOTE_A: "Nota de Crédito A",
            VoucherType.INVOICE_B: "Factura B",
            VoucherType.CREDIT_NOTE_B: "Nota de Crédito B",
        }[self]


INVOICE_VOUCHER_TYPES = frozenset({VoucherType.INVOICE_A, VoucherType.INVOICE_B})
CREDIT_NOTE_VOUCHER_TYPES = frozenset({VoucherType.CREDIT_NOTE_A, VoucherType.CREDIT_NOTE_B})

CREDIT_NOTE_TYPE_FOR_INVOICE: dict[VoucherType, VoucherType] = {
    VoucherType.INVOICE_A: VoucherType.CREDIT_NOTE_A,
    VoucherType.INVOICE_B: VoucherType.CREDIT_NOTE_B,
}


class RecipientDocType(IntEnum):
    CUIT = 80
    DNI = 96


class VatCategory(IntEnum):
    """AFIP `Iva.Id` values used in the VAT bucket array."""

    EXEMPT = 3
    RATE_10_5 = 4
    RATE_21 = 5


class ReceiverVatCondition(IntEnum):
    REGISTERED_TAXPAYER = 1
    FINAL_CONSUMER = 5


class VoucherConcept(IntEnum):
    PRODUCTS = 1
    SERVICES = 2


class VoucherStatus(StrEnum):
    AUTHORIZED = "AUTHORIZED"


class AgencyCounterKey(StrEnum):
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
