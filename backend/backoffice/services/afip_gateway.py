from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import httpx

from backoffice.core.config import Settings, get_settings
from backoffice.services.money import to_decimal
from backoffice.services.vouchers import (
    AFIP_QR_BASE_URL,
    VoucherRequest,
    afip_date,
    afip_qr_base64,
    default_cae_due_date,
    parse_afip_date,
)


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VoucherAuthorization:
    """Outcome of one authorization attempt; `details` is the voucher data merged with the CAE response."""

    success: bool
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    qr_base64: str | None = None

    @classmethod
    def failure(cls, message: str) -> "VoucherAuthorization":
        return cls(success=False, message=message)

    @property
    def cae(self) -> str:
        return str(self.details.get("CAE") or "")

    @property
    def cae_due_date(self) -> date | None:
        return parse_afip_date(self.details.get("CAEFchVto"))

    @property
    def voucher_date(self) -> date | None:
        return parse_afip_date(self.details.get("CbteFch"))

    @property
    def exchange_rate(self) -> Decimal:
        rate = to_decimal(self.details.get("MonCotiz"))
        return rate if rate > 0 else Decimal("1")

    @property
    def qr_url(self) -> str | None:
        return f"{AFIP_QR_BASE_URL}?p={self.qr_base64}" if self.qr_base64 else None


class AfipGateway(Protocol):
    async def issue_voucher(self, request: VoucherRequest, *, issuer_tax_id: str | None) -> VoucherAuthorization: ...


def _gateway_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        msg = data.get("message") or data.get("detail")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return f"AFIP gateway error ({resp.status_code})"


class HttpAfipGateway:
    """
    Client for the voucher gateway that holds the agencies' AFIP certificates.

    The gateway resolves the point of sale, asks AFIP for the last authorized number,
    and answers with the merged voucher data (`PtoVta`, `CbteDesde`, `CAE`, ...).
    Calls are never retried here: a voucher that timed out may still have been
    authorized, so retrying blindly would consume a second number.
    """

    def __init__(self, settings: Settings) -> None:
        self.base_url = settings.afip_gateway_base_url.rstrip("/")
        self.token = settings.afip_gateway_token
        self.timeout_seconds = settings.afip_timeout_seconds

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def issue_voucher(self, request: VoucherRequest, *, issuer_tax_id: str | None) -> VoucherAuthorization:
        url = f"{self.base_url}/vouchers"
        body = {"issuer_tax_id": issuer_tax_id, "voucher": request.to_payload()}
        timeout = httpx.Timeout(timeout=self.timeout_seconds)
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
        except httpx.TimeoutException:
            logger.warning(
                "AFIP gateway timed out",
                extra={"voucher_type": int(request.voucher_type), "timeout_seconds": self.timeout_seconds},
            )
            return VoucherAuthorization.failure(
                f"AFIP did not answer within {self.timeout_seconds:g}s; check the last authorized voucher before retrying"
            )
        except httpx.HTTPError as e:
            logger.exception("AFIP gateway request failed")
            return VoucherAuthorization.failure(f"AFIP gateway unavailable: {e.__class__.__name__}")

        if resp.status_code >= 400:
            return VoucherAuthorization.failure(_gateway_message(resp))

        try:
            data = resp.json()
        except ValueError:
            return VoucherAuthorization.failure("Invalid AFIP gateway response")
        if not isinstance(data, dict):
            return VoucherAuthorization.failure("Invalid AFIP gateway response")

        if not data.get("success"):
            msg = data.get("message")
            return VoucherAuthorization.failure(str(msg).strip() if msg else "AFIP rejected the voucher")

        details = data.get("details")
        if not isinstance(details, dict) or not details.get("CAE"):
            return VoucherAuthorization.failure("AFIP response has no authorization code (CAE)")

        return VoucherAuthorization(
            success=True,
            message=str(data.get("message") or ""),
            details=details,
            qr_base64=afip_qr_base64(issuer_tax_id=issuer_tax_id, details=details),
        )


class MockAfipGateway:
    """
    In-process stand-in for homologation and tests.

    Numbers vouchers like AFIP does (last authorized + 1 per point of sale and type)
    and fabricates a CAE that expires ten days after the voucher date.
    """

    def __init__(self, *, point_of_sale: int = 1) -> None:
        self.point_of_sale = point_of_sale
        self._last_numbers: dict[tuple[str, int, int], int] = {}

    def last_number(self, *, issuer_tax_id: str | None, voucher_type: int) -> int:
        return self._last_numbers.get((issuer_tax_id or "", self.point_of_sale, int(voucher_type)), 0)

    async def issue_voucher(self, request: VoucherRequest, *, issuer_tax_id: str | None) -> VoucherAuthorization:
        key = (issuer_tax_id or "", self.point_of_sale, int(request.voucher_type))
        number = self._last_numbers.get(key, 0) + 1
        self._last_numbers[key] = number

        voucher_date = request.voucher_date or date.today()
        details = dict(request.to_payload())
        details.update(
            {
                "PtoVta": self.point_of_sale,
                "CbteDesde": number,
                "CbteHasta": number,
                "CbteFch": afip_date(voucher_date),
                "MonCotiz": float(request.exchange_rate or 1),
                "CAE": "".join(str(secrets.randbelow(10)) for _ in range(14)),
                "CAEFchVto": afip_date(default_cae_due_date(voucher_date)),
                "Resultado": "A",
            }
        )
        return VoucherAuthorization(
            success=True,
            details=details,
            qr_base64=afip_qr_base64(issuer_tax_id=issuer_tax_id, details=details),
        )


@lru_cache
def _mock_gateway(point_of_sale: int) -> MockAfipGateway:
    return MockAfipGateway(point_of_sale=point_of_sale)


def get_afip_gateway() -> AfipGateway:
    settings = get_settings()
    if settings.afip_mock_enabled:
        return _mock_gateway(settings.afip_mock_point_of_sale)
    return HttpAfipGateway(settings)


async def authorize_voucher(
    gateway: AfipGateway,
    request: VoucherRequest,
    *,
    issuer_tax_id: str | None,
) -> VoucherAuthorization:
    """Call the gateway and turn anything it raises into a failed authorization."""
    try:
        return await gateway.issue_voucher(request, issuer_tax_id=issuer_tax_id)
    except Exception as e:
        logger.exception("Voucher authorization raised", extra={"voucher_type": int(request.voucher_type)})
        return VoucherAuthorization.failure(str(e) or e.__class__.__name__)
