from __future__ import annotations

import base64
import json
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import httpx
import pytest

from backoffice.core.config import Settings, get_settings
from backoffice.core.enums import RecipientDocType, VatCategory, VoucherType
from backoffice.services.afip_gateway import (
    HttpAfipGateway,
    MockAfipGateway,
    VoucherAuthorization,
    authorize_voucher,
    get_afip_gateway,
)
from backoffice.services.vat import VatBucket, breakdown_from_buckets
from backoffice.services.vouchers import build_voucher_request


def _request(voucher_type: VoucherType = VoucherType.INVOICE_B, *, voucher_date: date | None = date(2026, 3, 10)):
    return build_voucher_request(
        voucher_type=voucher_type,
        recipient_doc_type=RecipientDocType.DNI,
        recipient_doc_number="30111222",
        breakdown=breakdown_from_buckets([VatBucket(VatCategory.RATE_21, Decimal("1000"), Decimal("210"))]),
        currency="ARS",
        voucher_date=voucher_date,
    )


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "BASIC_AUTH_USERNAME": "u",
        "BASIC_AUTH_PASSWORD": "p",
        "AFIP_GATEWAY_BASE_URL": "http://gateway.test/",
        "AFIP_GATEWAY_TOKEN": "secret",
        "AFIP_TIMEOUT_SECONDS": 5,
    }
    values.update(overrides)
    return Settings(**values)


class _Client:
    """Stands in for `httpx.AsyncClient`; answers every POST with `outcome`."""

    outcome: httpx.Response | Exception
    calls: list[dict[str, Any]] = []

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.kwargs = kwargs

    async def __aenter__(self) -> "_Client":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False

    async def post(self, url: str, *, json: Any = None, headers: dict[str, str] | None = None) -> httpx.Response:
        type(self).calls.append({"url": url, "json": json, "headers": headers, "timeout": self.kwargs.get("timeout")})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def fake_client(monkeypatch):
    _Client.calls = []
    monkeypatch.setattr("backoffice.services.afip_gateway.httpx.AsyncClient", _Client)
    return _Client


AUTHORIZED_DETAILS = {
    "CbteTipo": 6,
    "PtoVta": 3,
    "CbteDesde": 41,
    "CbteHasta": 41,
    "CbteFch": "20260310",
    "ImpTotal": 1210,
    "MonId": "PES",
    "MonCotiz": 1,
    "DocTipo": 96,
    "DocNro": 30111222,
    "CAE": "76123456789012",
    "CAEFchVto": "20260320",
}


@pytest.mark.asyncio
async def test_http_gateway_success(fake_client) -> None:
    fake_client.outcome = httpx.Response(200, json={"success": True, "details": AUTHORIZED_DETAILS})

    auth = await HttpAfipGateway(_settings()).issue_voucher(_request(), issuer_tax_id="30-71234567-9")

    assert auth.success is True
    assert auth.cae == "76123456789012"
    assert auth.cae_due_date == date(2026, 3, 20)
    assert auth.voucher_date == date(2026, 3, 10)
    assert auth.exchange_rate == Decimal("1")
    assert auth.qr_base64 is not None
    assert auth.qr_url == f"https://www.afip.gob.ar/fe/qr/?p={auth.qr_base64}"
    assert json.loads(base64.b64decode(auth.qr_base64))["nroCmp"] == 41

    (call,) = fake_client.calls
    assert call["url"] == "http://gateway.test/vouchers"
    assert call["headers"] == {"Authorization": "Bearer secret"}
    assert call["json"]["issuer_tax_id"] == "30-71234567-9"
    assert call["json"]["voucher"]["CbteTipo"] == 6
    assert call["json"]["voucher"]["ImpTotal"] == 1210.0
    assert isinstance(call["timeout"], httpx.Timeout)


@pytest.mark.asyncio
async def test_http_gateway_without_token_sends_no_auth_header(fake_client) -> None:
    fake_client.outcome = httpx.Response(200, json={"success": True, "details": AUTHORIZED_DETAILS})

    await HttpAfipGateway(_settings(AFIP_GATEWAY_TOKEN="  ")).issue_voucher(_request(), issuer_tax_id=None)

    assert fake_client.calls[0]["headers"] == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response,message",
    [
        (httpx.Response(502, json={"detail": "Certificate expired"}), "Certificate expired"),
        (httpx.Response(500, text="oops"), "AFIP gateway error (500)"),
        (httpx.Response(200, text="not json"), "Invalid AFIP gateway response"),
        (httpx.Response(200, json=[1, 2]), "Invalid AFIP gateway response"),
        (httpx.Response(200, json={"success": False, "message": "10016: CbteFch out of range"}), "10016: CbteFch out of range"),
        (httpx.Response(200, json={"success": False}), "AFIP rejected the voucher"),
        (httpx.Response(200, json={"success": True, "details": {"PtoVta": 3}}), "AFIP response has no authorization code (CAE)"),
    ],
)
async def test_http_gateway_failures(fake_client, response: httpx.Response, message: str) -> None:
    fake_client.outcome = response

    auth = await HttpAfipGateway(_settings()).issue_voucher(_request(), issuer_tax_id="30712345679")

    assert auth.success is False
    assert auth.message == message
    assert auth.cae == ""


@pytest.mark.asyncio
async def test_http_gateway_timeout_is_reported_not_retried(fake_client) -> None:
    fake_client.outcome = httpx.ReadTimeout("timed out")

    auth = await HttpAfipGateway(_settings()).issue_voucher(_request(), issuer_tax_id="30712345679")

    assert auth.success is False
    assert "within 5s" in auth.message
    assert "last authorized voucher" in auth.message
    assert len(fake_client.calls) == 1


@pytest.mark.asyncio
async def test_http_gateway_transport_error(fake_client) -> None:
    fake_client.outcome = httpx.ConnectError("connection refused")

    auth = await HttpAfipGateway(_settings()).issue_voucher(_request(), issuer_tax_id="30712345679")

    assert auth.success is False
    assert auth.message == "AFIP gateway unavailable: ConnectError"


@pytest.mark.asyncio
async def test_mock_gateway_numbers_per_issuer_and_type() -> None:
    gateway = MockAfipGateway(point_of_sale=4)

    first = await gateway.issue_voucher(_request(), issuer_tax_id="30712345679")
    second = await gateway.issue_voucher(_request(), issuer_tax_id="30712345679")
    type_a = await gateway.issue_voucher(_request(VoucherType.INVOICE_A), issuer_tax_id="30712345679")
    other_issuer = await gateway.issue_voucher(_request(), issuer_tax_id="20111111112")

    assert [a.details["CbteDesde"] for a in (first, second, type_a, other_issuer)] == [1, 2, 1, 1]
    assert first.details["PtoVta"] == 4
    assert first.details["CbteHasta"] == 1
    assert first.details["Resultado"] == "A"
    assert len(first.cae) == 14 and first.cae.isdigit()
    assert first.voucher_date == date(2026, 3, 10)
    assert first.cae_due_date == date(2026, 3, 20)
    assert first.details["ImpTotal"] == 1210.0
    assert first.qr_url is not None
    assert gateway.last_number(issuer_tax_id="30712345679", voucher_type=6) == 2
    assert gateway.last_number(issuer_tax_id="30712345679", voucher_type=8) == 0


@pytest.mark.asyncio
async def test_mock_gateway_defaults_voucher_date_to_today() -> None:
    auth = await MockAfipGateway().issue_voucher(_request(voucher_date=None), issuer_tax_id=None)

    assert auth.voucher_date == date.today()
    assert auth.cae_due_date == date.today() + timedelta(days=10)


class _ExplodingGateway:
    async def issue_voucher(self, request, *, issuer_tax_id):
        raise RuntimeError("socket closed")


@pytest.mark.asyncio
async def test_authorize_voucher_turns_exceptions_into_failures(caplog) -> None:
    with caplog.at_level("ERROR", logger="backoffice.services.afip_gateway"):
        auth = await authorize_voucher(_ExplodingGateway(), _request(), issuer_tax_id=None)

    assert auth == VoucherAuthorization.failure("socket closed")
    assert any(r.getMessage() == "Voucher authorization raised" for r in caplog.records)


def test_get_afip_gateway_follows_issuer_mode(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("BASIC_AUTH_USERNAME", "u")
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", "p")

    monkeypatch.setenv("AFIP_ENV", "testing")
    monkeypatch.delenv("AFIP_ISSUER_MODE", raising=False)
    get_settings.cache_clear()
    mock = get_afip_gateway()
    assert isinstance(mock, MockAfipGateway)
    assert get_afip_gateway() is mock

    monkeypatch.setenv("AFIP_ISSUER_MODE", "http")
    get_settings.cache_clear()
    assert isinstance(get_afip_gateway(), HttpAfipGateway)

    monkeypatch.setenv("AFIP_ENV", "production")
    monkeypatch.delenv("AFIP_ISSUER_MODE")
    get_settings.cache_clear()
    assert isinstance(get_afip_gateway(), HttpAfipGateway)

    get_settings.cache_clear()


def test_settings_reject_unknown_issuer_mode() -> None:
    with pytest.raises(ValueError, match="AFIP_ISSUER_MODE"):
        _settings(AFIP_ISSUER_MODE="soap")
