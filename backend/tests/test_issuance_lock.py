from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Any

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select, update

from backoffice.api.v1.endpoints.invoices import create_invoices_endpoint
from backoffice.core.config import get_settings
from backoffice.models.invoice import Invoice
from backoffice.models.job_lock import JobLock
from backoffice.schemas.credit_note import CreditNoteCreate
from backoffice.schemas.invoice import InvoiceCreate
from backoffice.services.afip_gateway import MockAfipGateway
from backoffice.services.credit_notes import create_credit_note
from backoffice.services.errors import IssuanceBusyError
from backoffice.services.invoices import create_invoices
from backoffice.services.issuance_lock import IssuanceLease, agency_issuance_lock, issuance_lock_name, utcnow


ACTOR = "tester"
TODAY = date(2026, 3, 10)


class _SlowGateway:
    """Mock numbering with a short delay; records how many authorizations overlap."""

    def __init__(self) -> None:
        self.inner = MockAfipGateway()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def issue_voucher(self, request, *, issuer_tax_id):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.05)
            return await self.inner.issue_voucher(request, issuer_tax_id=issuer_tax_id)
        finally:
            self.in_flight -= 1


class _LeaseStealingGateway(_SlowGateway):
    """After the first authorization another host takes the agency lease over."""

    def __init__(self, session_factory, lock_name: str) -> None:
        super().__init__()
        self.session_factory = session_factory
        self.lock_name = lock_name

    async def issue_voucher(self, request, *, issuer_tax_id):
        auth = await super().issue_voucher(request, issuer_tax_id=issuer_tax_id)
        if self.calls == 1:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(JobLock)
                        .where(JobLock.name == self.lock_name)
                        .values(locked_by="other-host:2:def", expires_at=utcnow() + timedelta(minutes=5))
                    )
        return auth


def _data(setup, **overrides: Any) -> InvoiceCreate:
    values: dict[str, Any] = {
        "booking_id": setup.booking_id,
        "service_ids": [setup.svc_21_id],
        "payer_ids": [setup.ana_id],
        "voucher_type": 6,
    }
    values.update(overrides)
    return InvoiceCreate(**values)


async def _foreign_lease(session, agency_id, *, expires_in: timedelta) -> None:
    now = utcnow()
    async with session.begin():
        session.add(
            JobLock(
                name=issuance_lock_name(agency_id),
                locked_by="other-host:1:abc",
                locked_at=now,
                expires_at=now + expires_in,
            )
        )


async def _lock_rows(session_factory) -> list[JobLock]:
    async with session_factory() as session:
        return list((await session.execute(select(JobLock))).scalars().all())


@pytest.fixture
def no_lock_wait(monkeypatch):
    monkeypatch.setenv("ISSUANCE_LOCK_WAIT_SECONDS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_concurrent_batches_for_one_agency_run_one_at_a_time(session_factory, booking_setup) -> None:
    gateway = _SlowGateway()

    async def issue(payer_id):
        async with session_factory() as session:
            return await create_invoices(
                session, actor=ACTOR, data=_data(booking_setup, payer_ids=[payer_id]), gateway=gateway, today=TODAY
            )

    first, second = await asyncio.gather(issue(booking_setup.ana_id), issue(booking_setup.bruno_id))

    assert first.errors == [] and second.errors == []
    assert first.success and second.success
    assert gateway.max_in_flight == 1

    async with session_factory() as session:
        stored = (
            await session.execute(select(Invoice.agency_invoice_id, Invoice.voucher_number).order_by(Invoice.agency_invoice_id))
        ).all()
    assert [tuple(r) for r in stored] == [(1, "00000001"), (2, "00000002")]
    assert await _lock_rows(session_factory) == []


@pytest.mark.asyncio
async def test_batch_gives_up_while_another_host_holds_the_lease(
    no_lock_wait, db_session, session_factory, booking_setup
) -> None:
    await _foreign_lease(db_session, booking_setup.agency_id, expires_in=timedelta(minutes=5))
    gateway = _SlowGateway()

    with pytest.raises(IssuanceBusyError, match="Another voucher issuance is running"):
        await create_invoices(db_session, actor=ACTOR, data=_data(booking_setup), gateway=gateway, today=TODAY)

    with pytest.raises(HTTPException) as exc:
        await create_invoices_endpoint(_data(booking_setup), session=db_session, actor=ACTOR, gateway=gateway)
    assert exc.value.status_code == 409

    assert gateway.calls == 0
    (row,) = await _lock_rows(session_factory)
    assert row.locked_by == "other-host:1:abc"
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Invoice)) == 0


@pytest.mark.asyncio
async def test_expired_lease_is_taken_over(no_lock_wait, db_session, session_factory, booking_setup) -> None:
    await _foreign_lease(db_session, booking_setup.agency_id, expires_in=timedelta(minutes=-1))

    result = await create_invoices(
        db_session, actor=ACTOR, data=_data(booking_setup), gateway=MockAfipGateway(), today=TODAY
    )

    assert result.success
    assert await _lock_rows(session_factory) == []


@pytest.mark.asyncio
async def test_batch_stops_when_the_lease_is_lost(db_session, session_factory, booking_setup) -> None:
    gateway = _LeaseStealingGateway(session_factory, issuance_lock_name(booking_setup.agency_id))
    data = _data(booking_setup, payer_ids=[booking_setup.ana_id, booking_setup.bruno_id])

    result = await create_invoices(db_session, actor=ACTOR, data=data, gateway=gateway, today=TODAY)

    assert gateway.calls == 1
    assert [inv.recipient for inv in result.invoices] == ["Ana Pérez"]
    assert result.errors == ["Bruno Gómez (ARS): Voucher issuance lock was taken over by another request; retry later"]
    # The other host's lease is left alone.
    (row,) = await _lock_rows(session_factory)
    assert row.locked_by == "other-host:2:def"


@pytest.mark.asyncio
async def test_lease_excludes_other_holders_until_released(db_session, session_factory, booking_setup) -> None:
    name = issuance_lock_name(booking_setup.agency_id)

    async with agency_issuance_lock(db_session, booking_setup.agency_id) as lease:
        assert lease.name == name
        async with session_factory() as other:
            assert await IssuanceLease(other, name=name, ttl_seconds=60).try_acquire() is False
        await lease.renew()

    async with session_factory() as other:
        intruder = IssuanceLease(other, name=name, ttl_seconds=60)
        assert await intruder.try_acquire() is True
        await intruder.release()
    assert await _lock_rows(session_factory) == []


@pytest.mark.asyncio
async def test_credit_note_waits_for_the_agency_lease(no_lock_wait, db_session, booking_setup) -> None:
    invoices = await create_invoices(
        db_session, actor=ACTOR, data=_data(booking_setup), gateway=MockAfipGateway(), today=TODAY
    )
    await _foreign_lease(db_session, booking_setup.agency_id, expires_in=timedelta(minutes=5))
    gateway = _SlowGateway()

    with pytest.raises(IssuanceBusyError):
        await create_credit_note(
            db_session,
            actor=ACTOR,
            data=CreditNoteCreate(invoice_id=invoices.invoices[0].id, voucher_type=8),
            gateway=gateway,
            today=TODAY,
        )
    assert gateway.calls == 0
