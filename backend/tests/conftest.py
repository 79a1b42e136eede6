from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from datetime import date
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import backoffice.models  # noqa: E402,F401
from backoffice.core.config import get_settings  # noqa: E402
from backoffice.models.agency import Agency, Client  # noqa: E402
from backoffice.models.base import Base  # noqa: E402
from backoffice.models.booking import Booking, Service  # noqa: E402


@compiles(JSONB, "sqlite")
def _compile_jsonb_for_sqlite(_type, _compiler, **_kw) -> str:
    # Test suite uses SQLite; map PostgreSQL JSONB to JSON for portable DDL.
    return "JSON"


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch) -> AsyncIterator[AsyncEngine]:
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("BASIC_AUTH_USERNAME", "test-user")
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", "test-pass")
    monkeypatch.setenv("AFIP_ENV", "testing")
    monkeypatch.delenv("AFIP_ISSUER_MODE", raising=False)
    get_settings.cache_clear()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def booking_setup(db_session: AsyncSession) -> SimpleNamespace:
    """
    One agency with a booking of three services and two payers.

    - `svc_21`: ARS, 1000 + 210 VAT at 21%.
    - `svc_10`: ARS, 500 + 52.50 VAT at 10.5%.
    - `svc_usd`: USD, 300 non-computable.
    """
    async with db_session.begin():
        agency = Agency(name="Viajes Sur", tax_id="30-71234567-9")
        db_session.add(agency)
        await db_session.flush()

        ana = Client(
            agency_id=agency.id,
            first_name="Ana",
            last_name="Pérez",
            dni_number="30111222",
            tax_id="27301112229",
        )
        bruno = Client(agency_id=agency.id, first_name="Bruno", last_name="Gómez", dni_number="28999888")
        db_session.add_all([ana, bruno])
        await db_session.flush()

        booking = Booking(agency_id=agency.id, agency_booking_id=1, titular_client_id=ana.id)
        db_session.add(booking)
        await db_session.flush()

        svc_21 = Service(
            agency_id=agency.id,
            booking_id=booking.id,
            description="Hotel Bariloche",
            currency="ARS",
            departure_date=date(2026, 3, 1),
            return_date=date(2026, 3, 8),
            sale_price=Decimal("1210.00"),
            taxable_base_21=Decimal("1000.00"),
            tax_21=Decimal("210.00"),
        )
        svc_10 = Service(
            agency_id=agency.id,
            booking_id=booking.id,
            description="Aéreo AEP-BRC",
            currency="ARS",
            departure_date=date(2026, 2, 28),
            return_date=date(2026, 3, 9),
            sale_price=Decimal("552.50"),
            taxable_base_10_5=Decimal("500.00"),
            tax_10_5=Decimal("52.50"),
        )
        svc_usd = Service(
            agency_id=agency.id,
            booking_id=booking.id,
            description="Asistencia al viajero",
            currency="USD",
            departure_date=date(2026, 3, 1),
            return_date=date(2026, 3, 8),
            sale_price=Decimal("300.00"),
            non_computable=Decimal("300.00"),
        )
        db_session.add_all([svc_21, svc_10, svc_usd])
        await db_session.flush()

    return SimpleNamespace(
        agency_id=agency.id,
        booking_id=booking.id,
        ana_id=ana.id,
        bruno_id=bruno.id,
        svc_21_id=svc_21.id,
        svc_10_id=svc_10.id,
        svc_usd_id=svc_usd.id,
    )
