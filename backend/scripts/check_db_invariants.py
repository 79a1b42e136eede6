from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

# Script entrypoint: ensure `backend/` is importable.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from backoffice.core.enums import AgencyCounterKey, VoucherStatus  # noqa: E402


EXPECTED_ENUMS: dict[str, list[str]] = {
    "agency_counter_key": [e.value for e in AgencyCounterKey],
    "voucher_status": [e.value for e in VoucherStatus],
}

# (table, sequence column, counter key)
VOUCHER_TABLES: tuple[tuple[str, str, AgencyCounterKey], ...] = (
    ("invoices", "agency_invoice_id", AgencyCounterKey.INVOICE),
    ("credit_notes", "agency_credit_note_id", AgencyCounterKey.CREDIT_NOTE),
)


async def _check_enums(conn: AsyncConnection) -> list[str]:
    problems: list[str] = []
    for type_name, expected in EXPECTED_ENUMS.items():
        rows = (
            await conn.execute(
                text(
                    """
                    SELECT e.enumlabel
                    FROM pg_enum e
                    JOIN pg_type t ON t.oid = e.enumtypid
                    JOIN pg_namespace n ON n.oid = t.typnamespace
                    WHERE n.nspname = 'public' AND t.typname = :type_name
                    ORDER BY e.enumsortorder
                    """
                ),
                {"type_name": type_name},
            )
        ).all()
        actual = [r[0] for r in rows]
        missing = [v for v in expected if v not in actual]
        if missing:
            problems.append(f"Enum type '{type_name}' is missing values: {missing} (actual: {actual})")
    return problems


async def _check_vouchers(conn: AsyncConnection) -> list[str]:
    problems: list[str] = []
    for table, sequence_col, key in VOUCHER_TABLES:
        duplicates = (
            await conn.execute(
                text(
                    f"""
                    SELECT agency_id, point_of_sale, voucher_type, voucher_number, count(*)
                    FROM {table}
                    GROUP BY agency_id, point_of_sale, voucher_type, voucher_number
                    HAVING count(*) > 1
                    """
                )
            )
        ).all()
        for agency_id, pos, vtype, number, count in duplicates:
            problems.append(
                f"{table}: voucher {pos}/{vtype}/{number} stored {count} times for agency {agency_id}"
            )

        lagging = (
            await conn.execute(
                text(
                    f"""
                    SELECT v.agency_id, max(v.{sequence_col}) AS issued, c.next_value
                    FROM {table} v
                    LEFT JOIN agency_counters c ON c.agency_id = v.agency_id AND c.key = CAST(:key AS agency_counter_key)
                    GROUP BY v.agency_id, c.next_value
                    HAVING c.next_value IS NULL OR c.next_value <= max(v.{sequence_col})
                    """
                ),
                {"key": key.value},
            )
        ).all()
        for agency_id, issued, next_value in lagging:
            problems.append(
                f"{table}: agency {agency_id} counter {key.value} is at {next_value} but sequence {issued} was issued"
            )
    return problems


async def _main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is required.", file=sys.stderr)
        return 2

    engine = create_async_engine(url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            problems = await _check_enums(conn)
            problems += await _check_vouchers(conn)
    finally:
        await engine.dispose()

    if problems:
        for p in problems:
            print(p, file=sys.stderr)
        return 1

    print("DB invariants ok (enums, unique vouchers, agency counters).")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
