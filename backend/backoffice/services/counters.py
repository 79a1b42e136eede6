from __future__ import annotations

import uuid

from sqlalchemy import bindparam, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.enums import AgencyCounterKey
from backoffice.models.agency_counter import AgencyCounter


# Concurrent first uses both land here; the loser waits on the primary key and skips.
_ENSURE_COUNTER_ROW = text(
    "INSERT INTO agency_counters (agency_id, \"key\", next_value) "
    "VALUES (:agency_id, :key, 1) "
    "ON CONFLICT (agency_id, \"key\") DO NOTHING"
).bindparams(
    bindparam("agency_id", type_=AgencyCounter.__table__.c.agency_id.type),
    bindparam("key", type_=AgencyCounter.__table__.c.key.type),
)


async def next_agency_counter(session: AsyncSession, *, agency_id: uuid.UUID, key: AgencyCounterKey) -> int:
    """Hand out the next per-agency sequence value; the row stays locked until the caller commits."""
    await session.execute(_ENSURE_COUNTER_ROW, {"agency_id": agency_id, "key": key})
    counter = (
        await session.execute(
            select(AgencyCounter)
            .where(AgencyCounter.agency_id == agency_id, AgencyCounter.key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    value = counter.next_value
    counter.next_value = value + 1
    await session.flush()
    return value
