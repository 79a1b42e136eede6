from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from functools import singledispatch
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.models.audit_log import AuditLog


@singledispatch
def to_json_value(value: Any) -> Any:
    """Reduce a snapshot value to something the JSON column accepts."""
    return str(value)


@to_json_value.register(type(None))
@to_json_value.register(bool)
@to_json_value.register(int)
@to_json_value.register(float)
@to_json_value.register(str)
def _(value: Any) -> Any:
    return value


@to_json_value.register(Enum)
def _(value: Enum) -> Any:
    return value.value


# Amounts keep their exact cents.
@to_json_value.register(Decimal)
@to_json_value.register(uuid.UUID)
def _(value: Decimal | uuid.UUID) -> str:
    return str(value)


@to_json_value.register(date)
def _(value: date) -> str:
    return value.isoformat()


@to_json_value.register(Mapping)
def _(value: Mapping) -> dict[str, Any]:
    return {str(k): to_json_value(v) for k, v in value.items()}


@to_json_value.register(list)
@to_json_value.register(tuple)
@to_json_value.register(set)
def _(value: list | tuple | set) -> list[Any]:
    return [to_json_value(v) for v in value]


async def audit_log(
    session: AsyncSession,
    *,
    actor: str,
    agency_id: uuid.UUID | None,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    after: Mapping[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit entry in the caller's transaction."""
    entry = AuditLog(
        agency_id=agency_id,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        after=None if after is None else to_json_value(after),
    )
    session.add(entry)
    return entry
