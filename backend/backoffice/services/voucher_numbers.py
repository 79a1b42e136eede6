from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import UniqueConstraint, and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession


def format_voucher_number(number: int) -> str:
    return f"{int(number):08d}"


def canonical_display_number(point_of_sale: int, voucher_type: int, number: int) -> str:
    return f"{int(point_of_sale):05d}-{int(voucher_type):03d}-{int(number):08d}"


def legacy_display_number(point_of_sale: int, number: int) -> str:
    return f"{int(point_of_sale):04d}-{int(number):08d}"


def number_spellings(point_of_sale: int, voucher_type: int, number: int) -> list[str]:
    """Every spelling under which the same voucher may have been stored over time."""
    out: list[str] = []
    for s in (
        str(int(number)),
        format_voucher_number(number),
        legacy_display_number(point_of_sale, number),
        canonical_display_number(point_of_sale, voucher_type, number),
    ):
        if s not in out:
            out.append(s)
    return out


@dataclass(frozen=True, slots=True)
class VoucherNumbering:
    point_of_sale: int
    voucher_type: int
    number: int

    @property
    def voucher_number(self) -> str:
        return format_voucher_number(self.number)

    @property
    def display_number(self) -> str:
        return canonical_display_number(self.point_of_sale, self.voucher_type, self.number)

    @property
    def legacy_number(self) -> str:
        return legacy_display_number(self.point_of_sale, self.number)

    @classmethod
    def from_details(cls, details: dict[str, Any]) -> "VoucherNumbering":
        try:
            return cls(
                point_of_sale=int(details["PtoVta"]),
                voucher_type=int(details["CbteTipo"]),
                number=int(details["CbteDesde"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError("Authorization response has no voucher number") from e


async def find_duplicate_voucher(
    session: AsyncSession,
    model: type[Any],
    *,
    agency_id: uuid.UUID,
    point_of_sale: int,
    voucher_type: int,
    number: int,
) -> Any | None:
    spellings = number_spellings(point_of_sale, voucher_type, number)
    return (
        await session.execute(
            select(model)
            .where(
                and_(
                    model.agency_id == agency_id,
                    model.point_of_sale == point_of_sale,
                    model.voucher_type == voucher_type,
                    or_(model.voucher_number.in_(spellings), model.display_number.in_(spellings)),
                )
            )
            .limit(1)
        )
    ).scalar_one_or_none()


def voucher_number_constraint(model: type[Any]) -> UniqueConstraint:
    for constraint in model.__table__.constraints:
        if isinstance(constraint, UniqueConstraint) and "voucher_number" in constraint.columns:
            return constraint
    raise LookupError(f"{model.__tablename__} has no voucher number constraint")


def is_voucher_number_conflict(exc: IntegrityError, model: type[Any]) -> bool:
    """
    Whether `exc` is a violation of the (agency, point of sale, type, number) constraint.

    asyncpg reports the violated constraint by name; SQLite only lists the columns.
    """
    constraint = voucher_number_constraint(model)
    name = getattr(exc.orig.__cause__, "constraint_name", None) if exc.orig is not None else None
    if name:
        return name == constraint.name
    message = str(exc.orig)
    if constraint.name and constraint.name in message:
        return True
    return all(f"{model.__tablename__}.{column.name}" in message for column in constraint.columns)
