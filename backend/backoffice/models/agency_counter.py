from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.enums import AgencyCounterKey
from backoffice.models.base import Base
from backoffice.models.sql_enums import agency_counter_key_enum


class AgencyCounter(Base):
    __tablename__ = "agency_counters"
    __table_args__ = (PrimaryKeyConstraint("agency_id", "key", name="pk_agency_counters"),)

    agency_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False)
    key: Mapped[AgencyCounterKey] = mapped_column(agency_counter_key_enum, nullable=False)
    next_value: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
