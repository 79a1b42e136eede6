from __future__ import annotations

from sqlalchemy import Enum

from backoffice.core.enums import AgencyCounterKey, VoucherStatus

agency_counter_key_enum = Enum(AgencyCounterKey, name="agency_counter_key")
voucher_status_enum = Enum(VoucherStatus, name="voucher_status")
