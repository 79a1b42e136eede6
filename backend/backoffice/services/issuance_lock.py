from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import get_settings
from backoffice.services.errors import IssuanceBusyError


logger = logging.getLogger(__name__)

_local_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

_ACQUIRE_OR_RENEW = text(
    "INSERT INTO job_locks (name, locked_at, locked_by, expires_at) "
    "VALUES (:name, :locked_at, :locked_by, :expires_at) "
    "ON CONFLICT (name) DO UPDATE SET "
    "locked_at = excluded.locked_at, "
    "locked_by = excluded.locked_by, "
    "expires_at = excluded.expires_at "
    "WHERE job_locks.expires_at <= :locked_at OR job_locks.locked_by = :locked_by"
).bindparams(
    bindparam("locked_at", type_=DateTime(timezone=True)),
    bindparam("expires_at", type_=DateTime(timezone=True)),
)

_RELEASE = text("DELETE FROM job_locks WHERE name = :name AND locked_by = :locked_by")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def issuance_lock_name(agency_id: uuid.UUID) -> str:
    return f"voucher_issuance:{agency_id}"


def _holder_id() -> str:
    # One holder per acquisition, so two requests in the same worker never share a lease.
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"


def _local_lock(name: str) -> asyncio.Lock:
    lock = _local_locks.get(name)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[name] = lock
    return lock


class IssuanceLease:
    """A `job_locks` row owned by one issuing request."""

    def __init__(self, session: AsyncSession, *, name: str, ttl_seconds: int) -> None:
        self.session = session
        self.name = name
        self.holder = _holder_id()
        self.ttl_seconds = max(30, int(ttl_seconds))

    async def try_acquire(self) -> bool:
        """Take the lease if it is free or expired, or extend it if already ours."""
        now = utcnow()
        async with self.session.begin():
            res = await self.session.execute(
                _ACQUIRE_OR_RENEW,
                {
                    "name": self.name,
                    "locked_at": now,
                    "locked_by": self.holder,
                    "expires_at": now + timedelta(seconds=self.ttl_seconds),
                },
            )
        return bool(res.rowcount == 1)

    async def renew(self) -> None:
        if not await self.try_acquire():
            logger.error("Issuance lease lost", extra={"lock": self.name, "holder": self.holder})
            raise IssuanceBusyError("Voucher issuance lock was taken over by another request; retry later")

    async def release(self) -> None:
        async with self.session.begin():
            await self.session.execute(_RELEASE, {"name": self.name, "locked_by": self.holder})


@asynccontextmanager
async def agency_issuance_lock(session: AsyncSession, agency_id: uuid.UUID) -> AsyncIterator[IssuanceLease]:
    """
    Serialize voucher issuance for one agency.

    AFIP numbers vouchers as "last authorized + 1" per point of sale, and the
    duplicate check only sees what is already stored, so two authorizations in
    flight for the same agency race each other. Requests in this worker queue on
    an asyncio lock; other workers and hosts are kept out by a lease in
    `job_locks`. Waiting for a foreign lease is bounded by
    `ISSUANCE_LOCK_WAIT_SECONDS`, after which `IssuanceBusyError` is raised.

    The session must not be inside a transaction when entering or leaving.
    """
    settings = get_settings()
    name = issuance_lock_name(agency_id)
    async with _local_lock(name):
        lease = IssuanceLease(session, name=name, ttl_seconds=settings.issuance_lock_ttl_seconds)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, settings.issuance_lock_wait_seconds)
        while not await lease.try_acquire():
            if loop.time() >= deadline:
                logger.warning("Voucher issuance lock busy", extra={"lock": name})
                raise IssuanceBusyError("Another voucher issuance is running for this agency; retry later")
            await asyncio.sleep(max(0.05, settings.issuance_lock_poll_seconds))

        logger.info("Voucher issuance lock acquired", extra={"lock": name, "holder": lease.holder})
        try:
            yield lease
        finally:
            await lease.release()
