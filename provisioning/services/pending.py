"""Pending registration store.

A pending registration is valid for `pending_registration_ttl_minutes`
after its created_at. Expiry is evaluated lazily at lookup time; expired
rows stay in the table until an operator runs purge_expired.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.config import settings
from provisioning.models.registration import PendingRegistration, RegistrationTicket
from provisioning.services.errors import Expired, NotFound
from provisioning.utils.clock import ensure_utc, utcnow
from provisioning.utils.crypto import generate_confirmation_code

logger = logging.getLogger(__name__)


def pending_ttl() -> timedelta:
    return timedelta(minutes=settings.pending_registration_ttl_minutes)


def is_expired(pending: PendingRegistration, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return now >= ensure_utc(pending.created_at) + pending_ttl()


async def create_pending(
    db: AsyncSession, username: str, password_hash: str, email: str
) -> PendingRegistration:
    """Insert a pending registration with a fresh confirmation code. Flushes only."""
    pending = PendingRegistration(
        code=generate_confirmation_code(),
        username=username,
        password_hash=password_hash,
        email=email,
        created_at=utcnow(),
    )
    db.add(pending)
    await db.flush()
    return pending


async def consume_pending(
    db: AsyncSession, code: str, now: datetime | None = None
) -> PendingRegistration:
    """Look up and lock the pending registration for `code`.

    Raises NotFound if there is none and Expired if its window has passed.
    The row is not deleted here; see delete_pending.
    """
    result = await db.execute(
        select(PendingRegistration)
        .where(PendingRegistration.code == code)
        .with_for_update()
    )
    pending = result.scalar_one_or_none()
    if pending is None:
        raise NotFound()
    if is_expired(pending, now):
        raise Expired()
    return pending


async def delete_pending(db: AsyncSession, pending: PendingRegistration) -> None:
    """Delete `pending`; NotFound if a concurrent redemption already removed it."""
    result = await db.execute(
        delete(PendingRegistration)
        .where(PendingRegistration.pending_registration_id == pending.pending_registration_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound()


async def purge_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete expired pending registrations and release tickets claimed by them.

    Commits. Returns the number of pending registrations removed.
    """
    cutoff = (now or utcnow()) - pending_ttl()
    result = await db.execute(
        select(PendingRegistration.pending_registration_id).where(
            PendingRegistration.created_at <= cutoff
        )
    )
    expired_ids = list(result.scalars().all())
    if not expired_ids:
        return 0

    await db.execute(
        update(RegistrationTicket)
        .where(
            RegistrationTicket.pending_registration_id.in_(expired_ids),
            RegistrationTicket.used_by_id.is_(None),
        )
        .values(pending_registration_id=None, used_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(PendingRegistration)
        .where(PendingRegistration.pending_registration_id.in_(expired_ids))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Purged %d expired pending registrations", len(expired_ids))
    return len(expired_ids)
