"""Signup orchestration.

signup():
    admit -> (email not required) create account + consume ticket, one commit
          -> (email required) pending registration + provisional ticket claim,
             commit, then email the confirmation link

complete_pending():
    consume code -> create account with the stored hash -> delete pending
    -> verify profile email -> finalize ticket -> establish session, one commit

Ticket transitions are conditional UPDATEs checked by row count, so two
requests racing on one ticket cannot both win even after both pass the gate.
"""

import logging
import uuid

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.config import settings
from provisioning.models.account import Account, UserProfile
from provisioning.models.registration import PendingRegistration, RegistrationTicket
from provisioning.schemas.signup import AccountResponse, SigninResponse, SignupRequest
from provisioning.services import email as email_service
from provisioning.services import gate
from provisioning.services.accounts import create_account, is_valid_username
from provisioning.services.email_validation import EmailReachabilityChecker
from provisioning.services.errors import (
    DUPLICATED_USERNAME,
    INVALID_INPUT,
    INVALID_TICKET,
    SIGNUP_FAILED,
    AccountCreationError,
    PolicyViolation,
    SignupError,
)
from provisioning.services.pending import (
    consume_pending,
    create_pending,
    delete_pending,
    pending_ttl,
)
from provisioning.services.policy import InstancePolicy
from provisioning.services.signin import establish_session
from provisioning.utils.clock import utcnow
from provisioning.utils.crypto import hash_password

logger = logging.getLogger(__name__)

PENDING_CODE_ATTEMPTS = 2


async def _consume_ticket(
    db: AsyncSession, ticket: RegistrationTicket, account: Account
) -> None:
    """unused -> consumed, in the caller's transaction."""
    result = await db.execute(
        update(RegistrationTicket)
        .where(
            RegistrationTicket.ticket_id == ticket.ticket_id,
            RegistrationTicket.used_at.is_(None),
            RegistrationTicket.used_by_id.is_(None),
        )
        .values(used_at=utcnow(), used_by_id=account.account_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PolicyViolation(INVALID_TICKET)


async def _claim_ticket(
    db: AsyncSession, ticket_id: uuid.UUID, pending: PendingRegistration
) -> None:
    """unused (or stale claim) -> provisionally claimed, in the caller's transaction."""
    now = utcnow()
    result = await db.execute(
        update(RegistrationTicket)
        .where(
            RegistrationTicket.ticket_id == ticket_id,
            RegistrationTicket.used_by_id.is_(None),
            or_(
                RegistrationTicket.used_at.is_(None),
                RegistrationTicket.used_at <= now - pending_ttl(),
            ),
        )
        .values(used_at=now, pending_registration_id=pending.pending_registration_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PolicyViolation(INVALID_TICKET)


async def _create_directly(
    db: AsyncSession,
    data: SignupRequest,
    policy: InstancePolicy,
    ticket: RegistrationTicket | None,
) -> AccountResponse:
    host = data.host if settings.is_test else None
    try:
        created = await create_account(
            db, policy, data.username, password=data.password, host=host
        )
        if ticket is not None:
            await _consume_ticket(db, ticket, created.account)
        await db.commit()
    except AccountCreationError as e:
        await db.rollback()
        logger.warning("Account creation for @%s rejected: %s", data.username, e.message)
        raise
    except PolicyViolation:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Account creation for @%s hit a constraint: %s", data.username, e.orig)
        raise AccountCreationError(DUPLICATED_USERNAME, str(e.orig))

    account = created.account
    logger.info("Signup complete for @%s (%s)", account.username, account.account_id)
    return AccountResponse(
        id=account.account_id,
        username=account.username,
        host=account.host,
        is_root=account.is_root,
        created_at=account.created_at,
        token=created.secret,
    )


async def _start_pending(
    db: AsyncSession,
    data: SignupRequest,
    email_address: str,
    ticket: RegistrationTicket | None,
) -> PendingRegistration:
    if not is_valid_username(data.username):
        raise AccountCreationError(INVALID_INPUT, f"invalid username {data.username!r}")
    if not data.password:
        raise AccountCreationError(INVALID_INPUT, "empty password")

    password_hash = hash_password(data.password)
    ticket_id = ticket.ticket_id if ticket is not None else None

    # A rejected insert can only be a confirmation code clash; draw a new code
    for attempt in range(1, PENDING_CODE_ATTEMPTS + 1):
        try:
            pending = await create_pending(db, data.username, password_hash, email_address)
            if ticket_id is not None:
                await _claim_ticket(db, ticket_id, pending)
            await db.commit()
            break
        except PolicyViolation:
            await db.rollback()
            raise
        except IntegrityError as e:
            await db.rollback()
            logger.warning(
                "Pending signup for @%s hit a constraint (attempt %d): %s",
                data.username, attempt, e.orig,
            )
    else:
        raise SignupError(SIGNUP_FAILED)

    # The pending state is committed; a mail failure must not undo it
    try:
        await email_service.send_signup_confirmation(email_address, pending.code)
    except Exception:
        logger.exception("Failed to send signup confirmation to %s", email_address)

    logger.info("Pending registration %s created for @%s", pending.pending_registration_id, data.username)
    return pending


async def signup(
    db: AsyncSession,
    data: SignupRequest,
    policy: InstancePolicy,
    checker: EmailReachabilityChecker | None = None,
) -> AccountResponse | None:
    """Create an account, or start email confirmation and return None."""
    admission = await gate.admit(db, data, policy, checker=checker)

    if policy.email_required_for_signup:
        await _start_pending(db, data, admission.email_address, admission.ticket)
        return None

    return await _create_directly(db, data, policy, admission.ticket)


async def complete_pending(
    db: AsyncSession,
    code: str,
    policy: InstancePolicy,
    ip: str | None = None,
) -> SigninResponse:
    """Redeem a confirmation code into a live, signed-in account."""
    try:
        pending = await consume_pending(db, code)

        result = await db.execute(
            select(RegistrationTicket).where(
                RegistrationTicket.pending_registration_id == pending.pending_registration_id
            )
        )
        ticket = result.scalar_one_or_none()

        created = await create_account(
            db, policy, pending.username, password_hash=pending.password_hash
        )
        account = created.account

        await delete_pending(db, pending)

        profile = await db.get(UserProfile, account.account_id)
        profile.email = pending.email
        profile.email_verified = True
        profile.email_verify_code = None

        if ticket is not None:
            await db.execute(
                update(RegistrationTicket)
                .where(RegistrationTicket.ticket_id == ticket.ticket_id)
                .values(used_by_id=account.account_id, pending_registration_id=None)
                .execution_options(synchronize_session=False)
            )

        session = await establish_session(db, account, ip=ip)
        await db.commit()
    except AccountCreationError as e:
        await db.rollback()
        logger.warning("Completing signup for code %s rejected: %s", code, e.message)
        raise
    except SignupError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Completing signup for code %s hit a constraint: %s", code, e.orig)
        raise AccountCreationError(DUPLICATED_USERNAME, str(e.orig))
    except Exception:
        await db.rollback()
        logger.exception("Completing signup for code %s failed", code)
        raise SignupError(SIGNUP_FAILED)

    logger.info("Pending signup for @%s confirmed as %s", account.username, account.account_id)
    return session
