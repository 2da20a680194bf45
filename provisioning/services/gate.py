"""Signup preconditions: bot challenge, email, invitation ticket, username.

Checks run in that order and stop at the first failure. Apart from the
outbound verification calls this is read-only; the store's constraints and
conditional updates in services.signup remain the final arbiter under
concurrency.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.config import settings
from provisioning.models.registration import RegistrationTicket
from provisioning.schemas.signup import SignupRequest
from provisioning.services import captcha
from provisioning.services.accounts import local_username_exists, username_was_used
from provisioning.services.email_validation import (
    EmailReachabilityChecker,
    validate_email_for_account,
)
from provisioning.services.errors import (
    DENIED_USERNAME,
    DUPLICATED_USERNAME,
    INVALID_EMAIL,
    INVALID_TICKET,
    INVITATION_CODE_REQUIRED,
    USED_USERNAME,
    EmailUnavailable,
    InvalidCaptcha,
    PolicyViolation,
)
from provisioning.services.pending import pending_ttl
from provisioning.services.policy import InstancePolicy
from provisioning.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    ticket: RegistrationTicket | None = None
    email_address: str | None = None


async def verify_bot_challenges(data: SignupRequest, policy: InstancePolicy) -> None:
    """Verify the request against every enabled provider. Skipped in test mode."""
    if settings.is_test:
        return

    try:
        if policy.enable_hcaptcha and policy.hcaptcha_secret_key:
            await captcha.verify_hcaptcha(policy.hcaptcha_secret_key, data.hcaptcha_response)

        if (
            policy.enable_mcaptcha
            and policy.mcaptcha_secret_key
            and policy.mcaptcha_sitekey
            and policy.mcaptcha_instance_url
        ):
            await captcha.verify_mcaptcha(
                policy.mcaptcha_secret_key,
                policy.mcaptcha_sitekey,
                policy.mcaptcha_instance_url,
                data.m_captcha_response,
            )

        if policy.enable_recaptcha and policy.recaptcha_secret_key:
            await captcha.verify_recaptcha(policy.recaptcha_secret_key, data.g_recaptcha_response)

        if policy.enable_turnstile and policy.turnstile_secret_key:
            await captcha.verify_turnstile(policy.turnstile_secret_key, data.turnstile_response)
    except captcha.CaptchaError as e:
        logger.info("Signup for @%s failed bot challenge: %s", data.username, e)
        raise InvalidCaptcha(str(e))


def check_ticket(
    ticket: RegistrationTicket | None,
    policy: InstancePolicy,
    now: datetime | None = None,
) -> RegistrationTicket:
    """Raise PolicyViolation(INVALID_TICKET) unless `ticket` may be claimed now."""
    now = now or utcnow()

    if ticket is None or ticket.used_by_id is not None:
        raise PolicyViolation(INVALID_TICKET)

    if ticket.expires_at is not None and ensure_utc(ticket.expires_at) < now:
        raise PolicyViolation(INVALID_TICKET)

    if ticket.used_at is not None:
        if not policy.email_required_for_signup:
            raise PolicyViolation(INVALID_TICKET)
        # Claimed by a pending registration whose confirmation may still arrive
        if ensure_utc(ticket.used_at) + pending_ttl() > now:
            raise PolicyViolation(INVALID_TICKET)

    return ticket


async def check_username(db: AsyncSession, username: str, policy: InstancePolicy) -> None:
    if await local_username_exists(db, username):
        raise PolicyViolation(DUPLICATED_USERNAME)
    if await username_was_used(db, username):
        raise PolicyViolation(USED_USERNAME)
    if policy.is_preserved(username):
        raise PolicyViolation(DENIED_USERNAME)


async def admit(
    db: AsyncSession,
    data: SignupRequest,
    policy: InstancePolicy,
    checker: EmailReachabilityChecker | None = None,
    now: datetime | None = None,
) -> AdmissionResult:
    """Run every signup precondition; raise PolicyViolation on the first failure."""
    await verify_bot_challenges(data, policy)

    admission = AdmissionResult()

    if policy.email_required_for_signup:
        if not isinstance(data.email_address, str) or not data.email_address:
            raise PolicyViolation(INVALID_EMAIL)
        availability = await validate_email_for_account(
            db, data.email_address, policy, checker=checker
        )
        if not availability.available:
            raise EmailUnavailable(availability.reason)
        admission.email_address = data.email_address

    if policy.disable_registration:
        if not isinstance(data.invitation_code, str) or not data.invitation_code:
            raise PolicyViolation(INVITATION_CODE_REQUIRED)
        result = await db.execute(
            select(RegistrationTicket).where(RegistrationTicket.code == data.invitation_code)
        )
        admission.ticket = check_ticket(result.scalar_one_or_none(), policy, now)

    if policy.email_required_for_signup:
        await check_username(db, data.username, policy)

    return admission
