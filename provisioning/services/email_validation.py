"""Email reachability checking.

One of three interchangeable strategies runs per check, chosen by instance
policy in this order:

1. verifymail.io API (when enabled and keyed)
2. a Truemail instance (when enabled, with instance URL and key)
3. local validation: syntax, MX lookup and a disposable-domain list.
   SMTP probing is never attempted (port 25 is blocked by most providers)
   and typo correction is off (it rejects valid short TLDs).

Every strategy reports a ValidationOutcome whose reason is one of
format / disposable / mx / smtp / network / blacklist, or None.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from email_validator import EmailNotValidError, EmailSyntaxError, validate_email
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.config import settings
from provisioning.models.account import UserProfile
from provisioning.services.errors import TransportFailure
from provisioning.services.policy import InstancePolicy

logger = logging.getLogger(__name__)

# Provider-native reason code -> canonical reason
CANONICAL_REASONS: dict[str, str] = {
    "regex": "format",
    "format": "format",
    "disposable": "disposable",
    "mx": "mx",
    "smtp": "smtp",
    "network": "network",
    "blacklist": "blacklist",
}

DISPOSABLE_DOMAINS = frozenset({
    "10minutemail.com",
    "20minutemail.com",
    "burnermail.io",
    "discard.email",
    "dispostable.com",
    "emailondeck.com",
    "fakeinbox.com",
    "getairmail.com",
    "getnada.com",
    "guerrillamail.com",
    "guerrillamail.net",
    "guerrillamailblock.com",
    "mailcatch.com",
    "maildrop.cc",
    "mailinator.com",
    "mailnesia.com",
    "mintemail.com",
    "mohmal.com",
    "sharklasers.com",
    "spamgourmet.com",
    "temp-mail.org",
    "tempail.com",
    "tempmail.com",
    "tempmailo.com",
    "throwawaymail.com",
    "trashmail.com",
    "yopmail.com",
})


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    reason: str | None = None


VALID = ValidationOutcome(valid=True)


@dataclass(frozen=True)
class EmailAvailability:
    available: bool
    reason: str | None = None


class ReachabilityStrategy(Protocol):
    name: str

    async def check(self, address: str) -> ValidationOutcome: ...


def canonical_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    return CANONICAL_REASONS.get(reason)


def is_disposable_domain(domain: str) -> bool:
    """True if `domain` or any parent domain is a known throwaway provider."""
    labels = domain.lower().rstrip(".").split(".")
    return any(".".join(labels[i:]) in DISPOSABLE_DOMAINS for i in range(len(labels) - 1))


def is_blocked_host(blocked_hosts: tuple[str, ...] | list[str], host: str) -> bool:
    """Match `host` against a block list, including subdomains of listed hosts."""
    host = host.lower()
    for blocked in blocked_hosts:
        blocked = blocked.lower()
        if host == blocked or host.endswith(f".{blocked}"):
            return True
    return False


class VerifymailStrategy:
    """verifymail.io lookup. Transport failures are fatal (TransportFailure)."""

    name = "verifymail"

    def __init__(
        self,
        auth_key: str,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.auth_key = auth_key
        self.api_url = (api_url or settings.verifymail_api_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def check(self, address: str) -> ValidationOutcome:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.get(
                    f"{self.api_url}/{address}",
                    params={"key": self.auth_key},
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json, */*",
                    },
                )
                data = resp.json()
            except httpx.TimeoutException:
                logger.error("verifymail.io timed out checking %s", address)
                raise TransportFailure(self.name)
            except (httpx.HTTPError, ValueError) as e:
                logger.error("verifymail.io request failed: %s", e)
                raise TransportFailure(self.name)

        return self.interpret(data)

    @staticmethod
    def interpret(data: dict) -> ValidationOutcome:
        if not isinstance(data, dict):
            logger.error("verifymail.io returned a non-object body")
            raise TransportFailure(VerifymailStrategy.name)
        # A lone "message" is an API-side error (quota, bad key), not a verdict
        if list(data.keys()) == ["message"]:
            return ValidationOutcome(valid=False, reason=None)
        if data.get("email_address") is None:
            return ValidationOutcome(valid=False, reason="format")
        if "deliverable_email" in data and not data["deliverable_email"]:
            return ValidationOutcome(valid=False, reason="smtp")
        if data.get("disposable"):
            return ValidationOutcome(valid=False, reason="disposable")
        if "mx" in data and not data["mx"]:
            return ValidationOutcome(valid=False, reason="mx")
        return VALID


class TruemailStrategy:
    """Self-hosted Truemail instance. Any failure reads as reason "network"."""

    name = "truemail"

    def __init__(
        self,
        instance_url: str,
        auth_key: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.instance_url = instance_url
        self.auth_key = auth_key
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def check(self, address: str) -> ValidationOutcome:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.instance_url,
                    params={"email": address},
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                        "Authorization": self.auth_key,
                    },
                )
                data = resp.json()
        except Exception as e:
            logger.warning("Truemail check failed for %s: %s", address, e)
            return ValidationOutcome(valid=False, reason="network")

        return self.interpret(data)

    @staticmethod
    def interpret(data: dict) -> ValidationOutcome:
        if not isinstance(data, dict):
            return ValidationOutcome(valid=False, reason="network")
        errors = data.get("errors")
        if not isinstance(errors, dict):
            errors = {}
        # Structured errors win over a missing email echo
        if errors.get("regex"):
            return ValidationOutcome(valid=False, reason="format")
        if errors.get("smtp"):
            return ValidationOutcome(valid=False, reason="smtp")
        if errors.get("mx"):
            return ValidationOutcome(valid=False, reason="mx")
        if data.get("email") is None:
            return ValidationOutcome(valid=False, reason="format")
        if not data.get("success"):
            return ValidationOutcome(valid=False, reason=errors.get("list_match") or "blacklist")
        return VALID


class LocalStrategy:
    """Syntax + MX via email-validator, then the disposable-domain list."""

    name = "local"

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout or settings.http_timeout_seconds

    async def check(self, address: str) -> ValidationOutcome:
        try:
            await asyncio.to_thread(self._validate, address)
        except EmailSyntaxError:
            return ValidationOutcome(valid=False, reason="regex")
        except EmailNotValidError:
            return ValidationOutcome(valid=False, reason="mx")

        domain = address.rsplit("@", 1)[-1]
        if is_disposable_domain(domain):
            return ValidationOutcome(valid=False, reason="disposable")
        return VALID

    def _validate(self, address: str) -> None:
        validate_email(address, check_deliverability=True, timeout=self.timeout)


class EmailReachabilityChecker:
    def __init__(self, strategy: ReachabilityStrategy) -> None:
        self.strategy = strategy

    @classmethod
    def from_policy(cls, policy: InstancePolicy) -> "EmailReachabilityChecker":
        if policy.enable_verifymail_api and policy.verifymail_auth_key:
            return cls(VerifymailStrategy(policy.verifymail_auth_key))
        if policy.enable_truemail_api and policy.truemail_instance and policy.truemail_auth_key:
            return cls(TruemailStrategy(policy.truemail_instance, policy.truemail_auth_key))
        return cls(LocalStrategy())

    async def check(self, address: str) -> ValidationOutcome:
        outcome = await self.strategy.check(address)
        if outcome.valid:
            return VALID
        return ValidationOutcome(valid=False, reason=canonical_reason(outcome.reason))


async def validate_email_for_account(
    db: AsyncSession,
    address: str,
    policy: InstancePolicy,
    checker: EmailReachabilityChecker | None = None,
) -> EmailAvailability:
    """Decide whether `address` may be attached to a new account.

    Reasons: "used" (already verified elsewhere), the checker's reasons,
    or "banned" (domain on the instance block list).
    """
    result = await db.execute(
        select(func.count()).select_from(UserProfile).where(
            UserProfile.email_verified == True,  # noqa: E712
            UserProfile.email == address,
        )
    )
    if result.scalar_one() != 0:
        return EmailAvailability(available=False, reason="used")

    if policy.enable_active_email_validation:
        checker = checker or EmailReachabilityChecker.from_policy(policy)
        outcome = await checker.check(address)
        if not outcome.valid:
            logger.info(
                "Email %s rejected by %s: %s", address, checker.strategy.name, outcome.reason
            )
            return EmailAvailability(available=False, reason=outcome.reason)

    domain = address.rsplit("@", 1)[-1]
    if is_blocked_host(policy.banned_email_domains, domain):
        return EmailAvailability(available=False, reason="banned")

    return EmailAvailability(available=True)
