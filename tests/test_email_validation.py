"""Tests for email reachability strategies and account email availability."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from email_validator import EmailNotValidError, EmailSyntaxError
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.models.account import UserProfile
from provisioning.services.accounts import create_account
from provisioning.services.email_validation import (
    VALID,
    EmailReachabilityChecker,
    LocalStrategy,
    TruemailStrategy,
    ValidationOutcome,
    VerifymailStrategy,
    canonical_reason,
    is_blocked_host,
    is_disposable_domain,
    validate_email_for_account,
)
from provisioning.services.errors import TransportFailure
from tests.conftest import make_policy


# ---------------------------------------------------------------------------
# verifymail.io
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"message": "quota exceeded"}, ValidationOutcome(False, None)),
        ({"deliverable_email": True}, ValidationOutcome(False, "format")),
        ({"email_address": "a@b.example", "deliverable_email": False}, ValidationOutcome(False, "smtp")),
        ({"email_address": "a@b.example", "disposable": True}, ValidationOutcome(False, "disposable")),
        ({"email_address": "a@b.example", "mx": False}, ValidationOutcome(False, "mx")),
        (
            {"email_address": "a@b.example", "deliverable_email": True, "disposable": False, "mx": True},
            VALID,
        ),
    ],
)
def test_verifymail_interpret(data: dict, expected: ValidationOutcome) -> None:
    assert VerifymailStrategy.interpret(data) == expected


@pytest.mark.asyncio
async def test_verifymail_sends_key_and_address() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"email_address": "a@b.example", "deliverable_email": True})

    strategy = VerifymailStrategy(
        "k3y", api_url="https://verify.test/api/", transport=httpx.MockTransport(handler)
    )
    assert await strategy.check("a@b.example") == VALID
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/a@b.example"
    assert seen[0].url.params["key"] == "k3y"


@pytest.mark.asyncio
async def test_verifymail_timeout_is_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    strategy = VerifymailStrategy("k", api_url="https://verify.test/api", transport=httpx.MockTransport(handler))
    with pytest.raises(TransportFailure) as exc_info:
        await strategy.check("a@b.example")
    assert exc_info.value.status_code == 502
    assert exc_info.value.service == "verifymail"


@pytest.mark.asyncio
async def test_verifymail_non_json_is_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    strategy = VerifymailStrategy("k", api_url="https://verify.test/api", transport=httpx.MockTransport(handler))
    with pytest.raises(TransportFailure):
        await strategy.check("a@b.example")


# ---------------------------------------------------------------------------
# Truemail
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"errors": {"mx": "x"}}, ValidationOutcome(False, "mx")),
        ({"email": "a@b.example", "errors": {"regex": "bad"}}, ValidationOutcome(False, "format")),
        ({"email": "a@b.example", "errors": {"smtp": "refused"}}, ValidationOutcome(False, "smtp")),
        ({"success": True}, ValidationOutcome(False, "format")),
        ({"email": "a@b.example", "success": False}, ValidationOutcome(False, "blacklist")),
        (
            {"email": "a@b.example", "success": False, "errors": {"list_match": "blacklist"}},
            ValidationOutcome(False, "blacklist"),
        ),
        ({"email": "a@b.example", "success": True}, VALID),
    ],
)
def test_truemail_interpret(data: dict, expected: ValidationOutcome) -> None:
    assert TruemailStrategy.interpret(data) == expected


@pytest.mark.asyncio
async def test_truemail_sends_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"email": "a@b.example", "success": True})

    strategy = TruemailStrategy("https://truemail.test/", "secret", transport=httpx.MockTransport(handler))
    assert await strategy.check("a@b.example") == VALID
    assert seen[0].method == "POST"
    assert seen[0].headers["authorization"] == "secret"
    assert seen[0].url.params["email"] == "a@b.example"


@pytest.mark.asyncio
async def test_truemail_failure_is_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    strategy = TruemailStrategy("https://truemail.test/", "secret", transport=httpx.MockTransport(handler))
    assert await strategy.check("a@b.example") == ValidationOutcome(False, "network")


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_local_syntax_error_is_format() -> None:
    checker = EmailReachabilityChecker(LocalStrategy())
    with patch(
        "provisioning.services.email_validation.validate_email",
        side_effect=EmailSyntaxError("no @"),
    ):
        assert await checker.check("nope") == ValidationOutcome(False, "format")


@pytest.mark.asyncio
async def test_local_undeliverable_is_mx() -> None:
    with patch(
        "provisioning.services.email_validation.validate_email",
        side_effect=EmailNotValidError("no MX"),
    ):
        outcome = await LocalStrategy().check("a@nowhere.invalid")
    assert outcome == ValidationOutcome(False, "mx")


@pytest.mark.asyncio
async def test_local_disposable_domain() -> None:
    with patch("provisioning.services.email_validation.validate_email") as mock_validate:
        outcome = await LocalStrategy().check("someone@mail.mailinator.com")
    mock_validate.assert_called_once()
    assert mock_validate.call_args.kwargs["check_deliverability"] is True
    assert outcome == ValidationOutcome(False, "disposable")


@pytest.mark.asyncio
async def test_local_valid() -> None:
    with patch("provisioning.services.email_validation.validate_email"):
        assert await LocalStrategy().check("someone@example.com") == VALID


# ---------------------------------------------------------------------------
# Strategy selection and helpers
# ---------------------------------------------------------------------------

def test_strategy_precedence() -> None:
    both = make_policy(
        enable_verifymail_api=True, verifymail_auth_key="k",
        enable_truemail_api=True, truemail_instance="https://t.test", truemail_auth_key="t",
    )
    assert EmailReachabilityChecker.from_policy(both).strategy.name == "verifymail"

    unkeyed = make_policy(
        enable_verifymail_api=True, verifymail_auth_key=None,
        enable_truemail_api=True, truemail_instance="https://t.test", truemail_auth_key="t",
    )
    assert EmailReachabilityChecker.from_policy(unkeyed).strategy.name == "truemail"

    assert EmailReachabilityChecker.from_policy(make_policy()).strategy.name == "local"


def test_canonical_reason() -> None:
    assert canonical_reason("regex") == "format"
    assert canonical_reason("blacklist") == "blacklist"
    assert canonical_reason("whitelist") is None
    assert canonical_reason(None) is None


def test_disposable_and_blocked_hosts() -> None:
    assert is_disposable_domain("yopmail.com")
    assert is_disposable_domain("eu.YOPMAIL.com")
    assert not is_disposable_domain("example.com")
    assert is_blocked_host(("spam.example",), "spam.example")
    assert is_blocked_host(("spam.example",), "mx.spam.example")
    assert not is_blocked_host(("spam.example",), "notspam.example")


# ---------------------------------------------------------------------------
# validate_email_for_account
# ---------------------------------------------------------------------------

async def _verified_profile(db: AsyncSession, username: str, email: str) -> None:
    created = await create_account(db, make_policy(), username, password="pw")
    profile = await db.get(UserProfile, created.account.account_id)
    profile.email = email
    profile.email_verified = True
    await db.commit()


@pytest.mark.asyncio
async def test_used_address(db_session: AsyncSession) -> None:
    await _verified_profile(db_session, "bob", "bob@example.com")
    result = await validate_email_for_account(db_session, "bob@example.com", make_policy())
    assert result.available is False
    assert result.reason == "used"


@pytest.mark.asyncio
async def test_unverified_address_is_not_used(db_session: AsyncSession) -> None:
    created = await create_account(db_session, make_policy(), "carol", password="pw")
    profile = await db_session.get(UserProfile, created.account.account_id)
    profile.email = "carol@example.com"
    await db_session.commit()

    result = await validate_email_for_account(db_session, "carol@example.com", make_policy())
    assert result.available is True


@pytest.mark.asyncio
async def test_banned_domain(db_session: AsyncSession) -> None:
    policy = make_policy(banned_email_domains=("spam.example",))
    result = await validate_email_for_account(db_session, "x@mail.spam.example", policy)
    assert (result.available, result.reason) == (False, "banned")


@pytest.mark.asyncio
async def test_checker_rejection_reason(db_session: AsyncSession) -> None:
    strategy = AsyncMock()
    strategy.name = "fake"
    strategy.check.return_value = ValidationOutcome(False, "regex")
    policy = make_policy(enable_active_email_validation=True)

    result = await validate_email_for_account(
        db_session, "x@example.com", policy, checker=EmailReachabilityChecker(strategy)
    )
    assert (result.available, result.reason) == (False, "format")


@pytest.mark.asyncio
async def test_quota_message_is_unavailable_without_reason(db_session: AsyncSession) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "Rate limit reached"})

    checker = EmailReachabilityChecker(
        VerifymailStrategy("k", api_url="https://verify.test/api", transport=httpx.MockTransport(handler))
    )
    policy = make_policy(enable_active_email_validation=True)
    result = await validate_email_for_account(db_session, "x@example.com", policy, checker=checker)
    assert (result.available, result.reason) == (False, None)


@pytest.mark.asyncio
async def test_active_validation_off_skips_checker(db_session: AsyncSession) -> None:
    strategy = AsyncMock()
    strategy.name = "fake"
    result = await validate_email_for_account(
        db_session, "x@example.com", make_policy(enable_active_email_validation=False),
        checker=EmailReachabilityChecker(strategy),
    )
    assert result.available is True
    strategy.check.assert_not_called()


# ---------------------------------------------------------------------------
# Malformed provider replies
# ---------------------------------------------------------------------------

def test_verifymail_non_object_reply() -> None:
    with pytest.raises(TransportFailure):
        VerifymailStrategy.interpret([])  # type: ignore[arg-type]


def test_truemail_non_object_reply() -> None:
    assert TruemailStrategy.interpret(["ok"]) == ValidationOutcome(False, "network")  # type: ignore[arg-type]
    assert TruemailStrategy.interpret(
        {"email": "a@b.example", "success": True, "errors": ["mx"]}
    ) == VALID


@pytest.mark.asyncio
async def test_truemail_list_body_is_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2, 3])

    strategy = TruemailStrategy("https://truemail.test/", "secret", transport=httpx.MockTransport(handler))
    assert await strategy.check("a@b.example") == ValidationOutcome(False, "network")
