"""Local account creation."""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.models.account import Account, UsedUsername, UserProfile
from provisioning.services.errors import (
    DUPLICATED_USERNAME,
    INVALID_INPUT,
    POLICY,
    USED_USERNAME,
    AccountCreationError,
)
from provisioning.services.policy import InstancePolicy
from provisioning.utils.crypto import generate_token, hash_password, hash_token

logger = logging.getLogger(__name__)

_USERNAME_PATTERN = re.compile(r"^\w{1,20}$", re.ASCII)


@dataclass
class CreatedAccount:
    account: Account
    secret: str


def is_valid_username(username: str) -> bool:
    return bool(_USERNAME_PATTERN.match(username))


async def local_username_exists(db: AsyncSession, username: str) -> bool:
    result = await db.execute(
        select(func.count()).select_from(Account).where(
            Account.username_lower == username.lower(),
            Account.host.is_(None),
        )
    )
    return result.scalar_one() > 0


async def username_was_used(db: AsyncSession, username: str) -> bool:
    result = await db.execute(
        select(func.count()).select_from(UsedUsername).where(
            UsedUsername.username == username.lower()
        )
    )
    return result.scalar_one() > 0


async def create_account(
    db: AsyncSession,
    policy: InstancePolicy,
    username: str,
    password: str | None = None,
    password_hash: str | None = None,
    host: str | None = None,
) -> CreatedAccount:
    """Create an account and its profile, flushing but not committing.

    Exactly one of `password` (hashed here) or `password_hash` (adopted
    as-is) is used. The returned secret is only ever available here.
    Raises AccountCreationError; the caller owns the transaction and must
    roll back on failure.
    """
    if not isinstance(username, str) or not is_valid_username(username):
        raise AccountCreationError(INVALID_INPUT, f"invalid username {username!r}")

    if password_hash is None:
        if not isinstance(password, str) or password == "":
            raise AccountCreationError(INVALID_INPUT, "empty password")
        password_hash = hash_password(password)

    username_lower = username.lower()

    if host is None:
        if await local_username_exists(db, username):
            raise AccountCreationError(DUPLICATED_USERNAME, f"username {username_lower} taken")
        if await username_was_used(db, username):
            raise AccountCreationError(USED_USERNAME, f"username {username_lower} was used before")
    else:
        result = await db.execute(
            select(func.count()).select_from(Account).where(
                Account.username_lower == username_lower,
                Account.host == host,
            )
        )
        if result.scalar_one() > 0:
            raise AccountCreationError(DUPLICATED_USERNAME, f"{username_lower}@{host} taken")

    result = await db.execute(
        select(func.count()).select_from(Account).where(Account.host.is_(None))
    )
    is_first_user = result.scalar_one() == 0

    # The very first local account may take a preserved name and becomes root
    if host is None and not is_first_user and policy.is_preserved(username):
        raise AccountCreationError(POLICY, f"username {username_lower} is preserved")

    secret = generate_token()
    account = Account(
        username=username,
        username_lower=username_lower,
        host=host,
        password_hash=password_hash,
        token_hash=hash_token(secret),
        is_root=host is None and is_first_user,
    )
    db.add(account)
    try:
        await db.flush()
        db.add(UserProfile(account_id=account.account_id))
        if host is None:
            db.add(UsedUsername(username=username_lower))
        await db.flush()
    except IntegrityError as e:
        raise AccountCreationError(DUPLICATED_USERNAME, str(e.orig))

    logger.info("Account %s created for @%s", account.account_id, username)
    return CreatedAccount(account=account, secret=secret)
