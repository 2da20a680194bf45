"""Session establishment for freshly confirmed accounts."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from provisioning.models.account import Account, SigninSession
from provisioning.schemas.signup import SigninResponse
from provisioning.utils.crypto import generate_token, hash_token

logger = logging.getLogger(__name__)


async def establish_session(
    db: AsyncSession, account: Account, ip: str | None = None
) -> SigninResponse:
    """Issue a session token for `account`. Flushes; the caller commits."""
    token = generate_token()
    db.add(SigninSession(account_id=account.account_id, token_hash=hash_token(token), ip=ip))
    await db.flush()
    logger.info("Session established for account %s", account.account_id)
    return SigninResponse(id=str(account.account_id), i=token)
