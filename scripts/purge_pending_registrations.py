#!/usr/bin/env python3
"""
Purge expired pending registrations.

Deletes pending registrations older than PENDING_REGISTRATION_TTL_MINUTES and
releases any invitation tickets they provisionally claimed. Signup never does
this on its own; expiry is otherwise only checked when a code is redeemed.

Run:
  python scripts/purge_pending_registrations.py
"""

import asyncio
import logging

from provisioning.database import async_session, engine
from provisioning.services.pending import purge_expired


async def run() -> int:
    async with async_session() as db:
        removed = await purge_expired(db)
    await engine.dispose()
    return removed


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    removed = asyncio.run(run())
    print(f"Removed {removed} expired pending registration(s)")


if __name__ == "__main__":
    main()
