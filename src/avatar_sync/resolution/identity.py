"""Identity resolution between the auth and record namespaces.

Call sites hand us either half of a person's identity without saying which.
Rather than guessing from the string's shape, probe the users table:

1. Assume the input is an auth identity (users.auth_id = input)
2. On a miss, assume it is a record identity (users.id = input)
3. On a second miss, report IdentityUnresolved and carry the raw input
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from avatar_sync.config import settings
from avatar_sync.errors import AvatarSyncError, IdentityUnresolved, RecordReadFailed
from avatar_sync.models.user import User
from avatar_sync.resolution.types import PersonIdentity

logger = logging.getLogger(__name__)


@dataclass
class IdentityLookup:
    """Resolved identity plus anything that went wrong finding it."""

    person: PersonIdentity
    issues: list[AvatarSyncError]


class IdentityResolver:
    """Maps one identity string to both halves of a person's identity.

    Usage:
        resolver = IdentityResolver(async_session_factory)
        lookup = await resolver.resolve("89e55400-...")
        lookup.person.owner_keys
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(self, identity: str) -> IdentityLookup:
        issues: list[AvatarSyncError] = []
        try:
            user = await asyncio.wait_for(
                self._probe(identity), timeout=settings.record_timeout_seconds
            )
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            logger.warning("[IDENTITY] lookup for %s failed: %s", identity, exc)
            issues.append(RecordReadFailed("users", str(exc) or type(exc).__name__))
            user = None

        if user is None:
            issues.append(IdentityUnresolved(identity))
            return IdentityLookup(PersonIdentity(raw=identity), issues)

        person = PersonIdentity(
            raw=identity,
            auth_identity=user.auth_id,
            record_identity=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
        )
        logger.debug(
            "[IDENTITY] %s → auth=%s record=%s", identity, person.auth_identity, person.record_identity
        )
        return IdentityLookup(person, issues)

    async def _probe(self, identity: str) -> User | None:
        async with self._session_factory() as session:
            stmt = select(User).where(User.auth_id == identity).order_by(User.created_at)
            rows = list((await session.execute(stmt)).scalars())
            if rows:
                if len(rows) > 1:
                    # Data issue upstream; the oldest row is the one the rest of the app uses
                    logger.warning(
                        "[IDENTITY] %d user rows share auth id %s, using %s",
                        len(rows), identity, rows[0].id,
                    )
                return rows[0]

            return await session.get(User, identity)
