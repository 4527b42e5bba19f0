"""Social identity enrichment for user profiles.

Lookups run outside any database transaction. A failing provider never
blocks ledger writes: the enricher logs and returns None.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from onchain_rewards.storage.repos import UserProfileRepository, normalize_address

if TYPE_CHECKING:
    from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SocialIdentity:
    fid: int | None = None
    username: str | None = None
    display_name: str | None = None
    pfp_url: str | None = None


class IdentityProvider(Protocol):
    async def lookup(self, address: str) -> SocialIdentity | None: ...


class ProfileEnricher:
    def __init__(
        self,
        db: DatabaseManager,
        provider: IdentityProvider,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._db = db
        self._provider = provider
        self._clock = clock

    async def enrich(self, address: str) -> SocialIdentity | None:
        """Look up and store the identity for an existing profile.

        Returns:
            The stored identity, or None if the provider had nothing or failed.
        """
        address = normalize_address(address)
        try:
            identity = await self._provider.lookup(address)
        except Exception as e:
            logger.warning("Identity lookup failed for %s: %s", address, e)
            return None
        if identity is None:
            logger.debug("No social identity for %s", address)
            return None

        async with self._db.get_async_session() as session:
            await UserProfileRepository(session).update_identity(
                address,
                now=self._clock(),
                fid=identity.fid,
                username=identity.username,
                display_name=identity.display_name,
                pfp_url=identity.pfp_url,
            )
        return identity
