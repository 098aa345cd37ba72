import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_sync.core.database import transaction
from ledger_sync.domains.ledger.tables import CredentialRow

from ..base.types import Platform
from .models import Credential

logger = logging.getLogger(__name__)


def _to_credential(row: CredentialRow) -> Credential:
    return Credential(
        platform=Platform(row.platform),
        tenant_id=row.tenant_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        scope=row.scope,
        last_refreshed_at=row.last_refreshed_at,
    )


class CredentialStore:
    """Persists at most one active OAuth credential per platform."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_active(self, platform: Platform) -> Optional[Credential]:
        async with transaction(self.session_factory) as session:
            row = await self._find(session, platform)
            return _to_credential(row) if row else None

    async def save(self, credential: Credential) -> Credential:
        """
        Store the credential, replacing whatever the platform had before.

        The row is updated in a single transaction so readers never observe an
        access token paired with a stale refresh token.
        """
        async with transaction(self.session_factory) as session:
            row = await self._find(session, credential.platform)
            if row is None:
                row = CredentialRow(platform=credential.platform.value)
                session.add(row)

            row.tenant_id = credential.tenant_id
            row.access_token = credential.access_token
            row.refresh_token = credential.refresh_token
            row.expires_at = credential.expires_at
            row.scope = credential.scope
            row.last_refreshed_at = credential.last_refreshed_at
            row.refresh_attempts = 0
            row.updated_at = datetime.now(timezone.utc)

        logger.info(
            "Stored %s credential for tenant %s",
            credential.platform.value,
            credential.tenant_id,
        )
        return credential

    async def record_refresh_failure(self, platform: Platform) -> None:
        async with transaction(self.session_factory) as session:
            row = await self._find(session, platform)
            if row is not None:
                row.refresh_attempts = (row.refresh_attempts or 0) + 1

    async def delete(self, platform: Platform) -> bool:
        async with transaction(self.session_factory) as session:
            result = await session.execute(
                delete(CredentialRow).where(CredentialRow.platform == platform.value)
            )
            return bool(result.rowcount)

    @staticmethod
    async def _find(session: AsyncSession, platform: Platform) -> Optional[CredentialRow]:
        result = await session.execute(
            select(CredentialRow).where(CredentialRow.platform == platform.value)
        )
        return result.scalar_one_or_none()
