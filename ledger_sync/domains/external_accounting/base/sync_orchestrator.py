import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ledger_sync.domains.ledger.store import LocalStore
from ledger_sync.shared.exceptions import (
    AuthExpired,
    AuthMissing,
    MappingError,
    PersistenceError,
    RemoteApiError,
)

from ..auth.models import Credential
from .adapter import PlatformAdapter
from .models import MergeOutcome, SyncFailure, SyncResult, SyncStatus
from .types import (
    CanonicalEntity,
    CanonicalProduct,
    EntityKind,
    Platform,
    ProductKind,
    ReconcileStrategy,
    Scope,
)

logger = logging.getLogger(__name__)

# Failures that abandon the whole scope; nothing is written locally
SCOPE_ABORTING_ERRORS = (AuthMissing, AuthExpired, RemoteApiError, PersistenceError)


def object_type_for(scope: Scope) -> str:
    label = f"{scope.kind.value}s"
    if scope.product_kind != ProductKind.ALL:
        label = f"{scope.product_kind.value}_{label}"
    return label


def aborted_result(
    scope: Scope,
    error: Exception,
    start_time: float,
    strategy: Optional[ReconcileStrategy] = None,
) -> SyncResult:
    return SyncResult(
        object_type=object_type_for(scope),
        platform=scope.platform,
        strategy=strategy,
        status=SyncStatus.ABORTED,
        duration_seconds=time.time() - start_time,
        completed_at=datetime.now(timezone.utc),
        error=str(error),
        error_type=type(error).__name__,
    )


def _in_scope(entity: CanonicalEntity, scope: Scope) -> bool:
    if scope.product_kind == ProductKind.ALL:
        return True
    return isinstance(entity, CanonicalProduct) and entity.product_kind == scope.product_kind


class SyncOrchestrator:
    """
    Generic sync logic that works with any provider.

    Drives one scope from fetch to local write: raw records are mapped one by
    one, records that fail to map are reported and skipped, and the mapped
    snapshot is written with the strategy the adapter declares.
    """

    def __init__(self, store: LocalStore):
        self.store = store
        self._locks: Dict[Tuple[Platform, EntityKind], asyncio.Lock] = {}

    def _lock_for(self, scope: Scope) -> asyncio.Lock:
        # Narrowed product scopes share the lock of the whole product table
        key = (scope.platform, scope.kind)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def reconcile(
        self,
        adapter: PlatformAdapter,
        credential: Credential,
        product_kind: ProductKind = ProductKind.ALL,
    ) -> SyncResult:
        """
        Sync one scope from the remote platform into the local store.

        Args:
            adapter: Adapter of the scope's platform and entity kind
            credential: Valid credential of the platform
            product_kind: Narrows a product scope to one product kind

        Returns:
            SyncResult with status succeeded, partial (some records failed to
            map) or aborted (nothing was written)
        """
        start_time = time.time()
        scope = Scope(platform=adapter.platform, kind=adapter.kind, product_kind=product_kind)

        try:
            async with self._lock_for(scope):
                entities, failures = await self._collect(adapter, credential, scope)
                outcome = await self._write(adapter.strategy, scope, entities)
        except SCOPE_ABORTING_ERRORS as e:
            logger.error("Sync of %s aborted: %s", scope, e)
            return aborted_result(scope, e, start_time, adapter.strategy)

        status = SyncStatus.PARTIAL if failures else SyncStatus.SUCCEEDED
        duration = time.time() - start_time
        logger.info(
            "Sync of %s %s in %.2fs: %d written, %d failed",
            scope,
            status.value,
            duration,
            outcome.written,
            len(failures),
        )

        return SyncResult(
            object_type=object_type_for(scope),
            platform=scope.platform,
            strategy=adapter.strategy,
            status=status,
            succeeded_count=outcome.written,
            failures=failures,
            deactivated_count=outcome.deactivated,
            duration_seconds=duration,
            completed_at=datetime.now(timezone.utc),
        )

    async def _collect(
        self, adapter: PlatformAdapter, credential: Credential, scope: Scope
    ) -> Tuple[List[CanonicalEntity], List[SyncFailure]]:
        entities: List[CanonicalEntity] = []
        failures: List[SyncFailure] = []

        async for raw in adapter.fetch(credential):
            try:
                entity = adapter.map(raw)
            except MappingError as e:
                identifier = adapter.identify(raw)
                logger.warning("Skipping %s record %s: %s", scope, identifier, e)
                failures.append(SyncFailure(identifier=identifier, reason=str(e)))
                continue
            except Exception as e:
                identifier = adapter.identify(raw)
                logger.exception("Unexpected error mapping %s record %s", scope, identifier)
                failures.append(
                    SyncFailure(identifier=identifier, reason=f"{type(e).__name__}: {e}")
                )
                continue

            if _in_scope(entity, scope):
                entities.append(entity)

        return entities, failures

    async def _write(
        self,
        strategy: ReconcileStrategy,
        scope: Scope,
        entities: List[CanonicalEntity],
    ) -> MergeOutcome:
        if strategy == ReconcileStrategy.FULL_REFRESH:
            return await self.store.replace_scope(scope, entities)
        return await self.store.merge_scope(scope, entities)
