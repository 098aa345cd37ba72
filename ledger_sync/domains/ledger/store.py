"""
Local canonical store.

Every public write is one transaction. A failure anywhere inside it rolls the
whole batch back and surfaces as ``PersistenceError``.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Type,
)

from sqlalchemy import delete, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ledger_sync.core.database import transaction
from ledger_sync.domains.external_accounting.base.models import MergeOutcome
from ledger_sync.domains.external_accounting.base.types import (
    CanonicalDocument,
    CanonicalEntity,
    EntityKind,
    Lifecycle,
    NaturalKey,
    Platform,
    ProductKind,
    Scope,
)

from .tables import (
    AccountRow,
    BillLineItemRow,
    BillRow,
    InvoiceLineItemRow,
    InvoiceRow,
    ProductRow,
    VendorRow,
)

logger = logging.getLogger(__name__)

ROW_TYPES: Dict[EntityKind, Type[Any]] = {
    EntityKind.VENDOR: VendorRow,
    EntityKind.ACCOUNT: AccountRow,
    EntityKind.PRODUCT: ProductRow,
    EntityKind.INVOICE: InvoiceRow,
    EntityKind.BILL: BillRow,
}

LINE_ROW_TYPES: Dict[EntityKind, Type[Any]] = {
    EntityKind.INVOICE: InvoiceLineItemRow,
    EntityKind.BILL: BillLineItemRow,
}

_LINE_PARENT_COLUMNS = {
    EntityKind.INVOICE: InvoiceLineItemRow.invoice_id,
    EntityKind.BILL: BillLineItemRow.bill_id,
}

# SQLite caps bound parameters per statement
_KEY_CHUNK = 400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_values(entity: Any, exclude: Optional[set] = None) -> Dict[str, Any]:
    """Flatten a canonical model into column values (enums stored by value)."""
    values = entity.model_dump(exclude=exclude)
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in values.items()
    }


def _is_document(kind: EntityKind) -> bool:
    return kind in LINE_ROW_TYPES


def _dedupe(entities: Iterable[CanonicalEntity]) -> Dict[NaturalKey, CanonicalEntity]:
    # Later records win but keep the position of the first occurrence
    deduped: Dict[NaturalKey, CanonicalEntity] = {}
    for entity in entities:
        deduped[entity.natural_key] = entity
    return deduped


class LocalStore:
    """Persistence for canonical vendors, accounts, products, invoices and bills."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self, kind: EntityKind, entities: Sequence[CanonicalEntity]
    ) -> MergeOutcome:
        """Insert new records and overwrite remote-owned fields of existing ones."""
        async with transaction(self.session_factory) as session:
            return await self._upsert(session, kind, _dedupe(entities))

    async def replace_scope(
        self, scope: Scope, entities: Sequence[CanonicalEntity]
    ) -> MergeOutcome:
        """
        Replace every row in scope with the given snapshot.

        Line items are removed before their parents. An empty snapshot leaves
        the scope empty.
        """
        deduped = _dedupe(entities)
        row_type = ROW_TYPES[scope.kind]

        async with transaction(self.session_factory) as session:
            if _is_document(scope.kind):
                parent_ids = select(row_type.id).where(*self._scope_filter(scope))
                await session.execute(
                    delete(LINE_ROW_TYPES[scope.kind])
                    .where(_LINE_PARENT_COLUMNS[scope.kind].in_(parent_ids))
                    .execution_options(synchronize_session=False)
                )
            result = await session.execute(
                delete(row_type)
                .where(*self._scope_filter(scope))
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0

            session.add_all(
                self._build_row(scope.kind, entity) for entity in deduped.values()
            )

        logger.info(
            "Replaced %s: %d removed, %d inserted", scope, deleted, len(deduped)
        )
        return MergeOutcome(inserted=len(deduped), deleted=deleted)

    async def merge_scope(
        self, scope: Scope, entities: Sequence[CanonicalEntity]
    ) -> MergeOutcome:
        """Upsert the snapshot and soft-delete rows in scope it no longer contains."""
        deduped = _dedupe(entities)

        async with transaction(self.session_factory) as session:
            seen = {remote_id for _, remote_id in deduped}
            # Retire dropped rows first so their document numbers are free again
            deactivated = await self._deactivate_missing(session, scope, seen)
            outcome = await self._upsert(session, scope.kind, deduped)
            outcome.deactivated = deactivated

        logger.info(
            "Merged %s: %d inserted, %d updated, %d deactivated",
            scope,
            outcome.inserted,
            outcome.updated,
            outcome.deactivated,
        )
        return outcome

    async def soft_delete(self, kind: EntityKind, keys: Iterable[NaturalKey]) -> int:
        """Mark records inactive. Voided documents keep their voided state."""
        async with transaction(self.session_factory) as session:
            rows = await self._load_by_keys(session, kind, list(keys))
            return sum(1 for row in rows.values() if self._deactivate(kind, row))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, kind: EntityKind, key: NaturalKey) -> Optional[Any]:
        async with transaction(self.session_factory) as session:
            rows = await self._load_by_keys(session, kind, [key])
            return rows.get(key)

    async def list(
        self,
        kind: EntityKind,
        platform: Platform,
        product_kind: ProductKind = ProductKind.ALL,
    ) -> List[Any]:
        """All rows of a scope ordered by surrogate id, inactive ones included."""
        scope = Scope(platform=platform, kind=kind, product_kind=product_kind)
        row_type = ROW_TYPES[kind]
        stmt = select(row_type).where(*self._scope_filter(scope)).order_by(row_type.id)
        if _is_document(kind):
            stmt = stmt.options(selectinload(row_type.line_items))

        async with transaction(self.session_factory) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _scope_filter(scope: Scope) -> List[Any]:
        row_type = ROW_TYPES[scope.kind]
        clauses = [row_type.platform == scope.platform.value]
        if scope.kind == EntityKind.PRODUCT and scope.product_kind != ProductKind.ALL:
            clauses.append(row_type.product_kind == scope.product_kind.value)
        return clauses

    async def _load_by_keys(
        self, session: AsyncSession, kind: EntityKind, keys: List[NaturalKey]
    ) -> Dict[NaturalKey, Any]:
        row_type = ROW_TYPES[kind]
        found: Dict[NaturalKey, Any] = {}

        for start in range(0, len(keys), _KEY_CHUNK):
            chunk = [
                (platform.value, remote_id)
                for platform, remote_id in keys[start : start + _KEY_CHUNK]
            ]
            stmt = select(row_type).where(
                tuple_(row_type.platform, row_type.remote_id).in_(chunk)
            )
            if _is_document(kind):
                stmt = stmt.options(selectinload(row_type.line_items))
            result = await session.execute(stmt)
            for row in result.scalars():
                found[(Platform(row.platform), row.remote_id)] = row

        return found

    async def _upsert(
        self,
        session: AsyncSession,
        kind: EntityKind,
        deduped: Dict[NaturalKey, CanonicalEntity],
    ) -> MergeOutcome:
        outcome = MergeOutcome()
        existing = await self._load_by_keys(session, kind, list(deduped))

        for key, entity in deduped.items():
            row = existing.get(key)
            if row is None:
                session.add(self._build_row(kind, entity))
                outcome.inserted += 1
            else:
                self._apply_remote_fields(kind, row, entity)
                outcome.updated += 1

        return outcome

    async def _deactivate_missing(
        self, session: AsyncSession, scope: Scope, seen: set
    ) -> int:
        row_type = ROW_TYPES[scope.kind]
        stmt = select(row_type).where(*self._scope_filter(scope))
        if _is_document(scope.kind):
            stmt = stmt.options(selectinload(row_type.line_items))
        result = await session.execute(stmt)
        deactivated = 0
        for row in result.scalars():
            if row.remote_id not in seen and self._deactivate(scope.kind, row):
                deactivated += 1
        return deactivated

    @staticmethod
    def _deactivate(kind: EntityKind, row: Any) -> bool:
        """Flip a row to inactive. Returns False when nothing changed."""
        if _is_document(kind):
            if row.lifecycle != Lifecycle.ACTIVE.value:
                return False
            row.lifecycle = Lifecycle.INACTIVE.value
        else:
            if not row.active:
                return False
            row.active = False
        row.updated_at = _utcnow()
        return True

    @staticmethod
    def _build_row(kind: EntityKind, entity: CanonicalEntity) -> Any:
        row_type = ROW_TYPES[kind]
        if not _is_document(kind):
            return row_type(**_column_values(entity))

        line_type = LINE_ROW_TYPES[kind]
        row = row_type(**_column_values(entity, exclude={"line_items"}))
        row.line_items = [
            line_type(**_column_values(line)) for line in entity.line_items
        ]
        return row

    @staticmethod
    def _apply_remote_fields(kind: EntityKind, row: Any, entity: CanonicalEntity) -> None:
        """Overwrite remote-owned columns only; local-only columns are untouched."""
        values = _column_values(entity, exclude={"line_items"})

        if _is_document(kind) and row.lifecycle != Lifecycle.ACTIVE.value:
            # Inactive and voided are terminal for merges
            values.pop("lifecycle")

        for column, value in values.items():
            setattr(row, column, value)
        row.updated_at = _utcnow()

        if _is_document(kind):
            LocalStore._reconcile_lines(kind, row, entity)

    @staticmethod
    def _reconcile_lines(kind: EntityKind, row: Any, document: CanonicalDocument) -> None:
        line_type = LINE_ROW_TYPES[kind]
        current = {line.line_number: line for line in row.line_items}
        incoming = {line.line_number: line for line in document.line_items}

        for line_number, line in incoming.items():
            existing_line = current.get(line_number)
            if existing_line is None:
                row.line_items.append(line_type(**_column_values(line)))
            else:
                for column, value in _column_values(line).items():
                    setattr(existing_line, column, value)

        for line_number, existing_line in current.items():
            if line_number not in incoming:
                row.line_items.remove(existing_line)
