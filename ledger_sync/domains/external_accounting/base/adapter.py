from typing import AsyncIterator, Callable, Optional

from ..auth.models import Credential
from .data_service import BaseRemoteDataService
from .types import (
    CanonicalEntity,
    EntityKind,
    FetchFilters,
    Platform,
    RawRecord,
    ReconcileStrategy,
)

Mapper = Callable[[RawRecord], CanonicalEntity]


class PlatformAdapter:
    """
    Everything needed to sync one entity kind from one platform.

    Pairs the platform's data service with the field mapper for the kind and
    declares which reconciliation strategy the scope uses.
    """

    def __init__(
        self,
        platform: Platform,
        kind: EntityKind,
        data_service: BaseRemoteDataService,
        mapper: Mapper,
        strategy: ReconcileStrategy,
        id_field: str,
    ):
        if kind not in data_service.supported_kinds:
            raise ValueError(f"{platform.value} data service cannot fetch {kind.value}")
        self.platform = platform
        self.kind = kind
        self.data_service = data_service
        self.mapper = mapper
        self.strategy = strategy
        self.id_field = id_field

    def fetch(
        self, credential: Credential, filters: Optional[FetchFilters] = None
    ) -> AsyncIterator[RawRecord]:
        return self.data_service.fetch(self.kind, credential, filters)

    def map(self, raw: RawRecord) -> CanonicalEntity:
        return self.mapper(raw)

    def identify(self, raw: RawRecord) -> str:
        """Best-effort identifier of a raw record, used in failure reports."""
        if isinstance(raw, dict) and raw.get(self.id_field) is not None:
            return str(raw[self.id_field])
        return "<unknown>"
