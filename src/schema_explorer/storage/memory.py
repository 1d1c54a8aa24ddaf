"""
In-process schema storage. Fast, and lost when the process exits.
"""
import asyncio
import math
from collections import Counter
from datetime import timedelta
from typing import Dict, List, Optional

import structlog

from ..config import StorageSettings
from ..exceptions import StorageError
from ..models.schema import UniversalSchema, utc_now
from ..models.storage import IndexEntry, SchemaQuery, SchemaQueryResult, StorageStats
from .base import SchemaStorage, build_query_result, matches_index_filters, matches_search

logger = structlog.get_logger(__name__)

EVICTION_FRACTION = 0.1


class MemoryStorage(SchemaStorage):
    """
    Keeps deep copies of schemas in a dict keyed by id.

    When ``max_schemas`` is reached, schemas older than ``max_age_seconds`` are
    swept first; if the store is still full, the oldest tenth is evicted. With
    ``auto_cleanup`` the age sweep also runs every ``cleanup_interval_seconds``.
    """

    name = "Memory Storage"
    version = "1.0.0"

    def __init__(
        self,
        max_schemas: int = 1000,
        auto_cleanup: bool = True,
        max_age_seconds: Optional[float] = 86400.0,
        cleanup_interval_seconds: float = 3600.0,
    ):
        self.max_schemas = max_schemas
        self.auto_cleanup = auto_cleanup
        self.max_age_seconds = max_age_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds

        self._schemas: Dict[str, UniversalSchema] = {}
        self._initialized = False
        self._cleanup_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(storage_type="memory")

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "MemoryStorage":
        return cls(
            max_schemas=settings.max_schemas,
            auto_cleanup=settings.auto_cleanup,
            max_age_seconds=settings.max_age_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )

    async def initialize(self) -> None:
        self._initialized = True
        if self.auto_cleanup and self.max_age_seconds and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.debug("Memory storage initialized", max_schemas=self.max_schemas, max_age_seconds=self.max_age_seconds)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise StorageError("Memory storage not initialized. Call initialize() first.")

    async def store(self, schema: UniversalSchema) -> str:
        self._ensure_initialized()
        if schema.id not in self._schemas and len(self._schemas) >= self.max_schemas:
            self._make_room()
        self._schemas[schema.id] = schema.model_copy(deep=True)
        return schema.id

    async def retrieve(self, schema_id: str) -> Optional[UniversalSchema]:
        self._ensure_initialized()
        schema = self._schemas.get(schema_id)
        return schema.model_copy(deep=True) if schema is not None else None

    async def update(self, schema_id: str, schema: UniversalSchema) -> bool:
        self._ensure_initialized()
        if schema_id not in self._schemas:
            return False
        if schema.id != schema_id:
            schema = schema.model_copy(update={"id": schema_id})
        self._schemas[schema_id] = schema.model_copy(deep=True)
        return True

    async def delete(self, schema_id: str) -> bool:
        self._ensure_initialized()
        return self._schemas.pop(schema_id, None) is not None

    async def query(self, query: Optional[SchemaQuery] = None) -> SchemaQueryResult:
        self._ensure_initialized()
        query = query or SchemaQuery()
        matches = [
            schema.model_copy(deep=True)
            for schema in self._schemas.values()
            if matches_index_filters(IndexEntry.from_schema(schema), query) and matches_search(schema, query.search)
        ]
        return build_query_result(matches, query)

    async def list_ids(self) -> List[str]:
        self._ensure_initialized()
        return list(self._schemas)

    async def get_stats(self) -> StorageStats:
        self._ensure_initialized()
        by_protocol = Counter(schema.protocol for schema in self._schemas.values())
        size = sum(len(schema.model_dump_json(by_alias=True).encode("utf-8")) for schema in self._schemas.values())
        return StorageStats(
            total_schemas=len(self._schemas),
            schemas_by_protocol=dict(by_protocol),
            storage_size=size,
            last_updated=utc_now(),
        )

    async def clear(self) -> None:
        self._ensure_initialized()
        self._schemas.clear()

    async def close(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._schemas.clear()
        self._initialized = False

    def evict_expired(self) -> int:
        """Drops every schema discovered more than ``max_age_seconds`` ago."""
        if not self.max_age_seconds:
            return 0
        cutoff = utc_now() - timedelta(seconds=self.max_age_seconds)
        expired = [schema_id for schema_id, schema in self._schemas.items() if schema.discovered_at < cutoff]
        for schema_id in expired:
            del self._schemas[schema_id]
        if expired:
            self.logger.info("Evicted expired schemas", count=len(expired), max_age_seconds=self.max_age_seconds)
        return len(expired)

    def evict_oldest(self) -> int:
        count = max(1, math.ceil(len(self._schemas) * EVICTION_FRACTION))
        oldest = sorted(self._schemas.values(), key=lambda s: s.discovered_at)[:count]
        for schema in oldest:
            del self._schemas[schema.id]
        self.logger.info("Evicted oldest schemas", count=len(oldest), max_schemas=self.max_schemas)
        return len(oldest)

    def _make_room(self) -> None:
        self.evict_expired()
        if len(self._schemas) >= self.max_schemas:
            self.evict_oldest()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            self.evict_expired()
