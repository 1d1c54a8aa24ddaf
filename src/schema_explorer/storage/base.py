"""
Storage contract shared by every backend, plus the filtering and pagination
rules they all apply to queries.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, TypeVar

from ..models.schema import UniversalSchema
from ..models.storage import IndexEntry, SchemaQuery, SchemaQueryResult, StorageStats

T = TypeVar("T")


class SchemaStorage(ABC):
    """
    Persistent home for UniversalSchemas. Every method raises StorageError on failure.
    ``store`` upserts by id; ``update`` never creates.
    """

    name: str
    version: str = "1.0.0"

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def store(self, schema: UniversalSchema) -> str:
        ...

    @abstractmethod
    async def retrieve(self, schema_id: str) -> Optional[UniversalSchema]:
        ...

    @abstractmethod
    async def update(self, schema_id: str, schema: UniversalSchema) -> bool:
        ...

    @abstractmethod
    async def delete(self, schema_id: str) -> bool:
        ...

    @abstractmethod
    async def query(self, query: Optional[SchemaQuery] = None) -> SchemaQueryResult:
        ...

    @abstractmethod
    async def list_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def get_stats(self) -> StorageStats:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


def matches_index_filters(entry: IndexEntry, query: SchemaQuery) -> bool:
    """Applies every filter that the summary fields can answer (everything except ``search``)."""
    if query.id is not None and entry.id != query.id:
        return False
    if query.protocol is not None and entry.protocol != query.protocol:
        return False
    if query.name and query.name.lower() not in entry.name.lower():
        return False
    if query.source_url and query.source_url.lower() not in entry.source_url.lower():
        return False
    if query.discovered_after is not None and entry.discovered_at < query.discovered_after:
        return False
    if query.discovered_before is not None and entry.discovered_at > query.discovered_before:
        return False
    return True


def matches_search(schema: UniversalSchema, search: Optional[str]) -> bool:
    if not search:
        return True
    needle = search.lower()
    return needle in schema.name.lower() or needle in (schema.description or "").lower()


def paginate(items: Sequence[T], query: SchemaQuery) -> tuple:
    """Returns (page, has_more). ``has_more`` is only true when a limit is set."""
    total = len(items)
    end = None if query.limit is None else query.offset + query.limit
    page = list(items[query.offset:end])
    has_more = query.limit is not None and total > query.offset + query.limit
    return page, has_more


def build_query_result(schemas: List[UniversalSchema], query: SchemaQuery) -> SchemaQueryResult:
    ordered = sorted(schemas, key=lambda s: s.discovered_at, reverse=True)
    page, has_more = paginate(ordered, query)
    return SchemaQueryResult(schemas=page, total_count=len(ordered), has_more=has_more)
