from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field, field_validator

from .common import APIProtocol, BasePydanticModel
from .schema import UniversalSchema


class SchemaQuery(BasePydanticModel):
    id: Optional[str] = None
    protocol: Optional[APIProtocol] = None
    name: Optional[str] = Field(default=None, description="Case-insensitive substring match on the schema name.")
    source_url: Optional[str] = Field(default=None, description="Case-insensitive substring match on the source URL.")
    discovered_after: Optional[datetime] = None
    discovered_before: Optional[datetime] = None
    search: Optional[str] = Field(default=None, description="Case-insensitive match on name or description.")
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("discovered_after", "discovered_before")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SchemaQueryResult(BasePydanticModel):
    schemas: List[UniversalSchema] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


class StorageStats(BasePydanticModel):
    total_schemas: int
    schemas_by_protocol: dict = Field(default_factory=dict)
    storage_size: int = Field(default=0, description="Approximate size in bytes.")
    last_updated: datetime


class IndexEntry(BasePydanticModel):
    """Summary row kept per schema; the file backend persists these in index.json."""
    id: str
    name: str
    protocol: APIProtocol
    source_url: str
    discovered_at: datetime
    file_path: Optional[str] = None

    @classmethod
    def from_schema(cls, schema: UniversalSchema, file_path: Optional[str] = None) -> "IndexEntry":
        return cls(
            id=schema.id,
            name=schema.name,
            protocol=schema.protocol,
            source_url=schema.source_url,
            discovered_at=schema.discovered_at,
            file_path=file_path,
        )
