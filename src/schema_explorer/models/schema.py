"""
The universal, protocol-neutral schema model every connector converts into.
"""
import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import Field, field_validator, model_validator

from .common import APIProtocol, AuthType, BasePydanticModel, DataType, HTTPMethod, OperationType, ParameterLocation


class FieldConstraints(BasePydanticModel):
    minimum: Optional[Union[int, float]] = None
    maximum: Optional[Union[int, float]] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    enum: Optional[List[Any]] = None
    format: Optional[str] = None


class SchemaField(BasePydanticModel):
    """
    A typed field. Arrays carry ``items``, objects carry ``properties``.
    A field with ``ref`` set is a reference stub: it names an entry of
    ``UniversalSchema.types`` instead of inlining it.
    """
    name: str
    type: DataType
    required: bool = False
    description: Optional[str] = None
    default_value: Any = None
    constraints: Optional[FieldConstraints] = None
    items: Optional["SchemaField"] = None
    properties: Optional[Dict[str, "SchemaField"]] = None
    ref: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "SchemaField":
        if self.items is not None and self.type != DataType.ARRAY:
            raise ValueError(f"Field '{self.name}' of type '{self.type}' cannot declare items")
        if self.properties is not None and self.type != DataType.OBJECT:
            raise ValueError(f"Field '{self.name}' of type '{self.type}' cannot declare properties")
        return self

    @property
    def is_reference(self) -> bool:
        return self.ref is not None

    @classmethod
    def reference(cls, name: str, ref: str, required: bool = False, **kwargs: Any) -> "SchemaField":
        return cls(name=name, type=DataType.OBJECT, required=required, ref=ref, **kwargs)


class Parameter(BasePydanticModel):
    name: str
    location: ParameterLocation
    schema_: SchemaField = Field(alias="schema")
    required: bool = False
    description: Optional[str] = None
    example: Any = None
    metadata: Optional[Dict[str, Any]] = None


class Response(BasePydanticModel):
    status_code: str
    description: Optional[str] = None
    schema_: Optional[SchemaField] = Field(default=None, alias="schema")
    headers: Optional[Dict[str, SchemaField]] = None
    metadata: Optional[Dict[str, Any]] = None


class Operation(BasePydanticModel):
    id: str
    name: str
    type: OperationType
    method: Optional[HTTPMethod] = None
    path: Optional[str] = None
    description: Optional[str] = None
    parameters: List[Parameter] = Field(default_factory=list)
    responses: List[Response] = Field(default_factory=list)
    deprecated: bool = False
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class AuthenticationInfo(BasePydanticModel):
    type: AuthType
    description: Optional[str] = None
    scopes: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class SchemaMetadata(BasePydanticModel):
    contact: Optional[Dict[str, Any]] = None
    license: Optional[Dict[str, Any]] = None
    external_docs: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None


class UniversalSchema(BasePydanticModel):
    id: str
    name: str
    version: str
    description: Optional[str] = None
    protocol: APIProtocol
    base_url: str
    operations: List[Operation] = Field(default_factory=list)
    types: Dict[str, SchemaField] = Field(default_factory=dict)
    authentication: Optional[AuthenticationInfo] = None
    metadata: Optional[SchemaMetadata] = None
    discovered_at: datetime
    source_url: str

    @field_validator("discovered_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    def resolve(self, field: SchemaField) -> Optional[SchemaField]:
        """Returns the named type a reference stub points at, or the field itself."""
        if field.ref is None:
            return field
        return self.types.get(field.ref)

    def get_operation(self, operation_id: str) -> Optional[Operation]:
        for operation in self.operations:
            if operation.id == operation_id:
                return operation
        return None


def generate_schema_id(protocol: Union[APIProtocol, str], source_url: str, discovered_at: Optional[datetime] = None) -> str:
    """Derives an opaque id from the protocol, the source URL and the discovery time."""
    discovered_at = discovered_at or datetime.now(timezone.utc)
    protocol_value = protocol.value if isinstance(protocol, APIProtocol) else str(protocol)
    digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest()[:12]
    return f"{protocol_value}_{digest}_{int(discovered_at.timestamp() * 1000)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


SchemaField.model_rebuild()
