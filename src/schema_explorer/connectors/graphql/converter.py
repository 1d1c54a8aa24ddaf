"""
Converts a GraphQL introspection result (the ``__schema`` object) into the
universal schema model.
"""
import json
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ...models.common import APIProtocol, AuthType, DataType, OperationType, ParameterLocation
from ...models.schema import (
    AuthenticationInfo,
    FieldConstraints,
    Operation,
    Parameter,
    Response,
    SchemaField,
    SchemaMetadata,
    UniversalSchema,
    generate_schema_id,
    utc_now,
)
from ..base import hostname_from_url

logger = structlog.get_logger(__name__)

SCALAR_TYPE_MAP = {
    "String": DataType.STRING,
    "ID": DataType.STRING,
    "Int": DataType.INTEGER,
    "Float": DataType.NUMBER,
    "Boolean": DataType.BOOLEAN,
}

TYPE_KINDS = ("OBJECT", "INPUT_OBJECT", "INTERFACE")
COMPOSITE_KINDS = ("OBJECT", "INTERFACE", "UNION", "INPUT_OBJECT")
MAX_WRAPPER_DEPTH = 16


def is_builtin_type(type_name: Optional[str]) -> bool:
    return not type_name or type_name.startswith("__")


def unwrap_type(type_ref: Dict[str, Any]) -> Tuple[Dict[str, Any], bool, bool]:
    """
    Walks a NON_NULL/LIST wrapper chain down to the named type.
    Returns (named_type, is_list, is_non_null); both flags are true if the
    wrapper occurs anywhere in the chain.
    """
    current = type_ref or {}
    is_list = False
    is_non_null = False
    for _ in range(MAX_WRAPPER_DEPTH):
        kind = current.get("kind")
        if kind == "LIST":
            is_list = True
        elif kind == "NON_NULL":
            is_non_null = True
        else:
            break
        if not current.get("ofType"):
            break
        current = current["ofType"]
    return current, is_list, is_non_null


def type_to_string(type_ref: Optional[Dict[str, Any]]) -> str:
    """Renders a type reference in SDL notation, e.g. ``[Pet!]!``."""
    if not type_ref:
        return "Unknown"
    kind = type_ref.get("kind")
    if kind == "NON_NULL" and type_ref.get("ofType"):
        return f"{type_to_string(type_ref['ofType'])}!"
    if kind == "LIST" and type_ref.get("ofType"):
        return f"[{type_to_string(type_ref['ofType'])}]"
    return type_ref.get("name") or "Unknown"


def parse_default_value(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        # Enum literals and input objects are GraphQL syntax, not JSON.
        return raw


class GraphQLSchemaConverter:
    def __init__(self) -> None:
        self.logger = logger.bind(converter="graphql")
        self._types_by_name: Dict[str, Dict[str, Any]] = {}
        self._root_types: Dict[str, OperationType] = {}

    def convert(self, introspection: Dict[str, Any], source_url: str, api_name: Optional[str] = None) -> UniversalSchema:
        all_types = [t for t in introspection.get("types") or [] if isinstance(t, dict)]
        self._types_by_name = {t["name"]: t for t in all_types if t.get("name")}
        self._root_types = {}
        for key, operation_type in (
            ("queryType", OperationType.QUERY),
            ("mutationType", OperationType.MUTATION),
            ("subscriptionType", OperationType.SUBSCRIPTION),
        ):
            root = introspection.get(key)
            if isinstance(root, dict) and root.get("name"):
                self._root_types[root["name"]] = operation_type

        operations: List[Operation] = []
        types: Dict[str, SchemaField] = {}
        for graphql_type in all_types:
            type_name = graphql_type.get("name")
            if is_builtin_type(type_name):
                continue
            if type_name in self._root_types:
                operations.extend(self._extract_operations(graphql_type, self._root_types[type_name]))
            elif graphql_type.get("kind") in TYPE_KINDS:
                types[type_name] = self._convert_type(graphql_type)

        discovered_at = utc_now()
        return UniversalSchema(
            id=generate_schema_id(APIProtocol.GRAPHQL, source_url, discovered_at),
            name=api_name or hostname_from_url(source_url, default="GraphQL API"),
            version="1.0.0", # GraphQL has no built-in versioning
            description="GraphQL API discovered via introspection",
            protocol=APIProtocol.GRAPHQL,
            base_url=source_url,
            operations=operations,
            types=types,
            authentication=AuthenticationInfo(
                type=AuthType.CUSTOM,
                description="Authentication method not determined from schema introspection",
            ),
            metadata=self._create_metadata(introspection),
            discovered_at=discovered_at,
            source_url=source_url,
        )

    def _is_referenceable(self, type_name: Optional[str]) -> bool:
        named = self._types_by_name.get(type_name or "")
        return bool(named) and named.get("kind") in TYPE_KINDS and type_name not in self._root_types

    def _enum_values(self, named: Dict[str, Any]) -> Optional[List[str]]:
        full = self._types_by_name.get(named.get("name") or "", named)
        if full.get("kind") != "ENUM" or not full.get("enumValues"):
            return None
        return [value["name"] for value in full["enumValues"]]

    def _named_data_type(self, named: Dict[str, Any]) -> DataType:
        kind = named.get("kind")
        if kind == "SCALAR":
            # Custom scalars are carried as strings.
            return SCALAR_TYPE_MAP.get(named.get("name"), DataType.STRING)
        if kind == "ENUM":
            return DataType.STRING
        if kind in COMPOSITE_KINDS:
            return DataType.OBJECT
        return DataType.UNKNOWN

    def _named_field(self, name: str, named: Dict[str, Any], **kwargs: Any) -> SchemaField:
        enum_values = self._enum_values(named)
        type_name = named.get("name")
        return SchemaField(
            name=name,
            type=self._named_data_type(named),
            constraints=FieldConstraints(enum=enum_values) if enum_values else None,
            ref=type_name if self._is_referenceable(type_name) else None,
            **kwargs,
        )

    def convert_type_ref(self, type_ref: Dict[str, Any], name: str, **kwargs: Any) -> SchemaField:
        """Builds a field from a wrapped type reference. A LIST anywhere yields an array of the named type."""
        named, is_list, is_non_null = unwrap_type(type_ref)
        if is_list:
            return SchemaField(
                name=name,
                type=DataType.ARRAY,
                required=is_non_null,
                items=self._named_field("item", named),
                **kwargs,
            )
        return self._named_field(name, named, required=is_non_null, **kwargs)

    def _convert_input_value(self, input_value: Dict[str, Any]) -> Parameter:
        field = self.convert_type_ref(
            input_value.get("type") or {},
            input_value["name"],
            description=input_value.get("description"),
            default_value=parse_default_value(input_value.get("defaultValue")),
        )
        return Parameter(
            name=input_value["name"],
            location=ParameterLocation.BODY, # arguments travel in the request body
            schema_=field,
            required=field.required,
            description=input_value.get("description"),
        )

    def _convert_type(self, graphql_type: Dict[str, Any]) -> SchemaField:
        properties: Dict[str, SchemaField] = {}
        for field in graphql_type.get("fields") or []:
            graphql_metadata = {
                "isDeprecated": bool(field.get("isDeprecated", False)),
                "typeName": type_to_string(field.get("type")),
            }
            if field.get("deprecationReason"):
                graphql_metadata["deprecationReason"] = field["deprecationReason"]
            if field.get("args"):
                graphql_metadata["arguments"] = [
                    self._convert_input_value(arg).model_dump(by_alias=True, exclude_none=True, mode="json")
                    for arg in field["args"]
                ]
            properties[field["name"]] = self.convert_type_ref(
                field.get("type") or {},
                field["name"],
                description=field.get("description"),
                metadata={"graphql": graphql_metadata},
            )

        for input_field in graphql_type.get("inputFields") or []:
            properties[input_field["name"]] = self.convert_type_ref(
                input_field.get("type") or {},
                input_field["name"],
                description=input_field.get("description"),
                default_value=parse_default_value(input_field.get("defaultValue")),
            )

        graphql_metadata = {"kind": graphql_type.get("kind")}
        if graphql_type.get("interfaces"):
            graphql_metadata["interfaces"] = [iface.get("name") for iface in graphql_type["interfaces"]]
        if graphql_type.get("possibleTypes"):
            graphql_metadata["possibleTypes"] = [p.get("name") for p in graphql_type["possibleTypes"]]

        return SchemaField(
            name=graphql_type["name"],
            type=DataType.OBJECT,
            required=True,
            description=graphql_type.get("description"),
            properties=properties,
            metadata={"graphql": graphql_metadata},
        )

    def _extract_operations(self, root_type: Dict[str, Any], operation_type: OperationType) -> List[Operation]:
        operations = []
        for field in root_type.get("fields") or []:
            response_schema = self.convert_type_ref(
                field.get("type") or {},
                "response",
                description=f"Response for {field['name']}",
            )
            graphql_metadata = {"returnType": type_to_string(field.get("type"))}
            if field.get("deprecationReason"):
                graphql_metadata["deprecationReason"] = field["deprecationReason"]
            operations.append(Operation(
                id=f"{operation_type.value}_{field['name']}",
                name=field["name"],
                type=operation_type,
                description=field.get("description"),
                parameters=[self._convert_input_value(arg) for arg in field.get("args") or []],
                responses=[Response(status_code="200", description="Successful response", schema_=response_schema)],
                deprecated=bool(field.get("isDeprecated", False)),
                metadata={"graphql": graphql_metadata},
            ))
        return operations

    @staticmethod
    def _create_metadata(introspection: Dict[str, Any]) -> SchemaMetadata:
        return SchemaMetadata(extensions={
            "graphql": {
                "typeCount": len(introspection.get("types") or []),
                "directiveCount": len(introspection.get("directives") or []),
                "hasQuery": bool(introspection.get("queryType")),
                "hasMutation": bool(introspection.get("mutationType")),
                "hasSubscription": bool(introspection.get("subscriptionType")),
            }
        })
