"""
Converts OpenAPI 3.x and Swagger 2.0 documents into the universal schema model.
"""
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import structlog

from ...models.common import APIProtocol, AuthType, DataType, HTTPMethod, OperationType, ParameterLocation
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

logger = structlog.get_logger(__name__)

OPENAPI_TYPE_MAP = {
    "string": DataType.STRING,
    "number": DataType.NUMBER,
    "integer": DataType.INTEGER,
    "boolean": DataType.BOOLEAN,
    "array": DataType.ARRAY,
    "object": DataType.OBJECT,
    "null": DataType.NULL,
    "file": DataType.STRING, # Swagger 2.0 uploads
}

PARAMETER_LOCATION_MAP = {
    "query": ParameterLocation.QUERY,
    "path": ParameterLocation.PATH,
    "header": ParameterLocation.HEADER,
    "cookie": ParameterLocation.COOKIE,
    "body": ParameterLocation.BODY,
    "formData": ParameterLocation.BODY,
}

PATH_ITEM_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")

CONSTRAINT_KEYS = {
    "minimum": "minimum",
    "maximum": "maximum",
    "minLength": "min_length",
    "maxLength": "max_length",
    "pattern": "pattern",
    "enum": "enum",
    "format": "format",
}

SCHEMA_METADATA_KEYS = ("format", "example", "enum", "nullable", "readOnly", "writeOnly", "deprecated")

# Swagger 2.0 non-body parameters carry their schema inline.
INLINE_PARAMETER_SCHEMA_KEYS = ("type", "format", "items", "default", "enum", *CONSTRAINT_KEYS)


def map_openapi_type(openapi_type: Optional[str]) -> DataType:
    return OPENAPI_TYPE_MAP.get(openapi_type, DataType.UNKNOWN)


def _unescape_pointer_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def reference_name(ref: str) -> str:
    return _unescape_pointer_token(ref.rstrip("/").rsplit("/", 1)[-1])


class OpenAPISchemaConverter:
    """
    Builds a UniversalSchema from a parsed OpenAPI/Swagger document.

    Schema-level ``$ref``s are kept as reference stubs naming an entry of
    ``UniversalSchema.types``, so recursive definitions never inline.
    Parameter, response and request-body ``$ref``s are resolved against the
    document because they carry no shape of their own.
    """

    def __init__(self) -> None:
        self.logger = logger.bind(converter="openapi")
        self.warnings: List[str] = []
        self._document: Dict[str, Any] = {}

    def convert(self, document: Dict[str, Any], source_url: str) -> UniversalSchema:
        self.warnings = []
        self._document = document
        info = document.get("info") or {}

        types = self._extract_type_definitions(document)
        operations: List[Operation] = []
        for path, path_item in (document.get("paths") or {}).items():
            if not isinstance(path_item, dict):
                continue
            operations.extend(self._extract_operations(path, self._resolve(path_item)))

        discovered_at = utc_now()
        schema = UniversalSchema(
            id=generate_schema_id(APIProtocol.REST, source_url, discovered_at),
            name=str(info.get("title") or "Untitled API"),
            version=str(info.get("version") or "unknown"),
            description=info.get("description"),
            protocol=APIProtocol.REST,
            base_url=self._extract_base_url(document, source_url),
            operations=operations,
            types=types,
            authentication=self._extract_authentication(document),
            metadata=self._create_metadata(document),
            discovered_at=discovered_at,
            source_url=source_url,
        )
        self.logger.debug("Converted OpenAPI document", operations=len(operations), types=len(types), source_url=source_url)
        return schema

    # Types

    def _extract_type_definitions(self, document: Dict[str, Any]) -> Dict[str, SchemaField]:
        types: Dict[str, SchemaField] = {}
        component_schemas = (document.get("components") or {}).get("schemas") or {}
        for name, definition in component_schemas.items():
            types[name] = self.convert_schema(definition, name)
        for name, definition in (document.get("definitions") or {}).items():
            types[name] = self.convert_schema(definition, name)
        return types

    def convert_schema(self, schema: Dict[str, Any], name: str, required: bool = False) -> SchemaField:
        """Recursively converts an OpenAPI schema object into a SchemaField."""
        if not isinstance(schema, dict):
            return SchemaField(name=name, type=DataType.UNKNOWN, required=required)

        ref = schema.get("$ref")
        if isinstance(ref, str):
            return SchemaField.reference(
                name,
                reference_name(ref),
                required=required,
                description=schema.get("description"),
                metadata={"openapi": {"$ref": ref}},
            )

        data_type, nullable = self._schema_type(schema)
        openapi_metadata = {key: schema[key] for key in SCHEMA_METADATA_KEYS if key in schema}
        if nullable:
            openapi_metadata["nullable"] = True

        items = None
        if data_type == DataType.ARRAY and isinstance(schema.get("items"), dict):
            items = self.convert_schema(schema["items"], "item")

        properties = None
        if data_type == DataType.OBJECT and isinstance(schema.get("properties"), dict):
            required_list = schema.get("required")
            required_names = {n for n in required_list if isinstance(n, str)} if isinstance(required_list, list) else set()
            properties = {
                prop_name: self.convert_schema(prop_schema, prop_name, required=prop_name in required_names)
                for prop_name, prop_schema in schema["properties"].items()
            }

        return SchemaField(
            name=name,
            type=data_type,
            required=required,
            description=schema.get("description"),
            default_value=schema.get("default"),
            constraints=self._extract_constraints(schema),
            items=items,
            properties=properties,
            metadata={"openapi": openapi_metadata} if openapi_metadata else None,
        )

    def _schema_type(self, schema: Dict[str, Any]) -> tuple:
        declared = schema.get("type")
        nullable = False
        if isinstance(declared, list):
            # OpenAPI 3.1 allows ["string", "null"]
            non_null = [t for t in declared if t != "null"]
            nullable = len(non_null) != len(declared)
            declared = non_null[0] if non_null else "null"
        if declared is None:
            if "properties" in schema:
                return DataType.OBJECT, nullable
            if "items" in schema:
                return DataType.ARRAY, nullable
            return DataType.OBJECT, nullable
        return map_openapi_type(declared), nullable

    def _extract_constraints(self, schema: Dict[str, Any]) -> Optional[FieldConstraints]:
        values = {attr: schema[key] for key, attr in CONSTRAINT_KEYS.items() if schema.get(key) is not None}
        return FieldConstraints(**values) if values else None

    # Operations

    def _extract_operations(self, path: str, path_item: Dict[str, Any]) -> List[Operation]:
        operations = []
        for method_name in PATH_ITEM_METHODS:
            operation = path_item.get(method_name)
            if not isinstance(operation, dict):
                continue
            method = HTTPMethod(method_name.upper())
            operation_id = operation.get("operationId") or f"{method_name}_{re.sub(r'[^a-zA-Z0-9]', '_', path)}"
            openapi_metadata = {
                key: operation[key]
                for key in ("operationId", "consumes", "produces", "security")
                if operation.get(key) is not None
            }
            operations.append(Operation(
                id=operation_id,
                name=operation.get("summary") or f"{method.value} {path}",
                type=OperationType.ENDPOINT,
                method=method,
                path=path,
                description=operation.get("description"),
                parameters=self._extract_parameters(operation, path_item),
                responses=self._extract_responses(operation.get("responses") or {}),
                deprecated=bool(operation.get("deprecated", False)),
                tags=operation.get("tags"),
                metadata={"openapi": openapi_metadata} if openapi_metadata else None,
            ))
        return operations

    def _extract_parameters(self, operation: Dict[str, Any], path_item: Dict[str, Any]) -> List[Parameter]:
        # Operation-level parameters override path-level ones with the same name and location.
        merged: Dict[tuple, Dict[str, Any]] = {}
        for raw in (path_item.get("parameters") or []) + (operation.get("parameters") or []):
            param = self._resolve(raw)
            if not isinstance(param, dict) or "name" not in param:
                continue
            merged[(param["name"], param.get("in"))] = param

        parameters = [self._convert_parameter(param) for param in merged.values()]

        request_body = operation.get("requestBody")
        if isinstance(request_body, dict):
            body_parameter = self._convert_request_body(self._resolve(request_body))
            if body_parameter is not None:
                parameters.append(body_parameter)
        return parameters

    def _convert_parameter(self, param: Dict[str, Any]) -> Parameter:
        name = param["name"]
        required = bool(param.get("required", False))

        if isinstance(param.get("schema"), dict):
            field = self.convert_schema(param["schema"], name, required=required)
        elif isinstance(param.get("content"), dict) and param["content"]:
            media = next(iter(param["content"].values())) or {}
            field = self.convert_schema(media.get("schema") or {}, name, required=required)
        else:
            inline = {key: param[key] for key in INLINE_PARAMETER_SCHEMA_KEYS if key in param}
            inline.setdefault("type", "string")
            field = self.convert_schema(inline, name, required=required)
        if field.description is None and param.get("description"):
            field.description = param["description"]

        return Parameter(
            name=name,
            location=PARAMETER_LOCATION_MAP.get(param.get("in"), ParameterLocation.QUERY),
            schema_=field,
            required=required,
            description=param.get("description"),
            example=param.get("example"),
        )

    def _convert_request_body(self, request_body: Dict[str, Any]) -> Optional[Parameter]:
        content = request_body.get("content")
        if not isinstance(content, dict) or not content:
            return None
        content_type, media = next(iter(content.items()))
        if not isinstance(media, dict) or not isinstance(media.get("schema"), dict):
            return None
        required = bool(request_body.get("required", False))
        return Parameter(
            name="body",
            location=ParameterLocation.BODY,
            schema_=self.convert_schema(media["schema"], "body", required=required),
            required=required,
            description=request_body.get("description"),
            metadata={"contentType": content_type},
        )

    def _extract_responses(self, responses: Dict[str, Any]) -> List[Response]:
        result = []
        for status_code, raw in responses.items():
            response = self._resolve(raw)
            if not isinstance(response, dict):
                continue

            schema = None
            content = response.get("content")
            if isinstance(content, dict) and content:
                media = next(iter(content.values())) or {}
                if isinstance(media.get("schema"), dict):
                    schema = self.convert_schema(media["schema"], "response")
            elif isinstance(response.get("schema"), dict):
                schema = self.convert_schema(response["schema"], "response")

            result.append(Response(
                status_code=str(status_code),
                description=response.get("description"),
                schema_=schema,
                headers=self._extract_response_headers(response),
            ))
        return result

    def _extract_response_headers(self, response: Dict[str, Any]) -> Optional[Dict[str, SchemaField]]:
        headers = {}
        for name, raw in (response.get("headers") or {}).items():
            header = self._resolve(raw)
            if not isinstance(header, dict):
                continue
            if isinstance(header.get("schema"), dict):
                field = self.convert_schema(header["schema"], name)
            else:
                inline = {key: header[key] for key in INLINE_PARAMETER_SCHEMA_KEYS if key in header}
                inline.setdefault("type", "string")
                field = self.convert_schema(inline, name)
            if field.description is None and header.get("description"):
                field.description = header["description"]
            headers[name] = field
        return headers or None

    # References

    def _resolve(self, obj: Any) -> Any:
        """Follows a local JSON pointer ``$ref``; objects without one are returned unchanged."""
        if not isinstance(obj, dict) or not isinstance(obj.get("$ref"), str):
            return obj
        ref = obj["$ref"]
        if not ref.startswith("#/"):
            self.warnings.append(f"External reference not resolved: {ref}")
            return obj
        resolved: Any = self._document
        for token in ref[2:].split("/"):
            if not isinstance(resolved, dict):
                resolved = None
                break
            resolved = resolved.get(_unescape_pointer_token(token))
        if resolved is None:
            self.warnings.append(f"Unresolvable reference: {ref}")
            self.logger.warning("Unresolvable reference", ref=ref)
            return obj
        return resolved

    # Document-level details

    def _extract_base_url(self, document: Dict[str, Any], source_url: str) -> str:
        servers = document.get("servers")
        if isinstance(servers, list) and servers and isinstance(servers[0], dict) and servers[0].get("url"):
            return urljoin(source_url, servers[0]["url"])

        host = document.get("host")
        if host:
            schemes = document.get("schemes") or ["https"]
            return f"{schemes[0]}://{host}{document.get('basePath') or ''}"

        parsed = urlparse(source_url)
        if document.get("basePath"):
            return f"{parsed.scheme}://{parsed.netloc}{document['basePath']}"
        return f"{parsed.scheme}://{parsed.netloc}"

    def _extract_authentication(self, document: Dict[str, Any]) -> AuthenticationInfo:
        schemes = (document.get("components") or {}).get("securitySchemes") or document.get("securityDefinitions") or {}
        if not schemes:
            return AuthenticationInfo(type=AuthType.NONE)

        scheme_name, scheme = next(iter(schemes.items()))
        scheme = self._resolve(scheme) or {}
        scheme_type = scheme.get("type")
        description = scheme.get("description")

        if scheme_type == "apiKey":
            return AuthenticationInfo(
                type=AuthType.APIKEY,
                description=description,
                metadata={"scheme_name": scheme_name, "name": scheme.get("name"), "in": scheme.get("in")},
            )
        if scheme_type in ("http", "basic"):
            http_scheme = scheme.get("scheme", "basic")
            metadata = {"scheme_name": scheme_name, "scheme": http_scheme}
            if scheme.get("bearerFormat"):
                metadata["bearerFormat"] = scheme["bearerFormat"]
            return AuthenticationInfo(
                type=AuthType.BEARER if str(http_scheme).lower() == "bearer" else AuthType.BASIC,
                description=description,
                metadata=metadata,
            )
        if scheme_type == "oauth2":
            metadata = {"scheme_name": scheme_name}
            if scheme.get("flows"):
                metadata["flows"] = scheme["flows"]
            if scheme.get("flow"):
                metadata["flow"] = scheme["flow"]
            return AuthenticationInfo(
                type=AuthType.OAUTH2,
                description=description,
                scopes=self._extract_oauth2_scopes(scheme),
                metadata=metadata,
            )
        if scheme_type == "openIdConnect":
            return AuthenticationInfo(
                type=AuthType.OAUTH2,
                description=description,
                metadata={"scheme_name": scheme_name, "openIdConnectUrl": scheme.get("openIdConnectUrl")},
            )
        return AuthenticationInfo(type=AuthType.CUSTOM, description=description, metadata={"scheme_name": scheme_name, "type": scheme_type})

    @staticmethod
    def _extract_oauth2_scopes(scheme: Dict[str, Any]) -> List[str]:
        scopes: List[str] = []
        scope_maps = [flow.get("scopes") or {} for flow in (scheme.get("flows") or {}).values() if isinstance(flow, dict)]
        scope_maps.append(scheme.get("scopes") or {}) # Swagger 2.0 keeps scopes on the scheme itself
        for scope_map in scope_maps:
            for scope in scope_map:
                if scope not in scopes:
                    scopes.append(scope)
        return scopes

    @staticmethod
    def _create_metadata(document: Dict[str, Any]) -> SchemaMetadata:
        info = document.get("info") or {}
        components = document.get("components") or {}
        vendor_extensions = {key: value for key, value in document.items() if key.startswith("x-")}
        openapi_extension = {
            "version": document.get("openapi") or document.get("swagger"),
            "pathCount": len(document.get("paths") or {}),
            "tagCount": len(document.get("tags") or []),
            "hasServers": bool(document.get("servers")),
            "hasComponents": bool(components),
        }
        if vendor_extensions:
            openapi_extension["vendorExtensions"] = vendor_extensions
        return SchemaMetadata(
            contact=info.get("contact"),
            license=info.get("license"),
            external_docs=document.get("externalDocs"),
            extensions={"openapi": openapi_extension},
        )
