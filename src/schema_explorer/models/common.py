from enum import Enum

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class BasePydanticModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "use_enum_values": True,
        "alias_generator": to_camel,
    }

class APIProtocol(str, Enum):
    REST = "rest"
    GRAPHQL = "graphql"
    WEBSOCKET = "websocket"

class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

class DataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    UNKNOWN = "unknown"

class OperationType(str, Enum):
    ENDPOINT = "endpoint"
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"
    MESSAGE = "message"

class ParameterLocation(str, Enum):
    QUERY = "query"
    PATH = "path"
    HEADER = "header"
    BODY = "body"
    COOKIE = "cookie"

class AuthType(str, Enum):
    NONE = "none"
    APIKEY = "apikey"
    BEARER = "bearer"
    BASIC = "basic"
    OAUTH2 = "oauth2"
    CUSTOM = "custom"


def infer_data_type(value) -> DataType:
    """Maps a decoded JSON value onto the universal type vocabulary."""
    if value is None:
        return DataType.NULL
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        return DataType.INTEGER
    if isinstance(value, float):
        return DataType.NUMBER
    if isinstance(value, str):
        return DataType.STRING
    if isinstance(value, list):
        return DataType.ARRAY
    if isinstance(value, dict):
        return DataType.OBJECT
    return DataType.UNKNOWN
