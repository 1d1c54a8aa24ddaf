from .connector import COMMON_OPENAPI_PATHS, RESTConnector
from .converter import OpenAPISchemaConverter

__all__ = ["COMMON_OPENAPI_PATHS", "OpenAPISchemaConverter", "RESTConnector"]
