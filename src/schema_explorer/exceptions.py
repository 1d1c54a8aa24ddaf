"""
Error taxonomy shared by connectors, storage backends and the explorer.
"""
from typing import Any, Dict, Optional


class ExplorerError(Exception):
    """Base class for all explorer errors. Carries a stable code and free-form context."""

    code = "EXPLORER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}


class ExplorerConnectionError(ExplorerError):
    """Raised when an endpoint cannot be reached (network failure, timeout, bad status)."""
    code = "CONNECTION_ERROR"


class AuthenticationError(ExplorerError):
    """Raised when an endpoint rejects the request with 401/403."""
    code = "AUTHENTICATION_ERROR"


class SchemaParsingError(ExplorerError):
    """Raised when a fetched document cannot be parsed or is not the expected kind of document."""
    code = "SCHEMA_PARSING_ERROR"


class SchemaValidationError(ExplorerError):
    """Raised when a parsed document is missing required content."""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[list] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context=context)
        self.errors = errors or []


class ConfigurationError(ExplorerError):
    """Raised for invalid configuration or unknown protocols."""
    code = "CONFIGURATION_ERROR"


class ConnectorError(ExplorerError):
    """Raised for unexpected faults inside a connector."""
    code = "CONNECTOR_ERROR"


class IntrospectionError(ExplorerError):
    """Raised for unexpected faults while introspecting an endpoint."""
    code = "INTROSPECTION_ERROR"


class StorageError(ExplorerError):
    """Raised for any failure in a storage backend."""
    code = "STORAGE_ERROR"


class CodeGenerationError(ExplorerError):
    """Reserved for code generation built on top of stored schemas."""
    code = "CODE_GENERATION_ERROR"


# Errors that connectors report as failed results instead of raising.
RECOVERABLE_ERRORS = (
    ExplorerConnectionError,
    AuthenticationError,
    SchemaParsingError,
    SchemaValidationError,
)
