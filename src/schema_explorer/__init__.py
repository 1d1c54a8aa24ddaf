"""Schema Explorer - discovers API schemas and normalizes them into one model.

Connects to REST (OpenAPI/Swagger), GraphQL and WebSocket endpoints, extracts
their contract and stores it as a protocol-neutral ``UniversalSchema``.
"""

__version__ = "0.1.0"

from .config import Config

__all__ = ["Config", "__version__"]
