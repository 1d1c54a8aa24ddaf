"""
Schema storage backends and the factory that picks one from settings.
"""
from ..config import StorageSettings
from ..exceptions import ConfigurationError
from .base import SchemaStorage
from .file import FileStorage
from .memory import MemoryStorage


def create_storage(settings: StorageSettings) -> SchemaStorage:
    """Builds the backend named by ``settings.type``. The caller initializes it."""
    if settings.type == "memory":
        return MemoryStorage.from_settings(settings)
    if settings.type == "file":
        return FileStorage.from_settings(settings)
    raise ConfigurationError(f"Unsupported storage type: {settings.type}", context={"type": settings.type})


__all__ = ["FileStorage", "MemoryStorage", "SchemaStorage", "create_storage"]
