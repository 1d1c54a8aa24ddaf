"""
File-system schema storage: one JSON document per schema plus an index.

Layout under ``base_directory``::

    index.json                      id -> IndexEntry summary
    <id>.json                       full UniversalSchema
    backups/<id>_<timestamp>.backup copies taken before overwrite/delete
"""
import json
import re
import shutil
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote

import structlog
from pydantic import ValidationError

from ..config import StorageSettings
from ..exceptions import StorageError
from ..models.schema import UniversalSchema, utc_now
from ..models.storage import IndexEntry, SchemaQuery, SchemaQueryResult, StorageStats
from .base import SchemaStorage, matches_index_filters, matches_search, paginate

logger = structlog.get_logger(__name__)

INDEX_FILE_NAME = "index.json"
BACKUP_DIR_NAME = "backups"
BACKUP_SUFFIX = ".backup"


def safe_file_stem(schema_id: str) -> str:
    """Percent-encodes everything but ``A-Za-z0-9_.-~``; distinct ids never share a file."""
    return quote(schema_id, safe="")


class FileStorage(SchemaStorage):
    name = "File Storage"
    version = "1.0.0"

    def __init__(
        self,
        base_directory: Union[str, Path] = "./schemas",
        enable_backups: bool = True,
        max_backups: int = 5,
        file_extension: str = ".json",
    ):
        self.base_directory = Path(base_directory)
        self.enable_backups = enable_backups
        self.max_backups = max_backups
        self.file_extension = file_extension
        self.index_file = self.base_directory / INDEX_FILE_NAME
        self.backup_directory = self.base_directory / BACKUP_DIR_NAME
        self._initialized = False
        self.logger = logger.bind(storage_type="file", base_directory=str(self.base_directory))

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "FileStorage":
        return cls(
            base_directory=settings.base_directory,
            enable_backups=settings.enable_backups,
            max_backups=settings.max_backups,
        )

    async def initialize(self) -> None:
        try:
            self.base_directory.mkdir(parents=True, exist_ok=True)
            if self.enable_backups:
                self.backup_directory.mkdir(exist_ok=True)
            if not self.index_file.exists():
                self.index_file.write_text("{}", encoding="utf-8")
        except OSError as e:
            raise StorageError(
                f"Failed to initialize file storage: {e}",
                context={"base_directory": str(self.base_directory)},
            ) from e
        self._initialized = True
        self.logger.debug("File storage initialized")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise StorageError("File storage not initialized. Call initialize() first.")

    def _schema_path(self, schema_id: str) -> Path:
        return self.base_directory / f"{safe_file_stem(schema_id)}{self.file_extension}"

    def _entry_path(self, schema_id: str, entry: IndexEntry) -> Path:
        return self.base_directory / (entry.file_path or self._schema_path(schema_id).name)

    def _load_index(self) -> Dict[str, IndexEntry]:
        try:
            raw = json.loads(self.index_file.read_text(encoding="utf-8"))
            return {schema_id: IndexEntry.model_validate(entry) for schema_id, entry in raw.items()}
        except (OSError, ValueError, ValidationError) as e:
            raise StorageError(f"Failed to load storage index: {e}", context={"index_file": str(self.index_file)}) from e

    def _save_index(self, index: Dict[str, IndexEntry]) -> None:
        payload = {schema_id: entry.model_dump(mode="json", by_alias=True) for schema_id, entry in index.items()}
        self.index_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def _read_schema(self, path: Path) -> UniversalSchema:
        return UniversalSchema.model_validate_json(path.read_text(encoding="utf-8"))

    def _write_schema(self, schema: UniversalSchema) -> Path:
        path = self._schema_path(schema.id)
        if path.exists():
            self._backup(path)
        path.write_text(schema.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        return path

    def _backup(self, path: Path) -> None:
        """Copies ``path`` into the backup directory. Failures are logged, never raised."""
        if not self.enable_backups:
            return
        timestamp = utc_now().isoformat().replace(":", "-").replace(".", "-")
        backup_path = self.backup_directory / f"{path.stem}_{timestamp}{BACKUP_SUFFIX}"
        try:
            self.backup_directory.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, backup_path)
            self._prune_backups(path.stem)
        except OSError as e:
            self.logger.warning("Failed to create backup", file=str(path), error=str(e))

    def _prune_backups(self, stem: str) -> None:
        pattern = re.compile(rf"^{re.escape(stem)}_\d{{4}}-\d{{2}}-\d{{2}}T.*{re.escape(BACKUP_SUFFIX)}$")
        backups = sorted(
            (p for p in self.backup_directory.iterdir() if p.is_file() and pattern.match(p.name)),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for stale in backups[self.max_backups:]:
            stale.unlink()
            self.logger.debug("Pruned backup", file=stale.name)

    async def store(self, schema: UniversalSchema) -> str:
        self._ensure_initialized()
        try:
            path = self._write_schema(schema)
            index = self._load_index()
            index[schema.id] = IndexEntry.from_schema(schema, file_path=path.name)
            self._save_index(index)
        except OSError as e:
            raise StorageError(f"Failed to store schema: {e}", context={"schema_id": schema.id}) from e
        self.logger.debug("Schema stored", schema_id=schema.id, file=path.name)
        return schema.id

    async def retrieve(self, schema_id: str) -> Optional[UniversalSchema]:
        self._ensure_initialized()
        entry = self._load_index().get(schema_id)
        if entry is None:
            return None
        path = self._entry_path(schema_id, entry)
        try:
            return self._read_schema(path)
        except FileNotFoundError:
            self.logger.warning("Indexed schema file is missing", schema_id=schema_id, file=str(path))
            return None
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to retrieve schema: {e}", context={"schema_id": schema_id}) from e

    async def update(self, schema_id: str, schema: UniversalSchema) -> bool:
        self._ensure_initialized()
        if schema_id not in self._load_index():
            return False
        if schema.id != schema_id:
            schema = schema.model_copy(update={"id": schema_id})
        await self.store(schema)
        return True

    async def delete(self, schema_id: str) -> bool:
        self._ensure_initialized()
        index = self._load_index()
        entry = index.pop(schema_id, None)
        if entry is None:
            return False
        path = self._entry_path(schema_id, entry)
        try:
            if path.exists():
                self._backup(path)
                path.unlink()
            self._save_index(index)
        except OSError as e:
            raise StorageError(f"Failed to delete schema: {e}", context={"schema_id": schema_id}) from e
        self.logger.debug("Schema deleted", schema_id=schema_id)
        return True

    def _present_entries(self, entries: List[IndexEntry]) -> List[IndexEntry]:
        """Drops index entries whose schema file has gone missing."""
        present = []
        for entry in entries:
            path = self._entry_path(entry.id, entry)
            if path.is_file():
                present.append(entry)
            else:
                self.logger.warning("Indexed schema file is missing", schema_id=entry.id, file=str(path))
        return present

    async def query(self, query: Optional[SchemaQuery] = None) -> SchemaQueryResult:
        """
        Filters on the index first. Only ``search`` needs full bodies, since
        descriptions are not indexed; otherwise just the requested page is read.
        """
        self._ensure_initialized()
        query = query or SchemaQuery()
        entries = [entry for entry in self._load_index().values() if matches_index_filters(entry, query)]
        entries = self._present_entries(entries)
        entries.sort(key=lambda e: e.discovered_at, reverse=True)

        try:
            if query.search:
                schemas = [self._read_schema(self._entry_path(entry.id, entry)) for entry in entries]
                schemas = [schema for schema in schemas if matches_search(schema, query.search)]
                page, has_more = paginate(schemas, query)
                return SchemaQueryResult(schemas=page, total_count=len(schemas), has_more=has_more)

            page_entries, has_more = paginate(entries, query)
            page = [self._read_schema(self._entry_path(entry.id, entry)) for entry in page_entries]
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to query schemas: {e}") from e
        return SchemaQueryResult(schemas=page, total_count=len(entries), has_more=has_more)

    async def list_ids(self) -> List[str]:
        self._ensure_initialized()
        return list(self._load_index())

    async def get_stats(self) -> StorageStats:
        self._ensure_initialized()
        index = self._load_index()
        by_protocol = Counter(entry.protocol for entry in index.values())
        try:
            size = directory_size(self.base_directory)
        except OSError as e:
            self.logger.warning("Could not compute storage size", error=str(e))
            size = 0
        return StorageStats(
            total_schemas=len(index),
            schemas_by_protocol=dict(by_protocol),
            storage_size=size,
            last_updated=utc_now(),
        )

    async def clear(self) -> None:
        """Removes every schema file and resets the index. Backups are kept."""
        self._ensure_initialized()
        index = self._load_index()
        try:
            for schema_id, entry in index.items():
                path = self._entry_path(schema_id, entry)
                path.unlink(missing_ok=True)
            self._save_index({})
        except OSError as e:
            raise StorageError(f"Failed to clear storage: {e}") from e
        self.logger.info("File storage cleared", removed=len(index))

    async def close(self) -> None:
        self._initialized = False


def directory_size(path: Path) -> int:
    return sum(item.stat().st_size for item in path.rglob("*") if item.is_file())
