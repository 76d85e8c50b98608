"""Node-type catalog access: repository protocol, YAML catalog and schema cache."""

from __future__ import annotations

import difflib
import hashlib
import json
import logging
import threading
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Any, Iterable, Protocol, runtime_checkable

import jsonschema
import yaml
from pydantic import ValidationError

from flowguard.core.errors import CatalogError
from flowguard.core.models import NodeTypeSchema
from flowguard.core.settings import PACKAGE_DIR

logger = logging.getLogger(__name__)

# Full package prefixes used inside workflow documents -> short catalog prefixes
TYPE_PREFIXES = {
    "n8n-nodes-base.": "nodes-base.",
    "@n8n/n8n-nodes-langchain.": "nodes-langchain.",
}


def normalize_node_type(node_type: str) -> str:
    """Map a workflow node type to the catalog's short form.

    ``n8n-nodes-base.httpRequest`` -> ``nodes-base.httpRequest``. Names that are
    already short, or belong to an unknown package, are returned unchanged.
    """
    for full, short in TYPE_PREFIXES.items():
        if node_type.startswith(full):
            return short + node_type[len(full) :]
    return node_type


def denormalize_node_type(node_type: str) -> str:
    """Inverse of :func:`normalize_node_type`, used for fix suggestions."""
    for full, short in TYPE_PREFIXES.items():
        if node_type.startswith(short):
            return full + node_type[len(short) :]
    return node_type


@runtime_checkable
class NodeTypeRepository(Protocol):
    """Source of node-type schemas.

    ``catalog_version`` must change whenever the served schemas change so that
    cached schemas are invalidated.
    """

    catalog_version: str

    def get_node_type(self, node_type: str) -> NodeTypeSchema | None: ...

    def list_node_types(self) -> list[str]: ...


class InMemoryNodeTypeRepository:
    """Repository backed by a dict of already parsed schemas."""

    def __init__(
        self,
        schemas: Iterable[NodeTypeSchema | dict[str, Any]] = (),
        catalog_version: str | None = None,
    ) -> None:
        self._base_version = catalog_version or f"memory-{uuid.uuid4().hex[:8]}"
        self._revision = 0
        self._schemas: dict[str, NodeTypeSchema] = {}
        for schema in schemas:
            self._store(schema)

    @property
    def catalog_version(self) -> str:
        if self._revision == 0:
            return self._base_version
        return f"{self._base_version}+{self._revision}"

    def _store(self, schema: NodeTypeSchema | dict[str, Any]) -> NodeTypeSchema:
        if isinstance(schema, dict):
            schema = NodeTypeSchema.model_validate(schema)
        key = normalize_node_type(schema.node_type)
        self._schemas[key] = schema
        return schema

    def register(self, schema: NodeTypeSchema | dict[str, Any]) -> NodeTypeSchema:
        """Add or replace a schema; bumps the catalog version."""
        stored = self._store(schema)
        self._revision += 1
        return stored

    def get_node_type(self, node_type: str) -> NodeTypeSchema | None:
        return self._schemas.get(normalize_node_type(node_type))

    def list_node_types(self) -> list[str]:
        return sorted(self._schemas)


class CatalogLoader:
    """Load a node-type catalog from YAML and validate it against the bundled schema."""

    DEFAULT_CATALOG = PACKAGE_DIR / "config/node_types.yaml"
    SCHEMA_PATH = PACKAGE_DIR / "config/catalog_schema.json"

    def __init__(self, schema_path: Path | None = None) -> None:
        with open(schema_path or self.SCHEMA_PATH, encoding="utf-8") as f:
            self._schema = json.load(f)

    def load(self, path: Path | None = None) -> InMemoryNodeTypeRepository:
        """Parse a catalog file into a repository.

        Raises:
            CatalogError: If the file is unreadable or fails validation.
        """
        source = path or self.DEFAULT_CATALOG
        try:
            content = Path(source).read_bytes()
            data = yaml.safe_load(content)
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(f"Cannot read catalog {source}: {e}") from e

        try:
            jsonschema.validate(data, self._schema)
        except jsonschema.ValidationError as e:
            raise CatalogError(
                f"Catalog validation failed in {source}: {e.message}\n"
                f"Path: {' -> '.join(str(p) for p in e.absolute_path)}"
            ) from e

        schemas = []
        for index, entry in enumerate(data["node_types"]):
            try:
                schemas.append(NodeTypeSchema.model_validate(entry))
            except ValidationError as e:
                raise CatalogError(f"Invalid node type #{index} in {source}: {e}") from e

        version = str(data.get("version", "unversioned"))
        # Same name and version but another file or other content must not share cache entries
        digest = hashlib.sha256(str(Path(source).resolve()).encode() + b"\0" + content).hexdigest()
        logger.info(f"Loaded {len(schemas)} node types from {source} (version {version})")
        return InMemoryNodeTypeRepository(
            schemas, catalog_version=f"{Path(source).name}@{version}+{digest[:12]}"
        )


def load_default_catalog(path: Path | None = None) -> InMemoryNodeTypeRepository:
    return CatalogLoader().load(path)


class SchemaCache:
    """Process-wide cache of node-type lookups, scoped per catalog version.

    Entries are keyed by (catalog version, normalized type) so a reloaded
    catalog never serves schemas from the previous version. Only the most
    recently used versions are retained.
    """

    MAX_VERSIONS = 4

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._versions: OrderedDict[str, dict[str, NodeTypeSchema | None]] = OrderedDict()

    def get(self, repository: NodeTypeRepository, node_type: str) -> NodeTypeSchema | None:
        normalized = normalize_node_type(node_type)
        version = repository.catalog_version
        with self._lock:
            entries = self._versions.get(version)
            if entries is not None and normalized in entries:
                self._versions.move_to_end(version)
                return entries[normalized]

        schema = repository.get_node_type(normalized)
        with self._lock:
            entries = self._versions.setdefault(version, {})
            entries[normalized] = schema
            self._versions.move_to_end(version)
            while len(self._versions) > self.MAX_VERSIONS:
                evicted, _ = self._versions.popitem(last=False)
                logger.debug(f"Evicted cached schemas for catalog version {evicted}")
        return schema

    def clear(self) -> None:
        with self._lock:
            self._versions.clear()

    def cached_versions(self) -> list[str]:
        with self._lock:
            return list(self._versions)


schema_cache = SchemaCache()


def suggest_node_types(repository: NodeTypeRepository, node_type: str, limit: int = 3) -> list[str]:
    """Catalog types whose short name resembles ``node_type``."""
    known = repository.list_node_types()
    by_short = {t.rsplit(".", 1)[-1].lower(): t for t in known}
    short = normalize_node_type(node_type).rsplit(".", 1)[-1].lower()
    matches = difflib.get_close_matches(short, list(by_short), n=limit, cutoff=0.6)
    return [denormalize_node_type(by_short[m]) for m in matches]
