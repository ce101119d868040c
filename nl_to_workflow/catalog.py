"""
Capability catalog implementations and loaders.

The catalog is loaded once and treated as immutable. A refresh builds a new
catalog and swaps it in wholesale through CatalogHolder.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from supabase import Client as SupabaseClient

from .config import CATALOG_SCHEMA, CATALOG_TABLE
from .interfaces import CapabilityCatalog
from .types import FunctionDescriptor

logger = logging.getLogger(__name__)


def descriptor_from_dict(app_name: str, data: Mapping[str, Any]) -> FunctionDescriptor:
    """Build a FunctionDescriptor from a catalog record."""
    function_id = data.get('function_id') or data.get('id')
    if not function_id:
        raise ValueError(f"Catalog entry for '{app_name}' has no function id")

    hints = data.get('keyword_hints') or data.get('use_cases') or []
    if isinstance(hints, str):
        hints = [hints]

    # Keep first occurrence order, drop duplicates
    seen = set()
    ordered_hints = []
    for hint in hints:
        key = str(hint).strip().lower()
        if key and key not in seen:
            seen.add(key)
            ordered_hints.append(key)

    return FunctionDescriptor(
        app_name=app_name,
        function_id=str(function_id),
        display_name=data.get('display_name') or data.get('name') or str(function_id),
        description=data.get('description', '') or '',
        keyword_hints=tuple(ordered_hints),
        category=data.get('category') or 'General',
        parameter_schema=dict(data.get('parameter_schema') or data.get('parameters') or {}),
        output_type=data.get('output_type'),
    )


class StaticCapabilityCatalog(CapabilityCatalog):
    """In-memory catalog built once from a versioned data source."""

    def __init__(
        self,
        functions: Mapping[str, Sequence[FunctionDescriptor]],
        version: str = "unversioned"
    ):
        self.version = version
        self._apps: List[str] = list(functions.keys())
        self._functions: Dict[str, tuple] = {
            app: tuple(descriptors) for app, descriptors in functions.items()
        }

    def list_functions(self, app_name: str) -> List[FunctionDescriptor]:
        return list(self._functions.get(app_name, ()))

    def list_apps(self) -> List[str]:
        return list(self._apps)

    def has_app(self, app_name: str) -> bool:
        return app_name in self._functions

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StaticCapabilityCatalog":
        """
        Build a catalog from a document of the form:

            {"version": "2025.08", "apps": {"Gmail": [{"function_id": ...}, ...]}}
        """
        apps = payload.get('apps')
        if not isinstance(apps, Mapping):
            raise ValueError("Catalog document must contain an 'apps' object")

        functions = {
            app_name: [descriptor_from_dict(app_name, entry) for entry in entries]
            for app_name, entries in apps.items()
        }
        return cls(functions, version=str(payload.get('version', 'unversioned')))

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]], version: str = "unversioned") -> "StaticCapabilityCatalog":
        """Build a catalog from flat rows that each carry an 'app_name'."""
        functions: Dict[str, List[FunctionDescriptor]] = {}
        for row in rows:
            app_name = row.get('app_name')
            if not app_name:
                logger.warning(f"Skipping catalog row without app_name: {row.get('function_id')}")
                continue
            functions.setdefault(app_name, []).append(descriptor_from_dict(app_name, row))
        return cls(functions, version=version)


def load_catalog_file(path: Union[str, Path]) -> StaticCapabilityCatalog:
    """Load a catalog from a JSON document on disk."""
    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)

    catalog = StaticCapabilityCatalog.from_dict(payload)
    logger.info(f"Loaded catalog {catalog.version} from {path}: {len(catalog.list_apps())} apps")
    return catalog


def load_catalog_from_supabase(
    supabase: SupabaseClient,
    table: str = CATALOG_TABLE,
    schema: str = CATALOG_SCHEMA,
    version: Optional[str] = None
) -> StaticCapabilityCatalog:
    """
    Load the whole catalog table in one read.

    Rows are ordered by (app_name, position) so catalog order is stable
    between loads.
    """
    result = supabase.schema(schema).table(table).select('*').order('app_name').order('position').execute()
    rows = result.data or []

    if version is None:
        versions = {row.get('catalog_version') for row in rows if row.get('catalog_version')}
        version = max(versions) if versions else "unversioned"

    catalog = StaticCapabilityCatalog.from_rows(rows, version=version)
    logger.info(f"Loaded catalog {catalog.version} from {schema}.{table}: {len(rows)} functions")
    return catalog


class CatalogHolder:
    """
    Single-writer holder for the process-wide catalog.

    Readers take the current reference without locking; a refresh replaces
    the reference in one assignment and never mutates the old catalog.
    """

    def __init__(self, catalog: CapabilityCatalog):
        self._catalog = catalog
        self._write_lock = threading.Lock()

    @property
    def current(self) -> CapabilityCatalog:
        return self._catalog

    def swap(self, catalog: CapabilityCatalog) -> CapabilityCatalog:
        """Install a new catalog and return the one it replaced."""
        with self._write_lock:
            previous = self._catalog
            self._catalog = catalog
        logger.info(
            f"Catalog swapped: {getattr(previous, 'version', '?')} -> {getattr(catalog, 'version', '?')}"
        )
        return previous
