"""
Deployment document loader
==========================
Turns the YAML deployment document into fully resolved DatabaseSpec and
TableSpec records. Defaults cascade root -> database -> table here, once,
so the reconcilers never resolve defaults themselves.

Example document:

    stack: billing-prod
    output: s3://athena-results/billing/
    databases:
      - name: analytics
        description: Billing analytics
        tables:
          - name: events
            ddl_file: ddl/events.sql
          - name: daily_totals
            keep_partitions: false
            ddl: |
              CREATE EXTERNAL TABLE daily_totals (...)

Every problem is reported as ConfigurationError before anything is sent
to AWS.
"""
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

import yaml

from .config import DEFAULT_CATALOG, DEFAULT_WORKGROUP
from .errors import ConfigurationError
from .models import DatabaseSpec, TableSpec


@dataclass(frozen=True)
class DeploymentConfig:
    """The parsed document: an optional stack id and the declared databases."""
    databases: Tuple[DatabaseSpec, ...]
    stack_id: Optional[str] = None

    def database(self, name: str) -> Optional[DatabaseSpec]:
        return next((d for d in self.databases if d.name == name), None)


def _require_mapping(value, where: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where} must be a mapping")
    return value


def _optional_str(value, where: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"{where} must be a string")
    return value


def _read_ddl_file(path: str, base_dir: str, where: str) -> str:
    full_path = path if os.path.isabs(path) else os.path.join(base_dir, path)
    try:
        with open(full_path, "r", encoding="utf-8") as fh:
            return fh.read()
    except OSError as exc:
        raise ConfigurationError(f"{where}: cannot read ddl_file {full_path}: {exc}") from exc


def _parse_table(raw, db: dict, index: int, base_dir: str) -> TableSpec:
    where = f"databases[{db['name']}].tables[{index}]"
    raw = _require_mapping(raw, where)

    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"{where}: 'name' is required")

    ddl = raw.get("ddl")
    if ddl is None and raw.get("ddl_file"):
        ddl = _read_ddl_file(raw["ddl_file"], base_dir, f"{where} ({name})")
    if not ddl or not isinstance(ddl, str) or not ddl.strip():
        raise ConfigurationError(f"{where} ({name}): 'ddl' is required")

    keep_partitions = raw.get("keep_partitions", True)
    if not isinstance(keep_partitions, bool):
        raise ConfigurationError(f"{where} ({name}): 'keep_partitions' must be a boolean")

    return TableSpec(
        database=db["name"],
        name=name,
        ddl=ddl,
        catalog=db["catalog"],
        workgroup=_optional_str(raw.get("workgroup"), f"{where}.workgroup") or db["workgroup"],
        output=_optional_str(raw.get("output"), f"{where}.output") or db["output"],
        keep_partitions=keep_partitions,
    )


def _parse_database(raw, defaults: dict, index: int, base_dir: str) -> DatabaseSpec:
    where = f"databases[{index}]"
    raw = _require_mapping(raw, where)

    name = raw.get("name") or raw.get("database")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"{where}: 'name' is required")

    resolved = {
        "name": name,
        "catalog": _optional_str(raw.get("catalog"), f"{where}.catalog") or defaults["catalog"],
        "workgroup": _optional_str(raw.get("workgroup"), f"{where}.workgroup") or defaults["workgroup"],
        "output": _optional_str(raw.get("output"), f"{where}.output") or defaults["output"],
    }
    if not resolved["output"]:
        raise ConfigurationError(f"{where} ({name}): 'output' is empty")

    properties = _require_mapping(raw.get("properties") or {}, f"{where}.properties")

    raw_tables = raw.get("tables") or []
    if not isinstance(raw_tables, list):
        raise ConfigurationError(f"{where} ({name}): 'tables' must be a list")
    tables = [_parse_table(t, resolved, i, base_dir) for i, t in enumerate(raw_tables)]

    seen = set()
    for table in tables:
        if table.name in seen:
            raise ConfigurationError(f"{where} ({name}): duplicate table '{table.name}'")
        seen.add(table.name)

    return DatabaseSpec(
        name=name,
        output=resolved["output"],
        catalog=resolved["catalog"],
        workgroup=resolved["workgroup"],
        description=_optional_str(raw.get("description"), f"{where}.description"),
        location=_optional_str(raw.get("location"), f"{where}.location"),
        properties={str(k): str(v) for k, v in properties.items()},
        ddl_override=_optional_str(raw.get("ddl"), f"{where}.ddl"),
        tables=tuple(tables),
    )


def parse_config(document, base_dir: str = ".") -> DeploymentConfig:
    """Validate an already-parsed document and resolve every default."""
    if document is None:
        return DeploymentConfig(databases=())
    document = _require_mapping(document, "deployment document")

    defaults = {
        "catalog": _optional_str(document.get("catalog"), "catalog") or DEFAULT_CATALOG,
        "workgroup": _optional_str(document.get("workgroup"), "workgroup") or DEFAULT_WORKGROUP,
        "output": _optional_str(document.get("output"), "output"),
    }

    raw_databases = document.get("databases") or []
    if not isinstance(raw_databases, list):
        raise ConfigurationError("'databases' must be a list of databases")

    databases: List[DatabaseSpec] = [
        _parse_database(d, defaults, i, base_dir) for i, d in enumerate(raw_databases)
    ]

    seen = set()
    for database in databases:
        key = (database.catalog, database.name)
        if key in seen:
            raise ConfigurationError(f"duplicate database '{database.name}' in catalog {database.catalog}")
        seen.add(key)

    return DeploymentConfig(
        databases=tuple(databases),
        stack_id=_optional_str(document.get("stack"), "stack"),
    )


def load_config(path: str) -> DeploymentConfig:
    """Read and validate a YAML deployment document."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Deployment document not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"YAML parse error in {path}: {exc}") from exc
    return parse_config(document, base_dir=os.path.dirname(os.path.abspath(path)))
