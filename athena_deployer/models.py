"""
Data structures shared by the reconcilers.

Declared specs are resolved once by the loader and never mutated. Remote
states are snapshots of what Glue reported at one point of a run.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import (
    CREATOR,
    CREATOR_KEY,
    DEFAULT_CATALOG,
    DEFAULT_WORKGROUP,
    HASH_KEY,
    STACK_KEY,
    TABLES_KEY,
)


VIRTUAL_VIEW = "VIRTUAL_VIEW"


def _quote(text: str) -> str:
    """Escape a value for use inside a single-quoted SQL literal."""
    return text.replace("'", "''")


@dataclass(frozen=True)
class TableSpec:
    """A declared table, fully resolved against its database defaults."""
    database: str
    name: str
    ddl: str
    output: str
    catalog: str = DEFAULT_CATALOG
    workgroup: str = DEFAULT_WORKGROUP
    keep_partitions: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.name}"


@dataclass(frozen=True)
class DatabaseSpec:
    """A declared database and its tables in configuration order."""
    name: str
    output: str
    catalog: str = DEFAULT_CATALOG
    workgroup: str = DEFAULT_WORKGROUP
    description: Optional[str] = None
    location: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)
    ddl_override: Optional[str] = None
    tables: Tuple[TableSpec, ...] = ()

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def provenance(self, stack_id: str) -> Dict[str, str]:
        """Properties stamped on the remote database, user properties first."""
        props = dict(self.properties)
        props[CREATOR_KEY] = CREATOR
        props[STACK_KEY] = stack_id
        props[TABLES_KEY] = ",".join(self.table_names)
        return props

    def ddl(self, stack_id: str) -> str:
        """CREATE DATABASE statement, unless the configuration supplied one."""
        if self.ddl_override:
            return self.ddl_override
        sql = f"CREATE DATABASE `{self.name}`"
        if self.description:
            sql += f" COMMENT '{_quote(self.description)}'"
        if self.location:
            sql += f" LOCATION '{_quote(self.location)}'"
        props = ", ".join(
            f"'{_quote(key)}' = '{_quote(value)}'"
            for key, value in self.provenance(stack_id).items()
        )
        return f"{sql} WITH DBPROPERTIES ({props})"


@dataclass(frozen=True)
class RemoteTableState:
    """What Glue reports for an existing table."""
    name: str
    partition_keys: Tuple[str, ...] = ()
    parameters: Dict[str, str] = field(default_factory=dict)
    table_type: Optional[str] = None

    @property
    def is_view(self) -> bool:
        return self.table_type == VIRTUAL_VIEW


@dataclass(frozen=True)
class RemoteDatabaseState:
    """What Glue reports for an existing database."""
    catalog: str
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PartitionSnapshot:
    """One partition: (key, value) pairs in partition-key order plus its location."""
    values: Tuple[Tuple[str, str], ...]
    location: str

    def to_dict(self) -> dict:
        return {
            "values": [{"name": k, "value": v} for k, v in self.values],
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PartitionSnapshot":
        return cls(
            values=tuple((v["name"], v["value"]) for v in data["values"]),
            location=data["location"],
        )


@dataclass(frozen=True)
class ProvenanceTag:
    """Fingerprint of the declared DDL and the stack that deployed it."""
    content_hash: str
    stack_id: str

    def as_parameters(self) -> Dict[str, str]:
        return {HASH_KEY: self.content_hash, STACK_KEY: self.stack_id}
