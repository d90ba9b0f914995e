"""
Partition backup and restore around table recreation.

Dropping an external table in Athena keeps the S3 data but loses every
partition registered in Glue. Before a table is recreated its partitions
are read into PartitionSnapshots, optionally written to a JSON side file,
and replayed afterwards with ALTER TABLE ... ADD IF NOT EXISTS PARTITION.
"""
import json
import os
from urllib.parse import quote
from typing import Iterable, Iterator, List, Optional

from .catalog import CatalogClient, paginate
from .config import MAX_QUERY_BYTES, get_logger
from .errors import PartitionTooLargeError
from .executor import QueryExecutor
from .models import PartitionSnapshot

logger = get_logger(__name__)


def partition_clause(snapshot: PartitionSnapshot) -> str:
    """PARTITION (`k` = 'v', ...) LOCATION '...'. Values are quoted as-is."""
    cols = ", ".join(f"`{name}` = '{value}'" for name, value in snapshot.values)
    return f"PARTITION ({cols}) LOCATION '{snapshot.location}'"


def iter_restore_statements(table: str, snapshots: Iterable[PartitionSnapshot],
                            limit: int = MAX_QUERY_BYTES) -> Iterator[str]:
    """
    Greedily pack partition clauses into ADD PARTITION statements.

    A clause that would push the current statement past `limit` UTF-8 bytes
    starts a new statement, so every yielded statement fits the limit.

    Raises:
        PartitionTooLargeError: a single clause cannot fit even on its own
    """
    header = f"ALTER TABLE `{table}` ADD IF NOT EXISTS"
    header_size = len(header.encode("utf-8"))
    parts: List[str] = []
    size = header_size

    for snapshot in snapshots:
        piece = " " + partition_clause(snapshot)
        piece_size = len(piece.encode("utf-8"))
        if header_size + piece_size > limit:
            raise PartitionTooLargeError(table, header_size + piece_size, limit)
        if parts and size + piece_size > limit:
            yield header + "".join(parts)
            parts = []
            size = header_size
        parts.append(piece)
        size += piece_size

    if parts:
        yield header + "".join(parts)


class PartitionArchiver:
    """Reads partitions out of Glue and writes them back through Athena."""

    def __init__(self, client: CatalogClient):
        self.client = client

    def backup(self, catalog: str, database: str, table: str) -> List[PartitionSnapshot]:
        """
        Snapshot every partition of `database.table`, in Glue's listing order.

        A table that does not exist has nothing to back up and yields [].
        """
        logger.info("%s.%s: backing up partitions", database, table)
        remote = self.client.get_table(catalog, database, table)
        if remote is None:
            logger.info("%s.%s: table does not exist, nothing to back up", database, table)
            return []

        keys = remote.partition_keys
        snapshots = [
            PartitionSnapshot(values=tuple(zip(keys, values)), location=location)
            for values, location in paginate(
                lambda token: self.client.get_partitions(catalog, database, table, token)
            )
        ]
        logger.info("%s.%s: %d partitions backed up", database, table, len(snapshots))
        return snapshots

    def restore(self, executor: QueryExecutor, database: str, table: str,
                snapshots: List[PartitionSnapshot]) -> int:
        """
        Re-register `snapshots` on `table`. Returns the number of statements run.
        """
        logger.info("%s.%s: restoring %d partitions", database, table, len(snapshots))
        if not snapshots:
            return 0
        count = 0
        for statement in iter_restore_statements(table, snapshots):
            executor.execute(statement)
            count += 1
        logger.info("%s.%s: partitions restored in %d statement(s)", database, table, count)
        return count


def _file_part(name: str) -> str:
    # "." is the field separator, so it is encoded along with "/" and "%"
    return quote(name, safe="").replace(".", "%2E")


class SnapshotStore:
    """
    JSON side files holding partition snapshots for crash recovery.

    One file per (catalog, database, table), so concurrent reconciliations
    of different tables never touch the same file.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def path(self, catalog: str, database: str, table: str) -> str:
        name = ".".join(_file_part(part) for part in (catalog, database, table))
        return os.path.join(self.directory, f"{name}.partitions.json")

    def save(self, catalog: str, database: str, table: str,
             snapshots: List[PartitionSnapshot]) -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = self.path(catalog, database, table)
        payload = {
            "catalog": catalog,
            "database": database,
            "table": table,
            "partitions": [s.to_dict() for s in snapshots],
        }
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh)
        logger.info("%s.%s: %d partitions saved to %s", database, table, len(snapshots), path)
        return path

    def load(self, catalog: str, database: str, table: str) -> Optional[List[PartitionSnapshot]]:
        path = self.path(catalog, database, table)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
        return [PartitionSnapshot.from_dict(p) for p in payload.get("partitions", [])]

    def discard(self, catalog: str, database: str, table: str) -> None:
        path = self.path(catalog, database, table)
        if os.path.exists(path):
            os.remove(path)
