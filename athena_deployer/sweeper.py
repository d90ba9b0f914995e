"""
Orphan removal.

Only resources stamped with this deployment's stack identity are eligible:
an untagged database or table was not created by this tool (or predates it)
and is never touched, whatever the declared configuration says.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Set, Tuple

from .catalog import CatalogClient, paginate
from .config import STACK_KEY, get_logger
from .errors import ISOLATED_ERRORS, DeployerError
from .models import DatabaseSpec, RemoteTableState

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Resources removed by a sweep and the ones that could not be."""
    removed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, Exception]] = field(default_factory=list)

    def merge(self, other: "SweepResult") -> None:
        self.removed.extend(other.removed)
        self.failed.extend(other.failed)


class OrphanSweeper:
    """Removes tagged resources that the configuration no longer declares."""

    def __init__(self, client: CatalogClient, stack_id: str):
        if not stack_id:
            raise DeployerError("An empty stack id would match every untagged resource")
        self.client = client
        self.stack_id = stack_id

    def owns(self, parameters: dict) -> bool:
        return parameters.get(STACK_KEY) == self.stack_id

    def sweep_databases(self, declared: Iterable[DatabaseSpec]) -> SweepResult:
        """Delete every database tagged with our stack id that is not declared."""
        keep: Set[Tuple[str, str]] = {(d.catalog, d.name) for d in declared}
        result = SweepResult()

        for catalog in paginate(self.client.list_catalogs):
            logger.info("Sweeping orphan databases in catalog %s", catalog)
            # Listed in full before deleting so removals cannot shift later pages
            databases = list(paginate(
                lambda token, catalog=catalog: self.client.list_databases(catalog, token)
            ))
            for database in databases:
                if (catalog, database.name) in keep or not self.owns(database.parameters):
                    continue
                label = f"{catalog}/{database.name}"
                logger.info("%s: removing orphan database", label)
                try:
                    self.client.delete_database(catalog, database.name)
                except ISOLATED_ERRORS as exc:
                    logger.error("%s: failed to remove orphan database: %s", label, exc)
                    result.failed.append((label, exc))
                    continue
                result.removed.append(label)
        return result

    def sweep_tables(self, catalog: str, database: str,
                     remote_tables: Iterable[RemoteTableState],
                     declared_tables: Iterable[str]) -> SweepResult:
        """Drop tables of `database` tagged with our stack id that are not declared."""
        keep = set(declared_tables)
        result = SweepResult()

        for table in remote_tables:
            if table.name in keep or not self.owns(table.parameters):
                continue
            label = f"{database}.{table.name}"
            logger.info("%s: removing orphan table", label)
            try:
                self.client.delete_table(catalog, database, table.name)
            except ISOLATED_ERRORS as exc:
                logger.error("%s: failed to remove orphan table: %s", label, exc)
                result.failed.append((label, exc))
                continue
            result.removed.append(label)
        return result
