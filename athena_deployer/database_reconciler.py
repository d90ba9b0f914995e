"""
Per-database convergence.

One DatabaseReconciler call is an independent unit of work: it builds its
own executors and never shares mutable state with other databases, so the
deployer can run several of them on a thread pool.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .catalog import CatalogClient, paginate
from .config import Settings, get_logger
from .errors import ISOLATED_ERRORS, DeployerError
from .executor import QueryExecutor
from .models import DatabaseSpec, RemoteTableState
from .partitions import SnapshotStore
from .sweeper import OrphanSweeper, SweepResult
from .table_reconciler import TableOutcome, TableReconciler

logger = get_logger(__name__)


@dataclass
class DatabaseOutcome:
    """Result of reconciling one database."""
    database: str
    created: bool = False
    tables: List[TableOutcome] = field(default_factory=list)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)
    sweep: SweepResult = field(default_factory=SweepResult)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.sweep.failed

    @property
    def warnings(self) -> List[TableOutcome]:
        return [t for t in self.tables if t.rolled_back]


class DatabaseReconciler:
    """
    Creates or updates a database and reconciles its declared tables in
    configuration order, so DDL may depend on tables and views declared
    before it.
    """

    def __init__(self, client: CatalogClient, settings: Settings,
                 executor_factory: Callable[..., QueryExecutor] = QueryExecutor):
        self.client = client
        self.settings = settings
        self.executor_factory = executor_factory
        self.store = SnapshotStore(settings.snapshot_dir) if settings.snapshot_dir else None

    def reconcile(self, spec: DatabaseSpec, only_tables: Optional[Sequence[str]] = None,
                  sweep_tables: bool = False) -> DatabaseOutcome:
        """
        Converge `spec`.

        Args:
            spec: Declared database
            only_tables: Restrict table reconciliation to these names
            sweep_tables: Drop tagged tables of this database that `spec`
                no longer declares. Always compared against every declared
                table, not just `only_tables`.

        Raises:
            QueryFailedError / botocore errors: the database itself could not be
                created or updated. Table failures are collected instead.
        """
        outcome = DatabaseOutcome(database=spec.name)
        logger.info("%s: reconciling database", spec.name)

        outcome.created = self._ensure_database(spec)

        remote_tables: Dict[str, RemoteTableState] = {
            t.name: t
            for t in paginate(lambda token: self.client.list_tables(spec.catalog, spec.name, token))
        }
        logger.info("%s: %d tables found remotely", spec.name, len(remote_tables))

        for table in spec.tables:
            if only_tables is not None and table.name not in only_tables:
                continue
            reconciler = TableReconciler(
                self.client,
                self._executor(spec, database=spec.name,
                               workgroup=table.workgroup, output=table.output),
                self.settings.stack_id,
                store=self.store,
                recover_partitions=self.settings.recover_partitions,
            )
            try:
                result = reconciler.reconcile(table, remote_tables.get(table.name))
            except ISOLATED_ERRORS as exc:
                logger.error("%s: reconciliation failed: %s", table.full_name, exc)
                outcome.failures.append((table.full_name, exc))
                continue
            if result.rolled_back:
                logger.warning("%s: kept previous definition, new DDL failed: %s",
                               table.full_name, result.error)
            outcome.tables.append(result)

        if sweep_tables:
            sweeper = OrphanSweeper(self.client, self.settings.stack_id)
            outcome.sweep = sweeper.sweep_tables(
                spec.catalog, spec.name, remote_tables.values(), spec.table_names
            )

        logger.info("%s: database reconciled", spec.name)
        return outcome

    def remove(self, spec: DatabaseSpec, only_tables: Optional[Sequence[str]] = None) -> None:
        """Drop the database with everything in it, or only the named tables."""
        if only_tables:
            executor = self._executor(spec, database=spec.name)
            for name in only_tables:
                remote = self.client.get_table(spec.catalog, spec.name, name)
                kind = "VIEW" if remote is not None and remote.is_view else "TABLE"
                logger.info("%s.%s: removing %s", spec.name, name, kind.lower())
                executor.execute(f"DROP {kind} IF EXISTS `{name}`")
            return
        logger.info("%s: removing database", spec.name)
        self._executor(spec).execute(f"DROP DATABASE IF EXISTS `{spec.name}` CASCADE")

    # ------------------------------------------------------------------

    def _executor(self, spec: DatabaseSpec, database: Optional[str] = None,
                  workgroup: Optional[str] = None, output: Optional[str] = None) -> QueryExecutor:
        return self.executor_factory(
            self.client,
            output=output or spec.output,
            catalog=spec.catalog,
            workgroup=workgroup or spec.workgroup,
            database=database,
        )

    def _ensure_database(self, spec: DatabaseSpec) -> bool:
        stack_id = self.settings.stack_id
        remote = self.client.get_database(spec.catalog, spec.name)
        created = remote is None
        if created:
            logger.info("%s: creating database", spec.name)
            self._executor(spec).execute(spec.ddl(stack_id))
            if spec.ddl_override is None:
                return True
            # A user supplied CREATE DATABASE carries none of the provenance properties
            remote = self.client.get_database(spec.catalog, spec.name)
            if remote is None:
                raise DeployerError(f"{spec.name}: database not found after CREATE DATABASE")
            logger.info("%s: stamping provenance", spec.name)
        else:
            logger.info("%s: updating database", spec.name)

        parameters = dict(remote.parameters)
        parameters.update(spec.provenance(stack_id))
        self.client.update_database(
            spec.catalog,
            spec.name,
            description=spec.description if spec.description is not None else remote.description,
            location=spec.location if spec.location is not None else remote.location,
            parameters=parameters,
        )
        return created
