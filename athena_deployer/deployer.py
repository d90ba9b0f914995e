"""
Top-level deploy and remove cycles.

Databases are independent units of work: with max_parallel > 1 they are
reconciled on a thread pool, otherwise one after the other. A failure in
one database is recorded on the report and never stops the others.
Orphan databases are swept once every declared database has been handled.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Tuple

from .catalog import CatalogClient
from .config import Settings, get_logger
from .database_reconciler import DatabaseOutcome, DatabaseReconciler
from .errors import ISOLATED_ERRORS, ConfigurationError
from .executor import QueryExecutor
from .loader import DeploymentConfig
from .models import DatabaseSpec
from .sweeper import OrphanSweeper, SweepResult
from .table_reconciler import TableOutcome

logger = get_logger(__name__)


@dataclass
class DeployReport:
    """Everything a deploy or remove run did, failed to do, or warned about."""
    databases: List[DatabaseOutcome] = field(default_factory=list)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)
    sweep: SweepResult = field(default_factory=SweepResult)

    @property
    def all_failures(self) -> List[Tuple[str, Exception]]:
        failures = list(self.failures)
        for database in self.databases:
            failures.extend(database.failures)
            failures.extend(database.sweep.failed)
        failures.extend(self.sweep.failed)
        return failures

    @property
    def warnings(self) -> List[TableOutcome]:
        return [t for d in self.databases for t in d.warnings]

    @property
    def ok(self) -> bool:
        return not self.all_failures


class Deployer:
    """
    Applies a DeploymentConfig to the remote catalog.

    The stack id from Settings wins over the one in the document; one of
    them must be set, since it is what marks resources as ours.
    """

    def __init__(
        self,
        settings: Settings,
        config: DeploymentConfig,
        client: CatalogClient,
        executor_factory: Callable[..., QueryExecutor] = QueryExecutor,
    ):
        stack_id = settings.stack_id or config.stack_id
        if not stack_id:
            raise ConfigurationError(
                "No stack id: set 'stack' in the deployment document or DEPLOYER_STACK_ID"
            )
        if settings.max_parallel < 1:
            raise ConfigurationError("max_parallel must be >= 1")
        self.settings = replace(settings, stack_id=stack_id)
        self.config = config
        self.client = client
        self.reconciler = DatabaseReconciler(client, self.settings, executor_factory)

    @property
    def stack_id(self) -> str:
        return self.settings.stack_id

    def _select(self, databases: Optional[Sequence[str]],
                tables: Optional[Sequence[str]]) -> List[DatabaseSpec]:
        selected = list(self.config.databases)
        if databases:
            unknown = sorted(set(databases) - {d.name for d in selected})
            if unknown:
                raise ConfigurationError(f"Unknown database(s): {', '.join(unknown)}")
            selected = [d for d in selected if d.name in databases]
        if tables:
            declared = {name for d in selected for name in d.table_names}
            unknown = sorted(set(tables) - declared)
            if unknown:
                raise ConfigurationError(f"Unknown table(s): {', '.join(unknown)}")
            selected = [d for d in selected if set(d.table_names) & set(tables)]
        return selected

    def _run(self, specs: List[DatabaseSpec], unit: Callable[[DatabaseSpec], Optional[DatabaseOutcome]],
             report: DeployReport) -> None:
        def guarded(spec: DatabaseSpec) -> None:
            try:
                outcome = unit(spec)
            except ISOLATED_ERRORS as exc:
                logger.error("%s: %s", spec.name, exc)
                report.failures.append((spec.name, exc))
                return
            if outcome is not None:
                report.databases.append(outcome)

        if self.settings.max_parallel == 1 or len(specs) <= 1:
            for spec in specs:
                guarded(spec)
            return
        with ThreadPoolExecutor(max_workers=self.settings.max_parallel) as pool:
            for future in [pool.submit(guarded, spec) for spec in specs]:
                future.result()

    def deploy(self, databases: Optional[Sequence[str]] = None,
               tables: Optional[Sequence[str]] = None) -> DeployReport:
        """
        Reconcile the declared databases, optionally narrowed by name.

        A narrowed run skips orphan sweeping unless `sweep_on_filter` is
        set. Sweeps always compare against the whole configuration.
        """
        selected = self._select(databases, tables)
        narrowed = bool(databases or tables)
        sweep = self.settings.remove_orphans and (not narrowed or self.settings.sweep_on_filter)

        logger.info("=" * 60)
        logger.info("Deploy: stack %s, %d database(s)", self.stack_id, len(selected))
        logger.info("=" * 60)

        report = DeployReport()
        only_tables = list(tables) if tables else None
        self._run(
            selected,
            lambda spec: self.reconciler.reconcile(spec, only_tables=only_tables, sweep_tables=sweep),
            report,
        )

        if sweep:
            sweeper = OrphanSweeper(self.client, self.stack_id)
            try:
                report.sweep = sweeper.sweep_databases(self.config.databases)
            except ISOLATED_ERRORS as exc:
                logger.error("Orphan database sweep failed: %s", exc)
                report.failures.append(("orphan sweep", exc))
        else:
            logger.info("Orphan sweeping skipped")

        self._log_summary("Deploy", report)
        return report

    def remove(self, databases: Optional[Sequence[str]] = None,
               tables: Optional[Sequence[str]] = None) -> DeployReport:
        """Drop the declared databases, or only the named tables."""
        selected = self._select(databases, tables)
        logger.info("Remove: stack %s, %d database(s)", self.stack_id, len(selected))

        report = DeployReport()

        def unit(spec: DatabaseSpec) -> None:
            only = [t for t in spec.table_names if t in tables] if tables else None
            self.reconciler.remove(spec, only_tables=only)

        self._run(selected, unit, report)
        self._log_summary("Remove", report)
        return report

    def _log_summary(self, action: str, report: DeployReport) -> None:
        for outcome in report.warnings:
            logger.warning("%s: previous definition kept (%s)", outcome.table, outcome.error)
        failures = report.all_failures
        if failures:
            for label, exc in failures:
                logger.error("%s failed for %s: %s", action, label, exc)
            logger.error("%s finished with %d failure(s)", action, len(failures))
        else:
            logger.info("%s complete", action)
