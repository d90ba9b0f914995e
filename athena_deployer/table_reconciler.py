"""
Per-table convergence.

    ABSENT ─────────┐
                    ├─> RECREATING ─┬─> DONE
    STALE ──────────┘               └─> FAILED_ROLLBACK ─> DONE
    UNCHANGED ──────────────────────────────────────────> DONE

Drop-then-create is not atomic in Athena. Before an existing table is
dropped its running definition is captured with SHOW CREATE TABLE; if the
new DDL then fails, that definition is replayed so the table is left in its
last known good shape rather than missing.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .catalog import CatalogClient
from .config import get_logger
from .errors import QueryFailedError, RollbackFailedError
from .executor import QueryExecutor
from .fingerprint import fingerprint, has_changed
from .models import PartitionSnapshot, ProvenanceTag, RemoteTableState, TableSpec
from .partitions import PartitionArchiver, SnapshotStore

logger = get_logger(__name__)


class TableState(Enum):
    ABSENT = 'ABSENT'
    UNCHANGED = 'UNCHANGED'
    STALE = 'STALE'
    RECREATING = 'RECREATING'
    FAILED_ROLLBACK = 'FAILED_ROLLBACK'
    DONE = 'DONE'


@dataclass
class TableOutcome:
    """What one reconciliation pass did to a table."""
    table: str
    path: TableState
    state: TableState = TableState.DONE
    dropped: bool = False
    created: bool = False
    partitions_restored: int = 0
    error: Optional[Exception] = None

    @property
    def rolled_back(self) -> bool:
        return self.path == TableState.FAILED_ROLLBACK


class TableReconciler:
    """
    Converges one table at a time against a database-scoped executor.

    Args:
        client: Catalog access
        executor: QueryExecutor bound to the table's database
        stack_id: Deployment identity stamped on every reconciled table
        store: Optional side store for partition snapshots
        recover_partitions: Replay a snapshot side file left by an earlier
            run that died between archive and restore
    """

    def __init__(
        self,
        client: CatalogClient,
        executor: QueryExecutor,
        stack_id: str,
        store: Optional[SnapshotStore] = None,
        recover_partitions: bool = False,
    ):
        self.client = client
        self.executor = executor
        self.stack_id = stack_id
        self.archiver = PartitionArchiver(client)
        self.store = store
        self.recover_partitions = recover_partitions

    def reconcile(self, spec: TableSpec, remote: Optional[RemoteTableState]) -> TableOutcome:
        """
        Bring `spec` to the declared definition.

        Returns the outcome; a recreation that had to be rolled back is
        reported on the outcome (path FAILED_ROLLBACK) rather than raised.

        Raises:
            QueryFailedError: a step other than the rolled-back create failed
            RollbackFailedError: create failed and the rollback failed too
        """
        changed = has_changed(spec, remote)
        if remote is None:
            path = TableState.ABSENT
        elif changed:
            path = TableState.STALE
        else:
            path = TableState.UNCHANGED
        outcome = TableOutcome(table=spec.full_name, path=path, state=path)
        logger.info("%s: %s", spec.full_name, path.value.lower())

        snapshots = self._archive(spec, remote, changed)
        if changed:
            outcome.state = TableState.RECREATING
            self._recreate(spec, remote, outcome)

        if not outcome.rolled_back:
            # A rolled back table still runs the previous DDL and must keep
            # its old fingerprint so the next run retries the change.
            self._stamp(spec)

        outcome.partitions_restored = self._restore(spec, snapshots)
        outcome.state = TableState.DONE
        return outcome

    # ------------------------------------------------------------------

    def _archive(self, spec: TableSpec, remote: Optional[RemoteTableState],
                 changed: bool) -> List[PartitionSnapshot]:
        """
        Partitions to re-register after this pass.

        Live partitions are only read when the table is about to be
        recreated. A side file left by an interrupted run is picked up
        whether or not the table changed, since the interrupted run may
        already have stamped the new fingerprint.
        """
        if not spec.keep_partitions:
            return []

        snapshots: List[PartitionSnapshot] = []
        if changed and remote is not None and remote.partition_keys:
            snapshots = self.archiver.backup(spec.catalog, spec.database, spec.name)

        if self.recover_partitions and self.store is not None:
            stored = self.store.load(spec.catalog, spec.database, spec.name) or []
            if stored:
                logger.warning(
                    "%s: recovering %d partitions from %s",
                    spec.full_name, len(stored),
                    self.store.path(spec.catalog, spec.database, spec.name),
                )
                live = {s.values for s in snapshots}
                snapshots = snapshots + [s for s in stored if s.values not in live]

        if changed and snapshots and self.store is not None:
            self.store.save(spec.catalog, spec.database, spec.name, snapshots)
        return snapshots

    def _capture_live_definition(self, spec: TableSpec, remote: RemoteTableState) -> Optional[str]:
        kind = "VIEW" if remote.is_view else "TABLE"
        logger.info("%s: capturing live definition", spec.full_name)
        rows = self.executor.execute(f"SHOW CREATE {kind} `{spec.name}`", want_results=True) or []
        ddl = "\n".join(row[0] for row in rows if row and row[0] is not None).strip()
        if not ddl:
            logger.warning("%s: live definition is empty, rollback will not be possible",
                           spec.full_name)
            return None
        return ddl

    def _recreate(self, spec: TableSpec, remote: Optional[RemoteTableState],
                  outcome: TableOutcome) -> None:
        live_ddl = None
        if remote is not None:
            live_ddl = self._capture_live_definition(spec, remote)
            kind = "VIEW" if remote.is_view else "TABLE"
            logger.info("%s: removing %s", spec.full_name, kind.lower())
            self.executor.execute(f"DROP {kind} IF EXISTS `{spec.name}`")
            outcome.dropped = True

        logger.info("%s: creating table", spec.full_name)
        try:
            self.executor.execute(spec.ddl)
        except (QueryFailedError, ClientError, BotoCoreError) as create_error:
            if live_ddl is None:
                raise
            logger.warning(
                "%s: create failed (%s), restoring previous definition",
                spec.full_name, create_error,
            )
            try:
                self.executor.execute(live_ddl)
            except (QueryFailedError, ClientError, BotoCoreError) as rollback_error:
                raise RollbackFailedError(spec.full_name, create_error, rollback_error) from rollback_error
            outcome.path = TableState.FAILED_ROLLBACK
            outcome.error = create_error
            logger.warning("%s: previous definition restored", spec.full_name)
            return
        outcome.created = True

    def _stamp(self, spec: TableSpec) -> None:
        tag = ProvenanceTag(content_hash=fingerprint(spec.ddl), stack_id=self.stack_id)
        logger.info("%s: stamping provenance (hash=%s, stack=%s)",
                    spec.full_name, tag.content_hash, tag.stack_id)
        self.client.update_table_parameters(
            spec.catalog, spec.database, spec.name, tag.as_parameters()
        )

    def _restore(self, spec: TableSpec, snapshots: List[PartitionSnapshot]) -> int:
        if not snapshots:
            return 0
        refreshed = self.client.get_table(spec.catalog, spec.database, spec.name)
        if refreshed is None or not refreshed.partition_keys:
            logger.warning(
                "%s: table is no longer partitioned, %d partitions not restored",
                spec.full_name, len(snapshots),
            )
            return 0
        self.archiver.restore(self.executor, spec.database, spec.name, snapshots)
        if self.store is not None:
            self.store.discard(spec.catalog, spec.database, spec.name)
        return len(snapshots)
