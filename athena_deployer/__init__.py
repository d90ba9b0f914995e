"""
Declarative Athena/Glue schema deployment.
"""
from .catalog import CatalogClient, GlueAthenaCatalog, QueryStatus, paginate
from .config import Settings, get_logger
from .database_reconciler import DatabaseOutcome, DatabaseReconciler
from .deployer import Deployer, DeployReport
from .errors import (
    ConfigurationError,
    DeployerError,
    PartitionTooLargeError,
    QueryFailedError,
    RollbackFailedError,
)
from .executor import QueryExecutor
from .fingerprint import fingerprint, has_changed
from .loader import DeploymentConfig, load_config, parse_config
from .models import (
    DatabaseSpec,
    PartitionSnapshot,
    ProvenanceTag,
    RemoteDatabaseState,
    RemoteTableState,
    TableSpec,
)
from .partitions import PartitionArchiver, SnapshotStore
from .sweeper import OrphanSweeper, SweepResult
from .table_reconciler import TableOutcome, TableReconciler, TableState

__all__ = [
    'CatalogClient',
    'GlueAthenaCatalog',
    'QueryStatus',
    'paginate',
    'Settings',
    'get_logger',
    'DatabaseOutcome',
    'DatabaseReconciler',
    'Deployer',
    'DeployReport',
    'ConfigurationError',
    'DeployerError',
    'PartitionTooLargeError',
    'QueryFailedError',
    'RollbackFailedError',
    'QueryExecutor',
    'fingerprint',
    'has_changed',
    'DeploymentConfig',
    'load_config',
    'parse_config',
    'DatabaseSpec',
    'PartitionSnapshot',
    'ProvenanceTag',
    'RemoteDatabaseState',
    'RemoteTableState',
    'TableSpec',
    'PartitionArchiver',
    'SnapshotStore',
    'OrphanSweeper',
    'SweepResult',
    'TableOutcome',
    'TableReconciler',
    'TableState',
]
