"""
Runtime settings for the deployer
=================================
Centralizes tunables with environment variable support so the same
deployment document can be applied from a laptop or a CD pipeline.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVEL = logging.INFO


ROOT_LOGGER = "athena_deployer"


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    The stream handler lives on the package root logger so every module
    logger shares one handler and set_log_level() applies everywhere.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(LOG_LEVEL)
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the level of every deployer logger."""
    get_logger(ROOT_LOGGER).setLevel(level)


# =============================================================================
# PROTOCOL AND CATALOG CONSTANTS
# =============================================================================

DEFAULT_CATALOG = "AwsDataCatalog"
DEFAULT_WORKGROUP = "primary"

CREATOR = "athena-deployer"

# Parameter keys stamped on remote databases and tables
CREATOR_KEY = "creator"
STACK_KEY = "athena_deployer.stack"
HASH_KEY = "athena_deployer.ddl_hash"
TABLES_KEY = "athena_deployer.tables"

# Athena rejects query strings above this many bytes
MAX_QUERY_BYTES = 262144
# Glue GetPartitions page size ceiling
PARTITION_PAGE_SIZE = 1000

POLL_INITIAL_MS = 100
POLL_STEP_MS = 100
POLL_MAX_MS = 1000


# =============================================================================
# ENVIRONMENT VARIABLE HELPERS
# =============================================================================

def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer from environment variable."""
    try:
        return int(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


# =============================================================================
# SETTINGS DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Settings:
    """
    Immutable runtime settings for one deploy/remove run.

    Example:
        settings = Settings.from_env()
        settings = Settings.from_env(stack_id="billing-prod", max_parallel=4)
    """
    region: Optional[str] = None
    stack_id: str = ""

    # Where partition snapshots are written before a table is recreated.
    # None disables the side files.
    snapshot_dir: Optional[str] = None

    # Databases reconciled concurrently; 1 keeps the run sequential
    max_parallel: int = 1

    # Orphan handling
    remove_orphans: bool = True
    sweep_on_filter: bool = False

    # Replay a snapshot side file when the live table has nothing to back up
    recover_partitions: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Create Settings from environment variables with optional overrides.

        Environment variables:
            AWS_REGION, DEPLOYER_STACK_ID, DEPLOYER_SNAPSHOT_DIR,
            DEPLOYER_MAX_PARALLEL, DEPLOYER_REMOVE_ORPHANS,
            DEPLOYER_SWEEP_ON_FILTER, DEPLOYER_RECOVER_PARTITIONS

        Overrides whose value is None are ignored so CLI flags that were
        not given fall through to the environment.
        """
        defaults = {
            "region": get_env("AWS_REGION") or None,
            "stack_id": get_env("DEPLOYER_STACK_ID"),
            "snapshot_dir": get_env("DEPLOYER_SNAPSHOT_DIR") or None,
            "max_parallel": get_env_int("DEPLOYER_MAX_PARALLEL", 1),
            "remove_orphans": get_env_bool("DEPLOYER_REMOVE_ORPHANS", True),
            "sweep_on_filter": get_env_bool("DEPLOYER_SWEEP_ON_FILTER", False),
            "recover_partitions": get_env_bool("DEPLOYER_RECOVER_PARTITIONS", False),
        }
        defaults.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**defaults)
