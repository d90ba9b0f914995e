"""
Error taxonomy for the deployer.

Everything raised on purpose derives from DeployerError so the deploy cycle
can isolate per-table and per-database failures without swallowing
unrelated bugs. Boto errors that are not a typed not-found propagate
unchanged and are isolated through ISOLATED_ERRORS.
"""
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError


class DeployerError(Exception):
    """Base class for deployer failures."""


class ConfigurationError(DeployerError):
    """Malformed deployment configuration. Raised before any remote call."""


class QueryFailedError(DeployerError):
    """An Athena query reached FAILED, CANCELLED or an unexpected state."""

    def __init__(self, state: str, reason: str, execution_id: str, sql: str = ""):
        self.state = state
        self.reason = reason
        self.execution_id = execution_id
        self.sql = sql
        super().__init__(f"Athena query {state}: {reason} (id={execution_id})")


class RollbackFailedError(DeployerError):
    """Table creation failed and restoring the previous definition failed too."""

    def __init__(self, table: str, create_error: Exception, rollback_error: Exception):
        self.table = table
        self.create_error = create_error
        self.rollback_error = rollback_error
        super().__init__(
            f"{table}: create failed ({create_error}); "
            f"rollback to previous definition failed ({rollback_error})"
        )


class PartitionTooLargeError(DeployerError):
    """A single partition clause does not fit in one statement."""

    def __init__(self, table: str, size: int, limit: int):
        self.table = table
        self.size = size
        self.limit = limit
        super().__init__(
            f"{table}: partition clause of {size} bytes exceeds the {limit} byte query limit"
        )


def error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code carried by a botocore ClientError, if any."""
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return None
    return response.get("Error", {}).get("Code")


def is_not_found(error: Exception) -> bool:
    """True only for the typed Glue not-found error code."""
    return error_code(error) == "EntityNotFoundException"


# Failures contained to the table, database or resource being processed.
# BotoCoreError covers the client-side family (EndpointConnectionError,
# NoCredentialsError, ParamValidationError, ...) that is not a ClientError.
ISOLATED_ERRORS = (DeployerError, ClientError, BotoCoreError)
