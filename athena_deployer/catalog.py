"""
Remote catalog access
=====================
CatalogClient is the seam between the reconcilers and AWS. GlueAthenaCatalog
implements it with boto3: Athena for query execution and catalog discovery,
Glue for table/partition/database metadata.

Not-found is reported as None, decided from the typed Glue error code and
never from message text. Every other ClientError propagates.

Listing methods take an explicit continuation token and return
(items, next_token); `paginate` turns one of them into a lazy iterator.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple, TypeVar

from botocore.exceptions import ClientError

from .config import DEFAULT_CATALOG, PARTITION_PAGE_SIZE, get_logger
from .errors import DeployerError, is_not_found
from .models import RemoteDatabaseState, RemoteTableState

logger = get_logger(__name__)

T = TypeVar("T")

Page = Tuple[List[T], Optional[str]]
# Positional partition values and the partition's storage location
RawPartition = Tuple[Tuple[str, ...], str]


@dataclass(frozen=True)
class QueryStatus:
    state: str
    reason: Optional[str] = None


class CatalogClient(Protocol):
    """Interface for the remote catalog and query services."""

    def submit_query(self, sql: str, database: Optional[str], catalog: str,
                     workgroup: str, output: str) -> str:
        """Start a query and return its execution id."""
        ...

    def get_query_status(self, execution_id: str) -> QueryStatus:
        ...

    def get_query_results(self, execution_id: str) -> List[List[Optional[str]]]:
        """Return every result row as a list of column values."""
        ...

    def get_table(self, catalog: str, database: str, name: str) -> Optional[RemoteTableState]:
        ...

    def list_tables(self, catalog: str, database: str,
                    page_token: Optional[str] = None) -> Page[RemoteTableState]:
        ...

    def get_partitions(self, catalog: str, database: str, table: str,
                       page_token: Optional[str] = None) -> Page[RawPartition]:
        ...

    def update_table_parameters(self, catalog: str, database: str, name: str,
                                parameters: Dict[str, str]) -> None:
        """Merge parameters into the table's existing parameters."""
        ...

    def delete_table(self, catalog: str, database: str, name: str) -> None:
        ...

    def get_database(self, catalog: str, name: str) -> Optional[RemoteDatabaseState]:
        ...

    def create_database(self, catalog: str, name: str, description: Optional[str],
                        location: Optional[str], parameters: Dict[str, str]) -> None:
        ...

    def update_database(self, catalog: str, name: str, description: Optional[str],
                        location: Optional[str], parameters: Dict[str, str]) -> None:
        """Replace the database's description, location and parameters."""
        ...

    def delete_database(self, catalog: str, name: str) -> None:
        ...

    def list_databases(self, catalog: str,
                       page_token: Optional[str] = None) -> Page[RemoteDatabaseState]:
        ...

    def list_catalogs(self, page_token: Optional[str] = None) -> Page[str]:
        """Names of the Glue-backed data catalogs visible to Athena."""
        ...


def paginate(fetch_page: Callable[[Optional[str]], Page[T]]) -> Iterator[T]:
    """
    Lazily walk a token-paginated listing until no continuation token is
    returned.

    Example:
        tables = list(paginate(lambda token: client.list_tables(cat, db, token)))
    """
    token = None
    while True:
        items, token = fetch_page(token)
        yield from items
        if not token:
            return


# Keys Glue accepts in a TableInput. GetTable returns more (CreateTime,
# CatalogId, VersionId, ...) which UpdateTable rejects.
_TABLE_INPUT_KEYS = (
    "Name", "Description", "Owner", "LastAccessTime", "LastAnalyzedTime",
    "Retention", "StorageDescriptor", "PartitionKeys", "ViewOriginalText",
    "ViewExpandedText", "TableType", "Parameters", "TargetTable",
)


def _table_state(table: dict) -> RemoteTableState:
    return RemoteTableState(
        name=table["Name"],
        partition_keys=tuple(k["Name"] for k in table.get("PartitionKeys") or []),
        parameters=dict(table.get("Parameters") or {}),
        table_type=table.get("TableType"),
    )


def _database_state(catalog: str, database: dict) -> RemoteDatabaseState:
    return RemoteDatabaseState(
        catalog=catalog,
        name=database["Name"],
        description=database.get("Description"),
        location=database.get("LocationUri"),
        parameters=dict(database.get("Parameters") or {}),
    )


def _database_input(name: str, description: Optional[str], location: Optional[str],
                    parameters: Dict[str, str]) -> dict:
    database_input = {"Name": name, "Parameters": dict(parameters)}
    if description is not None:
        database_input["Description"] = description
    if location is not None:
        database_input["LocationUri"] = location
    return database_input


class GlueAthenaCatalog:
    """
    boto3 implementation of CatalogClient.

    Athena catalog names are mapped to Glue catalog ids: the default
    AwsDataCatalog is the account's own Glue catalog, other GLUE-type data
    catalogs carry their id in the `catalog-id` parameter.
    """

    def __init__(self, glue, athena):
        self.glue = glue
        self.athena = athena
        self._catalog_ids: Dict[str, Dict[str, str]] = {}

    def _glue_catalog(self, catalog: str) -> Dict[str, str]:
        if catalog == DEFAULT_CATALOG:
            return {}
        if catalog not in self._catalog_ids:
            data_catalog = self.athena.get_data_catalog(Name=catalog)["DataCatalog"]
            if data_catalog.get("Type") != "GLUE":
                raise DeployerError(
                    f"Data catalog '{catalog}' is of type {data_catalog.get('Type')}, "
                    "only GLUE catalogs can be managed"
                )
            self._catalog_ids[catalog] = {
                "CatalogId": data_catalog["Parameters"]["catalog-id"],
            }
        return self._catalog_ids[catalog]

    # ------------------------------------------------------------------
    # Athena query execution
    # ------------------------------------------------------------------

    def submit_query(self, sql, database, catalog, workgroup, output):
        context = {"Catalog": catalog}
        if database:
            context["Database"] = database
        resp = self.athena.start_query_execution(
            QueryString=sql,
            QueryExecutionContext=context,
            ResultConfiguration={"OutputLocation": output},
            WorkGroup=workgroup,
        )
        return resp["QueryExecutionId"]

    def get_query_status(self, execution_id):
        resp = self.athena.get_query_execution(QueryExecutionId=execution_id)
        status = resp["QueryExecution"]["Status"]
        return QueryStatus(state=status["State"], reason=status.get("StateChangeReason"))

    def get_query_results(self, execution_id):
        rows = []
        token = None
        while True:
            kwargs = {"QueryExecutionId": execution_id}
            if token:
                kwargs["NextToken"] = token
            resp = self.athena.get_query_results(**kwargs)
            for row in resp["ResultSet"].get("Rows", []):
                rows.append([datum.get("VarCharValue") for datum in row.get("Data", [])])
            token = resp.get("NextToken")
            if not token:
                return rows

    # ------------------------------------------------------------------
    # Glue tables and partitions
    # ------------------------------------------------------------------

    def get_table(self, catalog, database, name):
        try:
            resp = self.glue.get_table(
                DatabaseName=database, Name=name, **self._glue_catalog(catalog)
            )
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise
        return _table_state(resp["Table"])

    def list_tables(self, catalog, database, page_token=None):
        kwargs = {"DatabaseName": database, **self._glue_catalog(catalog)}
        if page_token:
            kwargs["NextToken"] = page_token
        resp = self.glue.get_tables(**kwargs)
        return [_table_state(t) for t in resp.get("TableList", [])], resp.get("NextToken")

    def get_partitions(self, catalog, database, table, page_token=None):
        kwargs = {
            "DatabaseName": database,
            "TableName": table,
            "MaxResults": PARTITION_PAGE_SIZE,
            **self._glue_catalog(catalog),
        }
        if page_token:
            kwargs["NextToken"] = page_token
        resp = self.glue.get_partitions(**kwargs)
        partitions = [
            (tuple(p["Values"]), p.get("StorageDescriptor", {}).get("Location", ""))
            for p in resp.get("Partitions", [])
        ]
        return partitions, resp.get("NextToken")

    def update_table_parameters(self, catalog, database, name, parameters):
        ids = self._glue_catalog(catalog)
        existing = self.glue.get_table(DatabaseName=database, Name=name, **ids)["Table"]
        table_input = {k: existing[k] for k in _TABLE_INPUT_KEYS if k in existing}
        merged = dict(existing.get("Parameters") or {})
        merged.update(parameters)
        table_input["Parameters"] = merged
        self.glue.update_table(DatabaseName=database, TableInput=table_input, **ids)

    def delete_table(self, catalog, database, name):
        self.glue.delete_table(DatabaseName=database, Name=name, **self._glue_catalog(catalog))

    # ------------------------------------------------------------------
    # Glue databases and Athena catalogs
    # ------------------------------------------------------------------

    def get_database(self, catalog, name):
        try:
            resp = self.glue.get_database(Name=name, **self._glue_catalog(catalog))
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise
        return _database_state(catalog, resp["Database"])

    def create_database(self, catalog, name, description, location, parameters):
        self.glue.create_database(
            DatabaseInput=_database_input(name, description, location, parameters),
            **self._glue_catalog(catalog),
        )

    def update_database(self, catalog, name, description, location, parameters):
        self.glue.update_database(
            Name=name,
            DatabaseInput=_database_input(name, description, location, parameters),
            **self._glue_catalog(catalog),
        )

    def delete_database(self, catalog, name):
        self.glue.delete_database(Name=name, **self._glue_catalog(catalog))

    def list_databases(self, catalog, page_token=None):
        kwargs = dict(self._glue_catalog(catalog))
        if page_token:
            kwargs["NextToken"] = page_token
        resp = self.glue.get_databases(**kwargs)
        databases = [_database_state(catalog, d) for d in resp.get("DatabaseList", [])]
        return databases, resp.get("NextToken")

    def list_catalogs(self, page_token=None):
        kwargs = {}
        if page_token:
            kwargs["NextToken"] = page_token
        resp = self.athena.list_data_catalogs(**kwargs)
        names = []
        for summary in resp.get("DataCatalogsSummary", []):
            if summary.get("Type") == "GLUE":
                names.append(summary["CatalogName"])
            else:
                logger.debug("Skipping non-Glue data catalog %s", summary.get("CatalogName"))
        return names, resp.get("NextToken")
