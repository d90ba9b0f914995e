"""
PyTest fixtures shared by the deployer tests.

FakeCatalog is an in-memory stand-in for Glue + Athena implementing the
CatalogClient protocol. It understands just enough of the SQL the deployer
emits (CREATE/DROP DATABASE, CREATE/DROP TABLE and VIEW, SHOW CREATE,
ALTER TABLE ADD PARTITION) to apply its effects to the in-memory catalog,
and records every call so tests can assert on the exact operations.
"""

import os
import itertools
import re

import pytest
from botocore.exceptions import ClientError

from athena_deployer.catalog import QueryStatus
from athena_deployer.config import DEFAULT_CATALOG, Settings
from athena_deployer.executor import QueryExecutor
from athena_deployer.models import RemoteDatabaseState, RemoteTableState, TableSpec


_CREATE_DATABASE = re.compile(r"^\s*CREATE (?:DATABASE|SCHEMA) (?:IF NOT EXISTS )?`?([\w]+)`?", re.I)
_DROP_DATABASE = re.compile(r"^\s*DROP (?:DATABASE|SCHEMA) IF EXISTS `?([\w]+)`?", re.I)
_CREATE_TABLE = re.compile(
    r"^\s*CREATE (?:EXTERNAL )?TABLE (?:IF NOT EXISTS )?`?(?:[\w]+\.)?([\w]+)`?", re.I
)
_CREATE_VIEW = re.compile(r"^\s*CREATE (?:OR REPLACE )?VIEW `?(?:[\w]+\.)?([\w]+)`?", re.I)
_DROP_TABLE = re.compile(r"^\s*DROP (TABLE|VIEW) IF EXISTS `?([\w]+)`?", re.I)
_SHOW_CREATE = re.compile(r"^\s*SHOW CREATE (?:TABLE|VIEW) `?([\w]+)`?", re.I)
_ADD_PARTITIONS = re.compile(r"^\s*ALTER TABLE `?([\w]+)`? ADD IF NOT EXISTS", re.I)
_PARTITIONED_BY = re.compile(r"PARTITIONED BY \(([^)]*)\)", re.I)
_PARTITION = re.compile(r"PARTITION \(([^)]*)\) LOCATION '([^']*)'")
_PARTITION_VALUE = re.compile(r"`(\w+)` = '([^']*)'")
_PROPERTY = re.compile(r"'([^']*)' = '([^']*)'")


class FakeCatalog:
    """In-memory CatalogClient. Page sizes are small to exercise pagination."""

    def __init__(self, page_size=2, pending_polls=1):
        self.page_size = page_size
        self.pending_polls = pending_polls
        self.databases = {}
        self.tables = {}
        self.catalogs = [DEFAULT_CATALOG]
        self.queries = []
        self.calls = []
        self.fail_queries = []
        self.fail_deletes = set()
        self._executions = {}
        self._ids = itertools.count(1)

    # -- seeding helpers ---------------------------------------------------

    def add_database(self, name, catalog=DEFAULT_CATALOG, parameters=None, description=None):
        self.databases[(catalog, name)] = {
            "description": description,
            "location": None,
            "parameters": dict(parameters or {}),
        }

    def add_table(self, database, name, ddl="CREATE EXTERNAL TABLE t (id string)",
                  partition_keys=(), parameters=None, partitions=(), catalog=DEFAULT_CATALOG,
                  table_type="EXTERNAL_TABLE"):
        self.tables[(catalog, database, name)] = {
            "ddl": ddl,
            "partition_keys": tuple(partition_keys),
            "parameters": dict(parameters or {}),
            "partitions": list(partitions),
            "table_type": table_type,
        }

    def table(self, database, name, catalog=DEFAULT_CATALOG):
        return self.tables.get((catalog, database, name))

    def fail_when(self, fragment, reason="Simulated failure", times=None):
        """Make queries containing `fragment` end FAILED (`times` times, or always)."""
        self.fail_queries.append({"fragment": fragment, "reason": reason, "times": times})

    def queries_matching(self, prefix):
        return [q for q in self.queries if q["sql"].lstrip().upper().startswith(prefix.upper())]

    def method_calls(self, method):
        return [args for name, args in self.calls if name == method]

    # -- query execution -----------------------------------------------------

    def submit_query(self, sql, database, catalog, workgroup, output):
        execution_id = f"q-{next(self._ids)}"
        self.queries.append({
            "id": execution_id, "sql": sql, "database": database,
            "catalog": catalog, "workgroup": workgroup, "output": output,
        })
        failure = self._failure_for(sql)
        if failure is not None:
            final, rows = QueryStatus("FAILED", failure), []
        else:
            final, rows = QueryStatus("SUCCEEDED"), self._apply(sql, database, catalog)
        self._executions[execution_id] = {
            "polls": 0, "final": final, "rows": rows,
        }
        return execution_id

    def get_query_status(self, execution_id):
        execution = self._executions[execution_id]
        execution["polls"] += 1
        if execution["polls"] <= self.pending_polls:
            return QueryStatus("RUNNING")
        return execution["final"]

    def get_query_results(self, execution_id):
        return self._executions[execution_id]["rows"]

    def _failure_for(self, sql):
        for rule in self.fail_queries:
            if rule["fragment"] in sql and rule["times"] != 0:
                if rule["times"] is not None:
                    rule["times"] -= 1
                return rule["reason"]
        return None

    def _apply(self, sql, database, catalog):
        match = _CREATE_DATABASE.match(sql)
        if match:
            self.add_database(match.group(1), catalog=catalog,
                              parameters=dict(_PROPERTY.findall(sql)))
            return []
        match = _DROP_DATABASE.match(sql)
        if match:
            name = match.group(1)
            self.databases.pop((catalog, name), None)
            for key in [k for k in self.tables if k[:2] == (catalog, name)]:
                del self.tables[key]
            return []
        match = _CREATE_VIEW.match(sql)
        if match:
            self.add_table(database, match.group(1), ddl=sql, catalog=catalog,
                           table_type="VIRTUAL_VIEW")
            return []
        match = _CREATE_TABLE.match(sql)
        if match:
            keys = ()
            partitioned = _PARTITIONED_BY.search(sql)
            if partitioned:
                keys = tuple(col.split()[0].strip("`") for col in partitioned.group(1).split(","))
            self.add_table(database, match.group(1), ddl=sql, partition_keys=keys, catalog=catalog)
            return []
        match = _DROP_TABLE.match(sql)
        if match:
            self.tables.pop((catalog, database, match.group(2)), None)
            return []
        match = _SHOW_CREATE.match(sql)
        if match:
            table = self.tables[(catalog, database, match.group(1))]
            return [[line] for line in table["ddl"].split("\n")]
        match = _ADD_PARTITIONS.match(sql)
        if match:
            table = self.tables[(catalog, database, match.group(1))]
            known = {p[0] for p in table["partitions"]}
            for values, location in _PARTITION.findall(sql):
                pairs = tuple(v for _, v in _PARTITION_VALUE.findall(values))
                if pairs not in known:
                    table["partitions"].append((pairs, location))
                    known.add(pairs)
            return []
        return []

    # -- catalog metadata ----------------------------------------------------

    def _page(self, items, page_token):
        start = int(page_token or 0)
        end = start + self.page_size
        return items[start:end], (str(end) if end < len(items) else None)

    def _table_state(self, name, table):
        return RemoteTableState(
            name=name,
            partition_keys=table["partition_keys"],
            parameters=dict(table["parameters"]),
            table_type=table["table_type"],
        )

    def get_table(self, catalog, database, name):
        self.calls.append(("get_table", (catalog, database, name)))
        table = self.tables.get((catalog, database, name))
        if table is None:
            return None
        return self._table_state(name, table)

    def list_tables(self, catalog, database, page_token=None):
        self.calls.append(("list_tables", (catalog, database, page_token)))
        states = [self._table_state(k[2], t) for k, t in list(self.tables.items())
                  if k[:2] == (catalog, database)]
        return self._page(states, page_token)

    def get_partitions(self, catalog, database, table, page_token=None):
        self.calls.append(("get_partitions", (catalog, database, table, page_token)))
        return self._page(list(self.tables[(catalog, database, table)]["partitions"]), page_token)

    def update_table_parameters(self, catalog, database, name, parameters):
        self.calls.append(("update_table_parameters", (catalog, database, name, dict(parameters))))
        self.tables[(catalog, database, name)]["parameters"].update(parameters)

    def delete_table(self, catalog, database, name):
        self.calls.append(("delete_table", (catalog, database, name)))
        if (catalog, database, name) in self.fail_deletes:
            raise _client_error("InternalServiceException", "Simulated delete failure")
        self.tables.pop((catalog, database, name), None)

    def get_database(self, catalog, name):
        self.calls.append(("get_database", (catalog, name)))
        database = self.databases.get((catalog, name))
        if database is None:
            return None
        return RemoteDatabaseState(catalog=catalog, name=name, description=database["description"],
                                   location=database["location"],
                                   parameters=dict(database["parameters"]))

    def create_database(self, catalog, name, description, location, parameters):
        self.calls.append(("create_database", (catalog, name)))
        self.add_database(name, catalog=catalog, parameters=parameters, description=description)

    def update_database(self, catalog, name, description, location, parameters):
        self.calls.append(("update_database", (catalog, name, description, location, dict(parameters))))
        self.databases[(catalog, name)] = {
            "description": description, "location": location, "parameters": dict(parameters),
        }

    def delete_database(self, catalog, name):
        self.calls.append(("delete_database", (catalog, name)))
        if (catalog, name) in self.fail_deletes:
            raise _client_error("InternalServiceException", "Simulated delete failure")
        self.databases.pop((catalog, name), None)

    def list_databases(self, catalog, page_token=None):
        self.calls.append(("list_databases", (catalog, page_token)))
        states = [self.get_database(c, n) for (c, n) in list(self.databases) if c == catalog]
        return self._page(states, page_token)

    def list_catalogs(self, page_token=None):
        self.calls.append(("list_catalogs", (page_token,)))
        return self._page(list(self.catalogs), page_token)


def _client_error(code, message):
    return ClientError({"Error": {"Code": code, "Message": message}}, "Operation")


class SleepRecorder:
    """Replaces time.sleep; records requested waits in seconds."""

    def __init__(self):
        self.waits = []

    def __call__(self, seconds):
        self.waits.append(seconds)


@pytest.fixture
def clean_env():
    """
    Fixture that provides a clean environment for testing.
    Saves and restores environment variables.
    """
    original_env = os.environ.copy()
    yield os.environ
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def settings(tmp_path):
    return Settings(stack_id="billing-prod", snapshot_dir=str(tmp_path / "snapshots"))


@pytest.fixture
def make_executor(catalog, sleep):
    """Build QueryExecutors against the fake catalog without real sleeping."""

    def factory(client=None, output="s3://results/", catalog=DEFAULT_CATALOG,
                workgroup="primary", database=None):
        return QueryExecutor(client or catalog_fixture, output=output, catalog=catalog,
                             workgroup=workgroup, database=database, sleep=sleep)

    catalog_fixture = catalog
    return factory


@pytest.fixture
def events_spec():
    return TableSpec(
        database="analytics",
        name="events",
        ddl="CREATE EXTERNAL TABLE events (id string) LOCATION 's3://lake/events/'",
        output="s3://results/",
    )


@pytest.fixture
def partitioned_spec():
    return TableSpec(
        database="analytics",
        name="clicks",
        ddl=(
            "CREATE EXTERNAL TABLE clicks (id string, url string)\n"
            "PARTITIONED BY (dt string)\n"
            "LOCATION 's3://lake/clicks/'"
        ),
        output="s3://results/",
    )
