"""
Database schema driver — the seed tables inside a running database.

SQL is piped on stdin to the database's own client. When the resource
names a container the client inside it is used (``docker exec -i``);
otherwise the host's client connects over TCP (Doris ships no client
in its images).
"""

from __future__ import annotations

import logging

from cubeops.adapters.base import ResourceDriver
from cubeops.core.engine.runner import CommandResult
from cubeops.core.models.resource import DbSchema, ObservedState, ResourceKind

logger = logging.getLogger(__name__)

# Connect here when the target database may not exist yet
_MAINTENANCE_DB = {"postgres": "postgres", "mysql": "", "doris": ""}


def client_argv(resource: DbSchema, database: str | None = None) -> list[str]:
    """Command line for the SQL client, reading statements from stdin."""
    db = resource.database if database is None else database

    if resource.db_type == "postgres":
        client = ["psql", "-v", "ON_ERROR_STOP=1", "-q", "-t", "-A", "-U", resource.user]
        if db:
            client += ["-d", db]
        if resource.container:
            return ["docker", "exec", "-i", "-e", f"PGPASSWORD={resource.password}",
                    resource.container, *client]
        return ["env", f"PGPASSWORD={resource.password}", *client,
                "-h", resource.host, "-p", str(resource.port or 5432)]

    client = ["mysql", f"-u{resource.user}", "-N", "-B"]
    if resource.password:
        client.append(f"-p{resource.password}")
    if resource.container:
        argv = ["docker", "exec", "-i", resource.container, *client]
    else:
        argv = [*client, "-h", resource.host, "-P", str(resource.port or 3306)]
    if db:
        argv.append(db)
    return argv


def run_sql(
    resource: DbSchema,
    sql: str,
    ctx,
    *,
    database: str | None = None,
    mutating: bool = True,
) -> CommandResult:
    argv = client_argv(resource, database)
    return ctx.runner.run(argv[0], argv[1:], input=sql, mutating=mutating)


def _table_list(resource: DbSchema) -> str:
    return ", ".join(f"'{t}'" for t in resource.tables)


class DbSchemaDriver(ResourceDriver):
    """Seed tables in a test database.

    Probe:
        server unreachable or no seed tables   → Absent
        some tables missing, or tables empty   → Degraded
        every table present with rows          → Healthy
    """

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.DB_SCHEMA

    def probe(self, resource: DbSchema, ctx) -> ObservedState:
        schema_filter = (
            "table_schema = 'public'"
            if resource.db_type == "postgres"
            else f"table_schema = '{resource.database}'"
        )
        query = (
            "SELECT count(*) FROM information_schema.tables "
            f"WHERE {schema_filter} AND table_name IN ({_table_list(resource)});\n"
        )
        database = resource.database if resource.db_type == "postgres" else ""
        result = run_sql(resource, query, ctx, database=database, mutating=False)
        if not result.ok:
            return ObservedState.absent(_last_line(result.stderr) or "cannot connect")

        found = _first_int(result.stdout)
        if found == 0:
            return ObservedState.absent()
        if found < len(resource.tables):
            return ObservedState.degraded(f"{found} of {len(resource.tables)} seed tables present")

        first = resource.tables[0]
        rows = run_sql(resource, f"SELECT count(*) FROM {first};\n", ctx, mutating=False)
        if not rows.ok or _first_int(rows.stdout) == 0:
            return ObservedState.degraded(f"table {first} is empty")
        return ObservedState.present()

    def create(self, resource: DbSchema, ctx) -> None:
        self._ensure_database(resource, ctx)

        sql = resource.seed_sql
        if not sql:
            from cubeops.core.data import seed_sql

            sql = seed_sql(resource.db_type)

        logger.info("Loading seed data into %s/%s", resource.db_type, resource.database)
        self.require(run_sql(resource, sql, ctx))

    def teardown(self, resource: DbSchema, ctx) -> None:
        # Reverse order: order_items references the others
        statements = "".join(
            f"DROP TABLE IF EXISTS {table};\n" for table in reversed(resource.tables)
        )
        result = run_sql(resource, statements, ctx)
        if not result.ok:
            logger.warning("Dropping seed tables failed: %s", _last_line(result.stderr))

    def _ensure_database(self, resource: DbSchema, ctx) -> None:
        maintenance = _MAINTENANCE_DB[resource.db_type]
        if resource.db_type == "postgres":
            exists = run_sql(
                resource,
                f"SELECT 1 FROM pg_database WHERE datname = '{resource.database}';\n",
                ctx,
                database=maintenance,
                mutating=False,
            )
            if exists.ok and exists.stdout.strip() == "1":
                return
            statement = f"CREATE DATABASE {resource.database};\n"
        else:
            statement = f"CREATE DATABASE IF NOT EXISTS {resource.database};\n"

        logger.info("Creating database %s", resource.database)
        self.require(run_sql(resource, statement, ctx, database=maintenance))


def _first_int(text: str) -> int:
    for token in text.split():
        if token.isdigit():
            return int(token)
    return 0


def _last_line(text: str) -> str:
    lines = text.strip().splitlines()
    return lines[-1] if lines else ""
