"""
Tests for the test databases — profiles, bring-up, seeding, teardown.
"""

import pytest

from cubeops.core.config.loader import DatabaseOverride
from cubeops.core.data import SEED_TABLES, insert_sql, schema_sql, seed_rows, seed_sql
from cubeops.core.errors import ConfirmationDeclined, UsageError
from cubeops.core.models import ObservedState, ProvisionAction
from cubeops.core.services.databases import (
    PROFILES,
    bring_up,
    connection_summary,
    database_resources,
    get_profile,
    rotate_root_password,
    seed_database,
    tear_down,
)

# ── Profiles ─────────────────────────────────────────────────────────


class TestProfiles:
    def test_builtin_profiles(self):
        assert PROFILES["postgres"].port == 5432
        assert PROFILES["mysql"].port == 3306
        assert PROFILES["doris"].port == 9030
        assert PROFILES["doris"].containers == ("doris-fe", "doris-be")

    def test_config_overrides(self, ctx, tmp_path):
        ctx.config.databases["postgres"] = DatabaseOverride(port=15433, password="pw")
        profile = get_profile("postgres", ctx)
        assert profile.port == 15433
        assert profile.password == "pw"
        assert profile.user == "postgres"

    def test_unknown_type(self, ctx):
        with pytest.raises(UsageError, match="Unsupported database type"):
            get_profile("oracle", ctx)

    def test_connection_uses_seed_database(self):
        conn = PROFILES["mysql"].connection()
        assert conn.database == "test"
        assert conn.cube_env()["CUBEJS_DB_PASS"] == "mysql"

    def test_doris_summary_lists_web_ports(self):
        lines = connection_summary(PROFILES["doris"])
        assert "FE HTTP: http://127.0.0.1:8030" in lines
        assert any(line.startswith("Connect:  mysql -h127.0.0.1 -P9030") for line in lines)


class TestDatabaseResources:
    def test_three_resources_in_order(self, ctx):
        resources = database_resources(get_profile("postgres", ctx), ctx)
        assert [r.kind for r in resources] == ["compose-service", "tcp-port", "db-schema"]

    def test_postgres_health_runs_pg_isready(self, ctx):
        service, _, _ = database_resources(get_profile("postgres", ctx), ctx)
        assert service.health.command == ["pg_isready", "-U", "postgres"]

    def test_doris_schema_uses_host_client(self, ctx):
        service, port, schema = database_resources(get_profile("doris", ctx), ctx)
        assert service.health.port == 9030
        assert schema.container == ""
        assert len(service.data_dirs) == 4

    def test_data_dirs_follow_data_root(self, ctx, tmp_path):
        service, _, _ = database_resources(get_profile("mysql", ctx), ctx)
        assert service.data_dirs == [str(tmp_path / "db" / "mysql" / "data")]


# ── Bring-up ─────────────────────────────────────────────────────────


class TestBringUp:
    def test_creates_service_port_and_schema(self, ctx, mock_driver, mock_registry):
        report = bring_up(ctx, "postgres", registry=mock_registry)
        assert report.all_ok
        assert mock_driver.calls("create") == [
            "compose-service:postgres", "tcp-port:postgres", "db-schema:postgres",
        ]

    def test_second_run_changes_nothing(self, ctx, mock_driver, mock_registry):
        bring_up(ctx, "mysql", registry=mock_registry)
        mock_driver.call_log.clear()
        report = bring_up(ctx, "mysql", registry=mock_registry)
        assert report.skipped == 3
        assert mock_driver.mutation_count == 0

    def test_no_seed(self, ctx, mock_driver, mock_registry):
        report = bring_up(ctx, "postgres", seed=False, registry=mock_registry)
        assert report.total == 2
        assert "db-schema:postgres" not in mock_driver.calls("create")

    def test_failed_service_stops_before_schema(self, ctx, mock_driver, mock_registry):
        mock_driver.set_failure("compose-service:postgres", "create", "image pull failed")
        report = bring_up(ctx, "postgres", registry=mock_registry)
        assert report.aborted
        assert report.total == 1
        assert mock_driver.calls("create") == ["compose-service:postgres"]

    def test_force_recreates_after_confirmation(self, ctx, mock_driver, mock_registry):
        bring_up(ctx, "postgres", registry=mock_registry)
        report = bring_up(ctx, "postgres", force=True, registry=mock_registry)
        assert [r.action for r in report.results] == [ProvisionAction.RECREATE] * 3

    def test_force_needs_an_answer(self, ctx, mock_registry):
        ctx.assume_yes = False
        with pytest.raises(UsageError, match="--yes"):
            bring_up(ctx, "postgres", force=True, registry=mock_registry)

    def test_doris_rotates_password_before_seeding(self, ctx, runner, mock_registry):
        runner.on("mysql -uroot -N -B -proot", exit_code=1)
        report = bring_up(ctx, "doris", registry=mock_registry)
        assert report.all_ok
        alter = [c for c in runner.calls if "ALTER USER" in (c.get("input") or "")]
        assert alter[0]["command"].startswith("mysql -uroot -N -B -h 127.0.0.1 -P 9030")
        assert alter[0]["input"] == "ALTER USER 'root' IDENTIFIED BY 'root';\n"


class TestRotatePassword:
    def test_already_set(self, ctx, runner):
        assert rotate_root_password(get_profile("doris", ctx), ctx)
        assert not any("ALTER USER" in (c.get("input") or "") for c in runner.calls)

    def test_failure_is_only_a_warning(self, ctx, runner, sleeps):
        runner.on("mysql", exit_code=1, stderr="Access denied")
        assert rotate_root_password(get_profile("doris", ctx), ctx) is False
        assert len(sleeps) == 2  # three attempts


class TestSeedAndTeardown:
    def test_seed_reloads_with_force(self, ctx, mock_driver, mock_registry):
        mock_driver.set_state("db-schema:postgres", ObservedState.present())
        report = seed_database(ctx, "postgres", force=True, registry=mock_registry)
        assert report.results[0].action is ProvisionAction.RECREATE

    def test_down_keeps_data_by_default(self, ctx, runner):
        data = get_profile("postgres", ctx).data_dir
        data.mkdir(parents=True)
        report = tear_down(ctx, "postgres")
        assert report.all_ok
        assert report.results[0].action is ProvisionAction.REMOVE
        assert data.is_dir()

    def test_down_remove_data(self, ctx, runner):
        profile = get_profile("postgres", ctx)
        profile.compose_dir.mkdir(parents=True)
        (profile.compose_dir / "docker-compose.yml").write_text("services: {}\n")
        profile.data_dir.mkdir(parents=True)
        tear_down(ctx, "postgres", remove_data=True)
        assert not profile.data_dir.exists()
        assert runner.ran("docker compose")[0].endswith("down -v")

    def test_remove_data_needs_confirmation(self, ctx):
        ctx.assume_yes = False
        ctx.interactive = True
        ctx.confirm_fn = lambda question, default: False
        with pytest.raises(ConfirmationDeclined):
            tear_down(ctx, "postgres", remove_data=True)


# ── Seed data ────────────────────────────────────────────────────────


class TestSeedData:
    def test_row_counts(self):
        rows = seed_rows()
        assert len(rows["products"]["rows"]) == 25
        assert len(rows["orders"]["rows"]) == 25
        assert len(rows["order_items"]["rows"]) == 41

    def test_rows_match_columns(self):
        for table in SEED_TABLES:
            seed = seed_rows()[table]
            assert all(len(row) == len(seed["columns"]) for row in seed["rows"]), table

    @pytest.mark.parametrize("dialect", ["postgres", "mysql", "doris"])
    def test_schema_creates_every_table(self, dialect):
        sql = schema_sql(dialect)
        for table in SEED_TABLES:
            assert f"CREATE TABLE IF NOT EXISTS {table}" in sql

    def test_inserts_are_idempotent(self):
        assert insert_sql("postgres", "orders").endswith("ON CONFLICT (id) DO NOTHING;")
        assert insert_sql("mysql", "orders").startswith("INSERT IGNORE INTO orders")

    def test_seed_sql_orders_inserts_after_schema(self):
        sql = seed_sql("doris")
        assert sql.index("CREATE TABLE") < sql.index("INSERT INTO products")
        assert sql.index("INSERT INTO products") < sql.index("INSERT INTO order_items")

    def test_unknown_dialect(self):
        with pytest.raises(ValueError):
            schema_sql("oracle")
