"""
Template rendering — every file the tool generates.

Renderers are pure: they return ``GeneratedFile`` objects (or strings
for content embedded in a resource) and never touch the disk. The one
place that writes is ``write_generated``, which honors dry-run, the
``overwrite`` flag, and skips files whose content is already current.

Generated files:
    Dockerfile                    final server image (base + driver install)
    docker-compose.yml            one per database kind, one per test project
    .vscode/launch.json           debugger configurations
    .env                          Cube server environment
    model/*.yml                   Cube data models for the seed tables
    sample_query.js, sample_sql_query.txt
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from cubeops.core.models.template import GeneratedFile

if TYPE_CHECKING:
    from cubeops.core.context import RunContext
    from cubeops.core.services.databases import DatabaseProfile, DbConnection

logger = logging.getLogger(__name__)

CUBE_REST_PORT = 4000
CUBE_SQL_PORT = 15432
CUBE_SQL_USER = "cubesql"
CUBE_SQL_PASSWORD = "cubesql"


def _dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


# ── Dockerfile ──────────────────────────────────────────────────


_FINAL_DOCKERFILE = """\
FROM {base_image}

RUN {install}

CMD ["cubejs", "server"]
"""


def render_dockerfile(
    base_image: str,
    packages: list[str] | None = None,
    *,
    output_path: str = "Dockerfile",
) -> GeneratedFile:
    """Dockerfile for the final image: base image plus npm-installed drivers."""
    packages = packages if packages is not None else ["doris-cubejs-driver"]
    commands = [f"npm install --save {p}" for p in packages]
    commands += ["npm cache clean --force", "rm -rf /root/.npm/* /tmp/*"]
    install = " \\\n    && ".join(commands)

    return GeneratedFile(
        path=output_path,
        content=_FINAL_DOCKERFILE.format(base_image=base_image, install=install),
        reason=f"Final image on top of {base_image}",
    )


# ── Compose files ───────────────────────────────────────────────


def database_compose(profile: DatabaseProfile) -> str:
    """docker-compose.yml content for one database profile."""
    if profile.kind == "postgres":
        services = {
            "postgres": {
                "image": f"postgres:{profile.version}",
                "container_name": profile.containers[0],
                "environment": [
                    f"POSTGRES_USER={profile.user}",
                    f"POSTGRES_PASSWORD={profile.password}",
                    f"POSTGRES_DB={profile.database}",
                ],
                "volumes": [f"{profile.data_dir}:/var/lib/postgresql/data"],
                "ports": [f"{profile.port}:5432"],
                "restart": "always",
            },
        }
    elif profile.kind == "mysql":
        services = {
            "mysql": {
                "image": f"mysql:{profile.version}",
                "container_name": profile.containers[0],
                "environment": [
                    f"MYSQL_ROOT_PASSWORD={profile.password}",
                    f"MYSQL_DATABASE={profile.database}",
                ],
                "volumes": [f"{profile.data_dir}:/var/lib/mysql"],
                "ports": [f"{profile.port}:3306"],
                "restart": "always",
                "command": "--default-authentication-plugin=mysql_native_password",
            },
        }
    elif profile.kind == "doris":
        fe_servers = "FE_SERVERS=fe1:127.0.0.1:9010"
        services = {
            "fe": {
                "image": f"apache/doris:fe-{profile.version}",
                "container_name": profile.containers[0],
                "hostname": "fe",
                "environment": [fe_servers, "FE_ID=1"],
                "volumes": [
                    f"{profile.data_dir}/fe:/opt/apache-doris/fe/doris-meta",
                    f"{profile.log_dir}/fe:/opt/apache-doris/fe/log",
                ],
                "network_mode": "host",
                "restart": "always",
            },
            "be": {
                "image": f"apache/doris:be-{profile.version}",
                "container_name": profile.containers[1],
                "hostname": "be",
                "environment": [fe_servers, "BE_ADDR=127.0.0.1:9050"],
                "volumes": [
                    f"{profile.data_dir}/be:/opt/apache-doris/be/storage",
                    f"{profile.log_dir}/be:/opt/apache-doris/be/log",
                ],
                "depends_on": ["fe"],
                "network_mode": "host",
                "restart": "always",
            },
        }
    else:
        raise ValueError(f"No compose template for {profile.kind}")

    return _dump_yaml({"services": services})


def api_secret(project_name: str) -> str:
    """Stable per-project API secret (128 hex chars)."""
    return hashlib.sha512(f"cubeops:{project_name}".encode()).hexdigest()


def cube_environment(project_name: str, conn: DbConnection) -> dict[str, str]:
    """Environment of the Cube server container."""
    return {
        "CUBEJS_DEV_MODE": "true",
        "CUBEJS_DB_TYPE": conn.db_type,
        "CUBEJS_API_SECRET": api_secret(project_name),
        "CUBEJS_EXTERNAL_DEFAULT": "true",
        "CUBEJS_SCHEDULED_REFRESH_DEFAULT": "true",
        "CUBEJS_SCHEMA_PATH": "model",
        "CUBEJS_WEB_SOCKETS": "true",
        "CUBEJS_SQL_USER": CUBE_SQL_USER,
        "CUBEJS_SQL_PASSWORD": CUBE_SQL_PASSWORD,
        **{k: v for k, v in conn.cube_env().items() if k != "CUBEJS_DB_TYPE"},
    }


def cube_server_compose(
    project_name: str,
    image: str,
    conn: DbConnection,
    *,
    rest_port: int = CUBE_REST_PORT,
    sql_port: int = CUBE_SQL_PORT,
) -> str:
    """docker-compose.yml content for a test project's Cube server."""
    service = f"cubejs-{project_name}"
    return _dump_yaml({
        "services": {
            service: {
                "image": image,
                "container_name": service,
                "ports": [f"{rest_port}:4000", f"{sql_port}:15432"],
                "volumes": [".:/cube/conf"],
                # Databases publish on the host; reach them from the container
                "extra_hosts": ["host.docker.internal:host-gateway"],
                "environment": [f"{k}={v}" for k, v in cube_environment(project_name, conn).items()],
            },
        },
    })


# ── Project files ───────────────────────────────────────────────


def render_env_file(project_name: str, conn: DbConnection) -> GeneratedFile:
    env = cube_environment(project_name, conn)
    lines = ["# Cube environment variables: https://cube.dev/docs/reference/environment-variables"]
    lines += [f"{k}={v}" for k, v in env.items()]
    return GeneratedFile(
        path=".env",
        content="\n".join(lines) + "\n",
        reason=f"Cube server settings for {conn.db_type}",
    )


_MODELS: dict[str, dict[str, Any]] = {
    "Products": {
        "name": "Products",
        "sql_table": "products",
        "dimensions": [
            {"name": "id", "sql": "id", "type": "number", "primary_key": True},
            {"name": "name", "sql": "name", "type": "string"},
            {"name": "category", "sql": "category", "type": "string"},
            {"name": "added_date", "sql": "added_date", "type": "time"},
        ],
        "measures": [
            {"name": "count", "type": "count"},
            {"name": "avg_price", "sql": "base_price", "type": "avg"},
        ],
    },
    "Orders": {
        "name": "Orders",
        "sql_table": "orders",
        "dimensions": [
            {"name": "id", "sql": "id", "type": "number", "primary_key": True},
            {"name": "status", "sql": "status", "type": "string"},
            {"name": "created_at", "sql": "created_at", "type": "time"},
        ],
        "measures": [
            {"name": "count", "type": "count"},
            {"name": "total_amount", "sql": "amount", "type": "sum"},
        ],
    },
    "OrderItems": {
        "name": "OrderItems",
        "sql_table": "order_items",
        "dimensions": [
            {"name": "id", "sql": "id", "type": "number", "primary_key": True},
            {"name": "order_id", "sql": "order_id", "type": "number"},
            {"name": "product_id", "sql": "product_id", "type": "number"},
            {"name": "quantity", "sql": "quantity", "type": "number"},
        ],
        "measures": [
            {"name": "count", "type": "count"},
            {"name": "total_quantity", "sql": "quantity", "type": "sum"},
            {"name": "total_price", "sql": "price * quantity", "type": "sum"},
        ],
        "joins": [
            {
                "name": "Orders",
                "relationship": "many_to_one",
                "sql_on": "{OrderItems.order_id} = {Orders.id}",
            },
            {
                "name": "Products",
                "relationship": "one_to_one",
                "sql_on": "{OrderItems.product_id} = {Products.id}",
            },
        ],
    },
}


def render_cube_models(models_dir: str = "model") -> list[GeneratedFile]:
    """One YAML data model per seed table."""
    return [
        GeneratedFile(
            path=f"{models_dir}/{name}.yml",
            content=_dump_yaml({"cubes": [cube]}),
            reason=f"Cube data model for {cube['sql_table']}",
        )
        for name, cube in _MODELS.items()
    ]


def api_token(secret: str, payload: dict[str, Any] | None = None) -> str:
    """HS256 JWT accepted by a Cube server configured with ``secret``."""
    def b64(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode()

    header = b64(json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode())
    body = b64(json.dumps(payload or {}, separators=(",", ":")).encode())
    signature = hmac.new(secret.encode(), f"{header}.{body}".encode(), hashlib.sha256).digest()
    return f"{header}.{body}.{b64(signature)}"


_SAMPLE_QUERY_JS = """\
const query = {{
  measures: ['OrderItems.total_price'],
  dimensions: ['Products.category'],
  timeDimensions: [
    {{
      dimension: 'Orders.created_at',
      granularity: 'month'
    }}
  ]
}};

async function runQuery() {{
  const response = await fetch('http://localhost:{rest_port}/cubejs-api/v1/load', {{
    method: 'POST',
    headers: {{
      'Content-Type': 'application/json',
      'Authorization': '{token}'
    }},
    body: JSON.stringify({{ query }})
  }});
  console.log(JSON.stringify(await response.json(), null, 2));
}}

runQuery().catch((error) => console.error('Error running query:', error));
"""

_SAMPLE_SQL = """\
-- Connect using: psql -h localhost -p {sql_port} -U {user}

SELECT
  products.category,
  SUM(order_items.total_price) AS total_price,
  DATE_TRUNC('month', orders.created_at) AS month
FROM order_items
CROSS JOIN products
CROSS JOIN orders
GROUP BY 1, 3
ORDER BY month, total_price DESC;
"""


def render_sample_queries(
    project_name: str,
    *,
    rest_port: int = CUBE_REST_PORT,
    sql_port: int = CUBE_SQL_PORT,
) -> list[GeneratedFile]:
    token = api_token(api_secret(project_name))
    return [
        GeneratedFile(
            path="sample_query.js",
            content=_SAMPLE_QUERY_JS.format(rest_port=rest_port, token=token),
            reason="Sample REST API query",
        ),
        GeneratedFile(
            path="sample_sql_query.txt",
            content=_SAMPLE_SQL.format(sql_port=sql_port, user=CUBE_SQL_USER),
            reason="Sample SQL API query",
        ),
    ]


# ── IDE launch configuration ────────────────────────────────────


def render_launch_config(
    *,
    home: str | None = None,
    test_project_dir: str | None = None,
    overwrite: bool = False,
) -> GeneratedFile:
    """VS Code launch.json for the Node server and the SQL API binary.

    ``${HOME}`` is substituted; ``${workspaceFolder}`` and
    ``${command:pickProcess}`` are left for the editor to resolve.
    """
    home = home or os.path.expanduser("~")
    project = test_project_dir or f"{home}/projects/cubejs-test-project"
    rust_src = f"{home}/.rustup/toolchains/stable-x86_64-unknown-linux-gnu/lib/rustlib/src/rust"
    node_common = {
        "sourceMaps": True,
        "outFiles": ["${workspaceFolder}/packages/*/dist/**/*.js"],
        "resolveSourceMapLocations": ["${workspaceFolder}/**", "!**/node_modules/**"],
    }

    config = {
        "version": "0.2.0",
        "configurations": [
            {
                "type": "node",
                "request": "attach",
                "name": "Attach to Cube.js Server",
                "port": 9229,
                "skipFiles": ["<node_internals>/**"],
                **node_common,
            },
            {
                "type": "node",
                "request": "launch",
                "name": "Launch Test Project",
                "program": "${workspaceFolder}/node_modules/.bin/cubejs-server",
                "args": [],
                "cwd": project,
                "env": {"CUBEJS_DEV_MODE": "true", "CUBEJS_LOG_LEVEL": "trace"},
                **node_common,
            },
            {
                "type": "lldb",
                "request": "launch",
                "name": "Debug CubeSQL",
                "program": "${workspaceFolder}/rust/cubesql/target/debug/cubesql",
                "args": [],
                "cwd": "${workspaceFolder}/rust/cubesql",
                "sourceLanguages": ["rust"],
                "sourceMap": {"/rustc/*": rust_src},
            },
            {
                "type": "lldb",
                "request": "attach",
                "name": "Attach to CubeSQL",
                "pid": "${command:pickProcess}",
                "sourceLanguages": ["rust"],
                "sourceMap": {"/rustc/*": rust_src},
            },
        ],
    }
    return GeneratedFile(
        path=".vscode/launch.json",
        content=json.dumps(config, indent=2) + "\n",
        overwrite=overwrite,
        reason="Debugger configurations",
    )


# ── Writing ─────────────────────────────────────────────────────


def write_generated(
    files: GeneratedFile | list[GeneratedFile],
    ctx: RunContext,
    base_dir: Path | None = None,
) -> list[Path]:
    """Write generated files under ``base_dir`` (default: the run's workdir).

    Existing files are left alone when ``overwrite`` is False or when
    their content is already identical. Dry-run only logs.

    Returns:
        Paths that were (or in dry-run would be) written.
    """
    if isinstance(files, GeneratedFile):
        files = [files]
    base = base_dir or ctx.workdir
    written: list[Path] = []

    for f in files:
        target = Path(f.path).expanduser()
        if not target.is_absolute():
            target = base / target

        if target.exists():
            if not f.overwrite:
                logger.info("Keeping existing %s", target)
                continue
            if target.read_text(encoding="utf-8") == f.content:
                logger.debug("%s is up to date", target)
                continue

        if ctx.dry_run:
            logger.info("[dry-run] would write %s", target)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f.content, encoding="utf-8")
            logger.info("Wrote %s", target)
        written.append(target)

    return written
