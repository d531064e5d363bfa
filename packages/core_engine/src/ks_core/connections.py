"""Open DB-API connections to the supported warehouses.

Drivers are imported lazily so only the one for the target database needs to
be installed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from ks_core.errors import ConfigurationError


@dataclass
class ConnectorConfig:
    """Connection settings for a target database."""

    connector_type: str
    host: str = ""
    port: int = 0
    database: str = ""
    schema: str = ""
    user: str = ""
    password: str = ""
    warehouse: str = ""
    role: str = ""
    project: str = ""
    catalog: str = ""
    token: str = ""
    private_key_path: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


def check_driver(package: str) -> Tuple[bool, str]:
    """Check if the required Python driver package is installed."""
    if not package:
        return True, "No driver required"
    try:
        __import__(package)
        return True, f"{package} is installed"
    except ImportError:
        return False, f"Missing driver: pip install {package}"


def _load_private_key(path: str, passphrase: Optional[str] = None) -> bytes:
    """Load an RSA private key from a PEM file and return DER bytes for Snowflake."""
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    with open(os.path.expanduser(path), "rb") as f:
        pem_data = f.read()

    private_key = serialization.load_pem_private_key(
        pem_data,
        password=passphrase.encode() if passphrase else None,
        backend=default_backend(),
    )
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _connect_snowflake(config: ConnectorConfig):
    import snowflake.connector

    params: Dict[str, Any] = {
        "account": config.host,
        "user": config.user,
        "warehouse": config.warehouse,
        "database": config.database,
        "schema": config.schema or "PUBLIC",
    }
    if config.role:
        params["role"] = config.role
    if config.private_key_path:
        # Password doubles as the key passphrase
        params["private_key"] = _load_private_key(config.private_key_path, config.password or None)
    else:
        params["password"] = config.password
    return snowflake.connector.connect(**params)


def _connect_postgres(config: ConnectorConfig):
    import psycopg2

    conn = psycopg2.connect(
        host=config.host,
        port=config.port or 5432,
        dbname=config.database,
        user=config.user,
        password=config.password,
    )
    conn.autocommit = True
    return conn


def _connect_redshift(config: ConnectorConfig):
    import redshift_connector

    conn = redshift_connector.connect(
        host=config.host,
        port=config.port or 5439,
        database=config.database,
        user=config.user,
        password=config.password,
    )
    conn.autocommit = True
    return conn


def _connect_bigquery(config: ConnectorConfig):
    from google.cloud import bigquery
    from google.cloud.bigquery import dbapi

    client = bigquery.Client(project=config.project or config.database or None)
    return dbapi.connect(client)


def _connect_databricks(config: ConnectorConfig):
    from databricks import sql

    return sql.connect(
        server_hostname=config.host,
        http_path=config.extra.get("http_path", ""),
        access_token=config.token,
    )


_CONNECTORS: Dict[str, Callable[[ConnectorConfig], Any]] = {
    "snowflake": _connect_snowflake,
    "postgres": _connect_postgres,
    "redshift": _connect_redshift,
    "bigquery": _connect_bigquery,
    "databricks": _connect_databricks,
}


def open_connection(config: ConnectorConfig):
    """Open a DB-API connection for ``config.connector_type``."""
    connect = _CONNECTORS.get(config.connector_type)
    if connect is None:
        raise ConfigurationError(
            f"Unsupported connector. Use one of: {', '.join(sorted(_CONNECTORS))}."
        )
    return connect(config)


def check_connection(config: ConnectorConfig) -> Tuple[bool, str]:
    """Test if the connection can be established. Returns (success, message)."""
    try:
        conn = open_connection(config)
    except ImportError as exc:
        return False, f"Driver not installed: {exc}"
    except FileNotFoundError:
        return False, f"Private key file not found: {config.private_key_path}"
    except ConfigurationError as exc:
        return False, str(exc)
    except Exception as exc:
        return False, f"Connection failed: {exc}"
    conn.close()
    return True, "Connection successful"


