"""Database URL helpers for Alembic migrations.

Kept out of env.py so they can be tested without triggering alembic.context
at import time.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

from psycopg2.extensions import parse_dsn

_DRIVER_PREFIX = "postgresql+psycopg2://"


def _dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A socket directory host (Cloud SQL, "/cloudsql/...") goes in the query
    string; anything else becomes host:port.
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = quote_plus(params.get("user", ""))
    if password:
        credentials += f":{quote_plus(password)}"
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}@{host}:{params.get('port', '5432')}/{dbname}"


def database_url() -> str:
    """SQLAlchemy URL for DATABASE_URL (URL or libpq DSN form).

    DB_PASSWORD is injected when the configured URL carries no password.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _dsn_to_url(url)

    scheme, _, rest = url.partition("://")
    if scheme in ("postgres", "postgresql"):
        url = _DRIVER_PREFIX + rest

    db_password = os.environ.get("DB_PASSWORD", "")
    parsed = urlparse(url)
    if db_password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url
