from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote


def normalize_database_url_for_async(database_url: str) -> str:
    """Rewrite DATABASE_URL to the async driver used at runtime.

    - SQLite: sqlite+aiosqlite://...
    - PostgreSQL: postgresql+psycopg://... (psycopg3 ships async support)
    """
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

    return url


def normalize_database_url_for_alembic(database_url: str) -> str:
    """Alembic runs on a sync engine: strip async drivers, pin psycopg3 for Postgres."""
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://", 1)

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

    return url


def extract_sqlite_db_file_path(database_url: str) -> Path | None:
    """Best-effort local file path of a SQLite DATABASE_URL; None for memory/non-sqlite."""
    url = (database_url or "").strip()
    url = url.split("#", 1)[0].split("?", 1)[0]
    if not url.lower().startswith("sqlite") or url.lower().endswith(":memory:"):
        return None

    sep = url.find("://")
    if sep == -1:
        return None

    # sqlite:///./rel.db -> "/./rel.db"; sqlite:////abs.db -> "//abs.db"
    rest = url[sep + 3 :]
    file_path = unquote(rest[1:] if rest.startswith("/") else rest)
    if not file_path or file_path == ":memory:":
        return None
    return Path(file_path)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    path = extract_sqlite_db_file_path(database_url)
    if path is None:
        return
    if str(path.parent) in {"", "."}:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
