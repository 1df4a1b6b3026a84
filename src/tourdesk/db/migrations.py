"""
Database migrations for the sync bridge.

Uses ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from get_engine() after create_all() so databases
created before row-index linkage and the lock flags existed on the business
tables are upgraded without manual steps. The sync tables themselves are
always created by create_all.
"""
from sqlalchemy import inspect, text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column existence before altering.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    with engine.connect() as conn:
        # Row-index linkage on every synced entity
        for table in ("request", "operator", "revenue"):
            _add_column_if_missing(conn, table, "sheet_row_index", "INTEGER")

        # Accounting lock flags on cost and revenue lines
        for table in ("operator", "revenue"):
            for column in ("lock_kt", "lock_admin", "lock_final"):
                _add_column_if_missing(conn, table, column, "BOOLEAN NOT NULL DEFAULT 0")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLModel names it).
        column: Column name to add.
        col_type: SQL type string, e.g. "INTEGER", "TIMESTAMP".
    """
    existing_columns = {col["name"] for col in inspect(conn).get_columns(table)}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
