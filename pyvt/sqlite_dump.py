"""Build SQL statements for importing local tables into the remote database."""

import csv
import re
import sqlite3
from pathlib import Path

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _dump_table(conn: sqlite3.Connection, table_name: str) -> list[str]:
    """Return the CREATE and INSERT statements for one table."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table_name,),
    ).fetchone()
    if row is None:
        raise ValueError(f"Table not found: {table_name}")

    statements = [row[0]]
    prefix = f"INSERT INTO {_quote_identifier(table_name)} VALUES"
    # iterdump quotes values the same way the sqlite3 shell does
    for line in conn.iterdump():
        if line.startswith(prefix):
            statements.append(line.rstrip(";"))
    return statements


def dump_sqlite_table(db_path: Path, table_name: str) -> list[str]:
    """Return the statements recreating ``table_name`` from a SQLite file.

    Args:
        db_path: Path to the SQLite database
        table_name: Table to export

    Returns:
        CREATE TABLE statement followed by one INSERT per row

    Raises:
        ValueError: If the table does not exist
    """
    conn = sqlite3.connect(db_path)
    try:
        return _dump_table(conn, table_name)
    finally:
        conn.close()


def dump_csv_table(csv_path: Path, table_name: str) -> list[str]:
    """Return the statements creating ``table_name`` from a CSV file.

    The first row holds the column names; every column is TEXT, as with
    ``.import`` in the sqlite3 shell.

    Args:
        csv_path: Path to the CSV file
        table_name: Name of the table to create

    Returns:
        CREATE TABLE statement followed by one INSERT per row

    Raises:
        ValueError: If the file is empty
    """
    with open(csv_path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        try:
            header = next(reader)
        except StopIteration:
            raise ValueError(f"CSV file is empty: {csv_path}") from None
        rows = [row for row in reader if row]

    conn = sqlite3.connect(":memory:")
    try:
        columns = ", ".join(f"{_quote_identifier(col)} TEXT" for col in header)
        conn.execute(f"CREATE TABLE {_quote_identifier(table_name)} ({columns})")
        placeholders = ", ".join("?" for _ in header)
        conn.executemany(
            f"INSERT INTO {_quote_identifier(table_name)} VALUES ({placeholders})",
            [(row + [""] * len(header))[: len(header)] for row in rows],
        )
        return _dump_table(conn, table_name)
    finally:
        conn.close()


def table_name_from_path(path: Path) -> str:
    """Derive a table name from a file name (``people.csv`` -> ``people``)."""
    name = path.stem
    if not _IDENTIFIER.match(name):
        name = re.sub(r"\W", "_", name)
    return name
