"""SQLite-backed document store client with CRUD and conditional writes.

Records are JSON documents grouped in named collections. Every stored record
carries ``id``, ``created``, ``updated`` and ``version``; the version is
bumped on each write and is what compare_and_set() checks.
"""

import asyncio
import json
import logging
import re
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core import change_feed
from src.core.config import settings


logger = logging.getLogger(__name__)

_SYSTEM_FIELDS = ("id", "created", "updated", "version")

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    PRIMARY KEY (collection, id)
)
"""


class DatabaseError(RuntimeError):
    """Raised when a document store operation fails."""


class RecordNotFoundError(KeyError):
    """Raised when a record does not exist."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter expressions via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _new_id() -> str:
    return uuid.uuid4().hex[:15]


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _field_expr(field: str) -> str:
    """Map a record field to its SQL expression."""
    if field in _SYSTEM_FIELDS:
        return field
    return f"json_extract(data, '$.{field}')"


def _parse_value(value: str, *, is_like: bool = False) -> str | bool:
    """Parse a filter literal; only booleans are converted, everything else stays text."""
    if is_like:
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str | bool]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])([^'"]*)\3""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{_field_expr(field)} LIKE ? ESCAPE '\\'", value
    return f"{_field_expr(field)} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | bool]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]  # Remove parentheses
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | bool]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params: list[str | bool] = []

    for raw_part in parts:
        part = raw_part.strip()

        # Handle parenthesized OR groups
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate '-field' / 'field' into an ORDER BY clause."""
    match = re.match(r"^(-)?([A-Za-z_][A-Za-z0-9_]*)$", sort.strip())
    if not match:
        logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
        return "created ASC, rowid ASC"
    direction = "DESC" if match.group(1) else "ASC"
    return f"{_field_expr(match.group(2))} {direction}, rowid {direction}"


def _row_to_record(row: aiosqlite.Row | tuple[Any, ...]) -> dict[str, Any]:
    record_id, data, version, created, updated = row
    return {**json.loads(data), "id": record_id, "created": created, "updated": updated, "version": version}


def _document_body(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in _SYSTEM_FIELDS}


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default, ensure_ascii=False)


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    # Create new connection with async lock to prevent races
    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute(_CREATE_TABLE)
        await conn.commit()

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key not in _db_connections:
        return

    async with _db_lock:
        conn = _db_connections.pop(cache_key, None)
        if conn is not None:
            await conn.close()
            logger.info("Closed SQLite connection", extra={"db_path": str(path)})


async def init_db(*, db_path: str | None = None) -> None:
    """Open the store and make sure the documents table exists."""
    await get_connection(db_path=db_path)


async def create_record(
    *,
    collection: str,
    data: dict[str, Any],
    record_id: str | None = None,
) -> dict[str, Any]:
    """Insert a new document and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        new_id = record_id or _new_id()
        now = _now()
        await conn.execute(
            "INSERT INTO documents (collection, id, data, version, created, updated) VALUES (?, ?, ?, 1, ?, ?)",
            (collection, new_id, _dumps(_document_body(data)), now, now),
        )
        await conn.commit()

        logger.info("Created record", extra={"collection": collection, "record_id": new_id})
    except Exception as e:
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise DatabaseError(msg) from e

    await change_feed.publish(collection=collection, record_id=new_id)
    return await get_record(collection=collection, record_id=new_id)


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single document by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        cursor = await conn.execute(
            "SELECT id, data, version, created, updated FROM documents WHERE collection = ? AND id = ?",
            (collection, record_id),
        )
        row = await cursor.fetchone()
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e

    if row is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    return _row_to_record(row)


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into an existing document and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    current = await get_record(collection=collection, record_id=record_id)
    merged = {**_document_body(current), **_document_body(data)}

    try:
        conn = await get_connection()
        await conn.execute(
            "UPDATE documents SET data = ?, version = version + 1, updated = ? WHERE collection = ? AND id = ?",
            (_dumps(merged), _now(), collection, record_id),
        )
        await conn.commit()

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    except Exception as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise DatabaseError(msg) from e

    await change_feed.publish(collection=collection, record_id=record_id)
    return await get_record(collection=collection, record_id=record_id)


async def set_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Create or merge-update a document with a fixed id."""
    try:
        await get_record(collection=collection, record_id=record_id)
    except RecordNotFoundError:
        return await create_record(collection=collection, data=data, record_id=record_id)
    return await update_record(collection=collection, record_id=record_id, data=data)


async def compare_and_set(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_version: int | None,
) -> bool:
    """Write ``data`` only if the stored version still equals ``expected_version``.

    ``expected_version=None`` means the document must not exist yet. Returns
    False when another writer got there first.
    """
    try:
        _validate_collection_name(collection)
        conn = await get_connection()
        now = _now()

        if expected_version is None:
            try:
                await conn.execute(
                    "INSERT INTO documents (collection, id, data, version, created, updated) VALUES (?, ?, ?, 1, ?, ?)",
                    (collection, record_id, _dumps(_document_body(data)), now, now),
                )
            except aiosqlite.IntegrityError:
                return False
            await conn.commit()
        else:
            cursor = await conn.execute(
                "UPDATE documents SET data = ?, version = version + 1, updated = ? "
                "WHERE collection = ? AND id = ? AND version = ?",
                (_dumps(_document_body(data)), now, collection, record_id, expected_version),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                return False
    except Exception as e:
        logger.error("compare_and_set_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed conditional write in {collection}: {e}"
        raise DatabaseError(msg) from e

    await change_feed.publish(collection=collection, record_id=record_id)
    return True


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a document by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        cursor = await conn.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, record_id),
        )
        await conn.commit()
    except Exception as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to delete record from {collection}: {e}"
        raise DatabaseError(msg) from e

    if cursor.rowcount == 0:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    await change_feed.publish(collection=collection, record_id=record_id)


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List documents with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause = "collection = ?"
        params: list[Any] = [collection]
        if filter_query:
            filter_clause, filter_params = parse_filter(filter_query)
            where_clause = f"{where_clause} AND {filter_clause}"
            params.extend(filter_params)

        order_by = _parse_sort(sort) if sort else "created ASC, rowid ASC"
        offset = (page - 1) * per_page

        query = (
            f"SELECT id, data, version, created, updated FROM documents "  # noqa: S608 - fields are validated
            f"WHERE {where_clause} ORDER BY {order_by} LIMIT ? OFFSET ?"
        )
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        records = [_row_to_record(row) for row in rows]

        logger.info("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_first_record(*, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first document matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None
