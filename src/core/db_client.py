"""SQLite database client wrapper with CRUD operations."""

import asyncio
import json
import logging
import re
import threading
import uuid
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import settings


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """Raised when the store fails to execute an operation."""


class RecordNotFoundError(KeyError):
    """Raised when a record does not exist."""


class ConstraintViolationError(DatabaseError):
    """Raised when a write violates a UNIQUE, CHECK or foreign key constraint."""


# SQLite stores booleans as integers
_BOOL_FIELDS = {"accepted_rules"}


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in SQL queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def _convert_record(record: dict[str, Any]) -> dict[str, Any]:
    """Convert SQLite integer booleans back to Python bools."""
    converted = record.copy()
    for key in _BOOL_FIELDS & converted.keys():
        if converted[key] is not None:
            converted[key] = bool(converted[key])
    return converted


def _to_sql_value(val: Any) -> Any:
    if isinstance(val, Enum):
        return val.value
    if isinstance(val, datetime):
        return val.isoformat()
    if isinstance(val, dict | list):
        return json.dumps(val)
    return val


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return "%" + value.replace("%", "\\%").replace("_", "\\_") + "%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

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


def _unescape(raw: str, *, quote: str) -> str:
    """Undo the escaping applied by sanitize_param (or by hand for single-quoted values)."""
    if quote == '"':
        try:
            return json.loads(f'"{raw}"')
        except json.JSONDecodeError:
            return raw.replace('\\"', '"')
    return re.sub(r"\\(.)", r"\1", raw)


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])((?:\\.|(?!\3).)*)\3\s*$""",
        comparison.strip(),
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = _unescape(match.group(4), quote=match.group(3))

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", value
    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
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


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params = []

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


def parse_sort(sort: str) -> str:
    """Translate "-field,+other" sort syntax into a safe ORDER BY clause.

    Invalid parts fall back to insertion order. Ties are broken by rowid in the
    direction of the first sort key so listings are totally ordered.
    """
    clauses = []
    for raw_part in sort.split(","):
        part = raw_part.strip()
        if not part:
            continue
        direction = "DESC" if part.startswith("-") else "ASC"
        field = part.lstrip("+-")
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", field):
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "rowid ASC"
        clauses.append(f"{field} {direction}")

    if not clauses:
        return "rowid ASC"

    tiebreak = "rowid DESC" if clauses[0].endswith("DESC") else "rowid ASC"
    return ", ".join([*clauses, tiebreak])


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_connect_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = weakref.WeakKeyDictionary()
_in_transaction: ContextVar[bool] = ContextVar("db_in_transaction", default=False)


def _cache_key(db_path: str | None = None) -> tuple[int, int, str]:
    loop = asyncio.get_running_loop()
    return threading.get_ident(), id(loop), str(get_db_path(db_path))


def _connect_lock() -> asyncio.Lock:
    """Return the lock that serialises connection setup on the running loop."""
    loop = asyncio.get_running_loop()
    lock = _connect_locks.get(loop)
    if lock is None:
        lock = _connect_locks[loop] = asyncio.Lock()
    return lock


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    cached_conn = _db_connections.get(cache_key)
    if cached_conn is not None:
        return cached_conn

    async with _connect_lock():
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = get_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
            await conn.execute("PRAGMA journal_mode = WAL")
        except Exception:
            await conn.close()
            raise

        _db_connections[cache_key] = conn
        _write_locks[cache_key] = asyncio.Lock()

    logger.info(
        "Created new SQLite connection",
        extra={"db_path": str(path), "thread_id": cache_key[0], "loop_id": cache_key[1]},
    )
    return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    async with _connect_lock():
        conn = _db_connections.pop(cache_key, None)
        _write_locks.pop(cache_key, None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info(
            "Closed SQLite connection",
            extra={"thread_id": cache_key[0], "loop_id": cache_key[1], "db_path": cache_key[2]},
        )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )


@asynccontextmanager
async def _write_unit() -> AsyncIterator[aiosqlite.Connection]:
    """Run writes under the connection's write lock, committing unless a transaction is open."""
    conn = await get_connection()

    if _in_transaction.get():
        yield conn
        return

    async with _write_locks[_cache_key()]:
        token = _in_transaction.set(True)
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            _in_transaction.reset(token)


@asynccontextmanager
async def _read_unit() -> AsyncIterator[aiosqlite.Connection]:
    """Run a read once no other task holds uncommitted writes on the shared connection."""
    conn = await get_connection()

    if _in_transaction.get():
        yield conn
        return

    async with _write_locks[_cache_key()]:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Group several writes into one atomic unit.

    Writes issued inside the block are committed together when it exits, or
    rolled back if it raises. Nested blocks join the outer transaction.

    Usage:
        async with db_client.transaction():
            await db_client.update_record(...)
            await db_client.create_record(...)
    """
    conn = await get_connection()

    if _in_transaction.get():
        yield conn
        return

    async with _write_locks[_cache_key()]:
        token = _in_transaction.set(True)
        try:
            await conn.execute("BEGIN IMMEDIATE")
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            _in_transaction.reset(token)


def _wrap_error(operation: str, collection: str, e: Exception) -> DatabaseError:
    if isinstance(e, aiosqlite.IntegrityError):
        logger.warning(f"{operation}_constraint_violation", extra={"collection": collection, "error": str(e)})
        return ConstraintViolationError(f"Constraint violation in {collection}: {e}")
    if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
        logger.error("Table not found", extra={"collection": collection})
        return DatabaseError(f"Table '{collection}' does not exist. Call init_db() first.")
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(e)})
    return DatabaseError(f"Failed to {operation.replace('_', ' ')} in {collection}: {e}")


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema  # noqa: PLC0415 - schema imports this module

    await schema.init_db(db_path=db_path)


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    _validate_collection_name(collection)
    record_data = {"id": str(uuid.uuid4()), "created_at": utc_now(), **data}

    try:
        async with _write_unit() as conn:
            columns = list(record_data.keys())
            columns_str = ", ".join(columns)
            placeholders_str = ", ".join("?" for _ in columns)
            values = [_to_sql_value(record_data[key]) for key in columns]

            query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
            await conn.execute(query, values)
            result = await get_record(collection=collection, record_id=record_data["id"])
    except (DatabaseError, RecordNotFoundError):
        raise
    except Exception as e:
        raise _wrap_error("create_record", collection, e) from e

    logger.info("Created record", extra={"collection": collection, "record_id": record_data["id"]})
    return result


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        async with _read_unit() as conn:
            query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (record_id,))
            row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        columns = [description[0] for description in cursor.description]
        record = dict(zip(columns, row, strict=True))

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _convert_record(record)
    except RecordNotFoundError:
        raise
    except Exception as e:
        raise _wrap_error("get_record", collection, e) from e


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Update a record by ID and return the updated record.

    When ``expected`` is given the write is conditional: the row is only
    updated if its current columns still equal the expected values. A guard
    that no longer holds leaves the row untouched and returns None.
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    _validate_collection_name(collection)
    guard = expected or {}
    for key in [*data, *guard]:
        _validate_collection_name(key)

    set_clause = ", ".join(f"{key} = ?" for key in data)
    where_clause = " AND ".join(["id = ?", *(f"{key} = ?" for key in guard)])
    values = [_to_sql_value(val) for val in data.values()]
    values.append(record_id)
    values.extend(_to_sql_value(val) for val in guard.values())

    try:
        async with _write_unit() as conn:
            query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - names are validated
            cursor = await conn.execute(query, values)

            if cursor.rowcount == 0:
                if expected is not None:
                    logger.info(
                        "Conditional update skipped",
                        extra={"collection": collection, "record_id": record_id, "expected": guard},
                    )
                    return None
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)

            result = await get_record(collection=collection, record_id=record_id)
    except (DatabaseError, RecordNotFoundError):
        raise
    except Exception as e:
        raise _wrap_error("update_record", collection, e) from e

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return result


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)

    try:
        async with _write_unit() as conn:
            query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (record_id,))

            if cursor.rowcount == 0:
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
    except (DatabaseError, RecordNotFoundError):
        raise
    except Exception as e:
        raise _wrap_error("delete_record", collection, e) from e

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination.

    A per_page of -1 returns every matching record.
    """
    try:
        _validate_collection_name(collection)

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        order_clause = parse_sort(sort)
        offset = (page - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {order_clause} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        async with _read_unit() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_convert_record(dict(zip(columns, row, strict=True))) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        raise _wrap_error("list_records", collection, e) from e


async def get_first_record(*, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None
