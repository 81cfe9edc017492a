"""SQLite schema management (code-first approach)."""

import logging
import re

from src.core.config import constants, settings
from src.core.db_client import get_connection


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, in dependency order
COLLECTIONS = [
    "profiles",
    "tasks",
    "messages",
    "ratings",
    "blocks",
]


def _validate_domain(domain: str) -> str:
    """Return the domain if it is safe to embed in a CHECK constraint."""
    if not re.match(r"^[a-z0-9-]+(\.[a-z0-9-]+)+$", domain):
        msg = f"Invalid campus email domain: {domain}"
        raise ValueError(msg)
    return domain


def _get_collection_schema(*, collection_name: str) -> dict[str, str | list[str]]:
    """Get the table definition and indexes for a collection.

    Args:
        collection_name: The name of the collection to get the schema for.

    Returns:
        Dict with "table" (CREATE TABLE statement) and "indexes" (CREATE INDEX statements).
    """
    domain = _validate_domain(settings.campus_email_domain.lower())

    schemas: dict[str, dict[str, str | list[str]]] = {
        "profiles": {
            "table": f"""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    display_name TEXT,
                    accepted_rules INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    CONSTRAINT email_format CHECK (email = lower(email) AND email LIKE '%_@{domain}'),
                    CONSTRAINT display_name_length CHECK (
                        display_name IS NULL OR length(display_name) <= {constants.DISPLAY_NAME_MAX_LENGTH}
                    ),
                    CONSTRAINT accepted_rules_bool CHECK (accepted_rules IN (0, 1))
                )
            """,
            "indexes": ["CREATE INDEX IF NOT EXISTS idx_profiles_email ON profiles (email)"],
        },
        "tasks": {
            "table": f"""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    poster_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    accepted_by_user_id TEXT REFERENCES profiles (id) ON DELETE SET NULL,
                    status TEXT NOT NULL DEFAULT 'OPEN',
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    location_text TEXT NOT NULL,
                    time_window TEXT NOT NULL,
                    scheduled_at TEXT,
                    price_cents INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    accepted_at TEXT,
                    completed_at TEXT,
                    canceled_at TEXT,
                    CONSTRAINT status_values CHECK (status IN ('OPEN', 'ACCEPTED', 'COMPLETE', 'CANCELED')),
                    CONSTRAINT category_values CHECK (
                        category IN ('ERRAND', 'DELIVERY', 'MOVING', 'TUTORING', 'CLEANING', 'OTHER')
                    ),
                    CONSTRAINT time_window_values CHECK (time_window IN ('NOW', 'TODAY', 'THIS_WEEK', 'SCHEDULED')),
                    CONSTRAINT title_length CHECK (length(title) BETWEEN 1 AND {constants.TITLE_MAX_LENGTH}),
                    CONSTRAINT description_length CHECK (
                        length(description) BETWEEN 1 AND {constants.DESCRIPTION_MAX_LENGTH}
                    ),
                    CONSTRAINT location_length CHECK (
                        length(location_text) BETWEEN 1 AND {constants.LOCATION_MAX_LENGTH}
                    ),
                    CONSTRAINT price_range CHECK (
                        typeof(price_cents) = 'integer'
                        AND price_cents BETWEEN {constants.PRICE_MIN_CENTS} AND {constants.PRICE_MAX_CENTS}
                    ),
                    CONSTRAINT scheduled_at_iff_scheduled CHECK (
                        (time_window = 'SCHEDULED') = (scheduled_at IS NOT NULL)
                    )
                )
            """,
            "indexes": [
                "CREATE INDEX IF NOT EXISTS idx_tasks_status_created ON tasks (status, created_at DESC)",
                "CREATE INDEX IF NOT EXISTS idx_tasks_poster ON tasks (poster_id)",
                "CREATE INDEX IF NOT EXISTS idx_tasks_accepted_by ON tasks (accepted_by_user_id)",
                "CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks (category)",
                "CREATE INDEX IF NOT EXISTS idx_tasks_time_window ON tasks (time_window)",
            ],
        },
        "messages": {
            "table": f"""
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks (id) ON DELETE CASCADE,
                    sender_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    type TEXT NOT NULL DEFAULT 'TEXT',
                    body TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    CONSTRAINT type_values CHECK (type IN ('TEXT', 'SYSTEM')),
                    CONSTRAINT body_length CHECK (length(body) BETWEEN 1 AND {constants.MESSAGE_MAX_LENGTH})
                )
            """,
            "indexes": ["CREATE INDEX IF NOT EXISTS idx_messages_task_created ON messages (task_id, created_at)"],
        },
        "ratings": {
            "table": f"""
                CREATE TABLE IF NOT EXISTS ratings (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks (id) ON DELETE CASCADE,
                    rater_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    ratee_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    stars INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    CONSTRAINT stars_range CHECK (stars BETWEEN {constants.STARS_MIN} AND {constants.STARS_MAX}),
                    CONSTRAINT comment_length CHECK (
                        comment IS NULL OR length(comment) <= {constants.COMMENT_MAX_LENGTH}
                    ),
                    CONSTRAINT no_self_rating CHECK (rater_id != ratee_id),
                    UNIQUE (task_id, rater_id)
                )
            """,
            "indexes": ["CREATE INDEX IF NOT EXISTS idx_ratings_ratee ON ratings (ratee_id)"],
        },
        "blocks": {
            "table": """
                CREATE TABLE IF NOT EXISTS blocks (
                    id TEXT PRIMARY KEY,
                    blocker_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    blocked_id TEXT NOT NULL REFERENCES profiles (id) ON DELETE CASCADE,
                    created_at TEXT NOT NULL,
                    CONSTRAINT no_self_block CHECK (blocker_id != blocked_id),
                    UNIQUE (blocker_id, blocked_id)
                )
            """,
            "indexes": [
                "CREATE INDEX IF NOT EXISTS idx_blocks_blocker ON blocks (blocker_id)",
                "CREATE INDEX IF NOT EXISTS idx_blocks_blocked ON blocks (blocked_id)",
            ],
        },
    }
    return schemas[collection_name]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist (idempotent).

    Args:
        db_path: Optional database path. If not provided, uses settings.sqlite_db_path.
    """
    logger.info("Starting SQLite schema sync...")

    conn = await get_connection(db_path=db_path)

    for collection_name in COLLECTIONS:
        schema = _get_collection_schema(collection_name=collection_name)
        await conn.execute(str(schema["table"]))
        for index_sql in schema["indexes"]:
            await conn.execute(index_sql)
        logger.info("Synced collection: %s", collection_name)

    await conn.commit()
    logger.info("SQLite schema sync complete")
