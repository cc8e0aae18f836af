import copy
import json
import logging
import sqlite3
from contextlib import contextmanager

from storage.schema import kv_schema
from config import DB_PATH
from utils.errors import StorageError


# RAW KEY/VALUE ==============================================

def read_value(key):
    """Return the decoded JSON stored under key, or None when the key is missing."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT value FROM kv_store WHERE key = ?', (key,))
            row = cursor.fetchone()
    except sqlite3.Error as e:
        raise StorageError(f"Failed to read '{key}': {e}") from e

    if row is None:
        return None

    try:
        return json.loads(row['value'])
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt value under '{key}': {e}") from e


def write_value(key, value):
    try:
        payload = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value for '{key}' is not JSON-serializable: {e}") from e

    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """INSERT INTO kv_store (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE
                   SET value = excluded.value, updated_at = datetime('now')
                """,
                (key, payload)
            )
    except sqlite3.Error as e:
        raise StorageError(f"Failed to write '{key}': {e}") from e


# SOFT-FAILING ACCESSORS =====================================

def get_from_storage(key, default=None):
    """Load a stored value. Missing or unreadable keys fall back to a copy of default."""
    try:
        value = read_value(key)
    except StorageError as e:
        logging.warning(f"Falling back to default for '{key}': {e}")
        return copy.deepcopy(default)

    if value is None:
        return copy.deepcopy(default)
    return value


def save_to_storage(key, value):
    """
    Persist value under key. A failed write is logged and reported through the
    return value; in-memory state stays authoritative so the caller keeps going.
    """
    try:
        write_value(key, value)
        return True
    except StorageError as e:
        logging.error(f"Failed to save '{key}': {e}")
        return False


# DB CONNECTION ==============================================

@contextmanager
def get_db():
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    with get_db() as conn:
        conn.execute(kv_schema)
