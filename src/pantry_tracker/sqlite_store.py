"""SQLite-based data persistence for Pantry Tracker.

This module provides SQLite database storage as an alternative to JSON files.
It implements the same interface as DataStore for seamless switching.

Each record is stored as a JSON document, with the fields used for querying
copied into indexed columns.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .data_store import PersistenceFailure, matches_filters, parse_item
from .models import Category, Item, JobStatus, Recipe, Store, User, utcnow

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Manages SQLite database persistence for pantry price data."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | None = None):
        """Initialize SQLite store.

        Args:
            db_path: Path to the SQLite database file. Defaults to ./data/pantry.db
        """
        if db_path is None:
            db_path = Path.cwd() / "data" / "pantry.db"
        self.db_path = db_path
        self._ensure_directories()
        self._init_database()

    def _ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup.

        sqlite3 errors surface as PersistenceFailure.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailure(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize database schema if not exists."""
        with self._get_connection() as conn:
            conn.executescript("""
                -- Schema version tracking
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                );

                -- Tracked items with their full price history document
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    document TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_items_category ON items(category);
                CREATE INDEX IF NOT EXISTS idx_items_updated_at ON items(updated_at);

                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    document TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS stores (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    document TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS recipes (
                    id TEXT PRIMARY KEY,
                    document TEXT NOT NULL
                );

                -- One status row per scheduled job
                CREATE TABLE IF NOT EXISTS job_status (
                    job_name TEXT PRIMARY KEY,
                    document TEXT NOT NULL
                );

                -- Record schema version
                INSERT OR IGNORE INTO schema_version (version) VALUES (1);
            """)

    # --- Item Operations ---

    def _row_to_item(self, row: sqlite3.Row) -> Item | None:
        try:
            document = json.loads(row["document"])
        except json.JSONDecodeError as e:
            logger.error("Skipping unreadable item document %s: %s", row["id"], e)
            return None
        return parse_item(row["id"], document)

    def load_item(self, item_id: str) -> Item | None:
        """Load a single item.

        Args:
            item_id: ID of the item

        Returns:
            Item if found and valid, None otherwise
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT id, document FROM items WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def load_items(self, item_ids: list[str] | None = None) -> list[Item]:
        """Load items, optionally restricted to the given ids."""
        with self._get_connection() as conn:
            if item_ids is None:
                rows = conn.execute("SELECT id, document FROM items ORDER BY id").fetchall()
            elif not item_ids:
                rows = []
            else:
                placeholders = ",".join("?" for _ in item_ids)
                rows = conn.execute(
                    f"SELECT id, document FROM items WHERE id IN ({placeholders})",
                    list(item_ids),
                ).fetchall()

        by_id = {row["id"]: row for row in rows}
        order = item_ids if item_ids is not None else list(by_id)
        items = []
        for item_id in order:
            row = by_id.get(item_id)
            item = self._row_to_item(row) if row else None
            if item is not None:
                items.append(item)
        return items

    def list_item_ids(self, limit: int | None = None) -> list[str]:
        """Item ids, least recently updated first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id FROM items ORDER BY updated_at, id LIMIT ?",
                (limit if limit is not None else -1,),
            ).fetchall()
        return [row["id"] for row in rows]

    def load_items_by_category(
        self, category: Category | str, filters: dict[str, Any] | None = None
    ) -> list[Item]:
        """Load items in a category that match the filters."""
        category_value = getattr(category, "value", category)
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id, document FROM items WHERE category = ? ORDER BY id",
                (category_value,),
            ).fetchall()
        items = [self._row_to_item(row) for row in rows]
        return [item for item in items if item is not None and matches_filters(item, filters)]

    def save_item(self, item: Item) -> None:
        """Save one item, stamping its update time."""
        self.bulk_save_items([item])

    def bulk_save_items(self, items: list[Item]) -> None:
        """Save many items in one transaction."""
        if not items:
            return
        now = utcnow()
        for item in items:
            item.updated_at = now
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO items (id, name, category, updated_at, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        item.name,
                        item.category.value,
                        item.updated_at.isoformat(),
                        item.model_dump_json(),
                    )
                    for item in items
                ],
            )

    # --- User Operations ---

    def load_users(self) -> list[User]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT document FROM users ORDER BY name").fetchall()
        return [User.model_validate_json(row["document"]) for row in rows]

    def get_user(self, user_id: str) -> User | None:
        """Get a user by id or name."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM users WHERE id = ? OR name = ? LIMIT 1",
                (user_id, user_id),
            ).fetchone()
        return User.model_validate_json(row["document"]) if row else None

    def save_user(self, user: User) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (id, name, document) VALUES (?, ?, ?)",
                (user.id, user.name, user.model_dump_json()),
            )

    # --- Store Operations ---

    def load_stores(self) -> list[Store]:
        """Load all stores, sorted by name."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT document FROM stores ORDER BY lower(name), id").fetchall()
        return [Store.model_validate_json(row["document"]) for row in rows]

    def save_store(self, store: Store) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO stores (id, name, document) VALUES (?, ?, ?)",
                (store.id, store.name, store.model_dump_json()),
            )

    # --- Recipe Operations ---

    def load_recipes(self) -> list[Recipe]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT document FROM recipes ORDER BY id").fetchall()
        return [Recipe.model_validate_json(row["document"]) for row in rows]

    def get_recipe(self, recipe_id: str) -> Recipe | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM recipes WHERE id = ?", (recipe_id,)
            ).fetchone()
        return Recipe.model_validate_json(row["document"]) if row else None

    def save_recipes(self, recipes: list[Recipe]) -> None:
        if not recipes:
            return
        with self._get_connection() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO recipes (id, document) VALUES (?, ?)",
                [(recipe.id, recipe.model_dump_json()) for recipe in recipes],
            )

    # --- Job Status Operations ---

    def load_job_status(self, job_name: str) -> JobStatus | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM job_status WHERE job_name = ?", (job_name,)
            ).fetchone()
        return JobStatus.model_validate_json(row["document"]) if row else None

    def save_job_status(self, status: JobStatus) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO job_status (job_name, document) VALUES (?, ?)",
                (status.job_name, status.model_dump_json()),
            )
