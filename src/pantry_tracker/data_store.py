"""Data persistence for Pantry Tracker.

This module provides data persistence with support for JSON (default) or SQLite backends.
Use create_data_store() to get the appropriate backend based on configuration.

Both backends treat items as documents keyed by id. They are synchronous;
the async service layer runs them in worker threads.
"""

import json
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from .models import Category, Item, JobStatus, Recipe, Store, User, utcnow

logger = logging.getLogger(__name__)


class BackendType(str, Enum):
    """Data storage backend types."""

    JSON = "json"
    SQLITE = "sqlite"


class PersistenceFailure(Exception):
    """Raised when the backing store cannot be read or written."""


class ItemNotFoundError(Exception):
    """Raised when an item is not found."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item with ID '{item_id}' not found")


class DataStoreProtocol(Protocol):
    """Protocol defining the data store interface."""

    def load_item(self, item_id: str) -> Item | None: ...
    def load_items(self, item_ids: list[str] | None = None) -> list[Item]: ...
    def list_item_ids(self, limit: int | None = None) -> list[str]: ...
    def load_items_by_category(
        self, category: Category | str, filters: dict[str, Any] | None = None
    ) -> list[Item]: ...
    def save_item(self, item: Item) -> None: ...
    def bulk_save_items(self, items: list[Item]) -> None: ...
    def load_users(self) -> list[User]: ...
    def get_user(self, user_id: str) -> User | None: ...
    def save_user(self, user: User) -> None: ...
    def load_stores(self) -> list[Store]: ...
    def save_store(self, store: Store) -> None: ...
    def load_recipes(self) -> list[Recipe]: ...
    def get_recipe(self, recipe_id: str) -> Recipe | None: ...
    def save_recipes(self, recipes: list[Recipe]) -> None: ...
    def load_job_status(self, job_name: str) -> JobStatus | None: ...
    def save_job_status(self, status: JobStatus) -> None: ...


def matches_filters(item: Item, filters: dict[str, Any] | None) -> bool:
    """Check an item against the supported query filters.

    Supported keys: brand_type, is_seasonal_produce, buy_recommended.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        if key == "brand_type":
            if item.brand_type.value != getattr(expected, "value", expected):
                return False
        elif key == "is_seasonal_produce":
            if item.is_seasonal_produce != bool(expected):
                return False
        elif key == "buy_recommended":
            if item.recommendation.is_buy_recommended != bool(expected):
                return False
        else:
            raise ValueError(f"Unsupported item filter: {key}")
    return True


def parse_item(item_id: str, document: dict[str, Any]) -> Item | None:
    """Validate a stored item document, logging and skipping corrupt ones."""
    try:
        return Item.model_validate(document)
    except ValidationError as e:
        logger.error("Skipping invalid item document %s: %s", item_id, e.errors()[:3])
        return None


class DataStore:
    """Manages JSON file persistence for pantry price data."""

    def __init__(self, data_dir: Path | None = None):
        """Initialize data store.

        Args:
            data_dir: Directory for data files. Defaults to ./data
        """
        self.data_dir = data_dir or Path.cwd() / "data"
        self._lock = threading.RLock()
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _items_path(self) -> Path:
        return self.data_dir / "items.json"

    def _users_path(self) -> Path:
        return self.data_dir / "users.json"

    def _stores_path(self) -> Path:
        return self.data_dir / "stores.json"

    def _recipes_path(self) -> Path:
        return self.data_dir / "recipes.json"

    def _job_status_path(self) -> Path:
        return self.data_dir / "job_status.json"

    # --- Collection file helpers ---

    def _read_collection(self, path: Path) -> dict[str, Any]:
        """Read a JSON object keyed by document id."""
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"Cannot read {path.name}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceFailure(f"{path.name} is not a JSON object")
        return data

    def _write_collection(self, path: Path, data: dict[str, Any]) -> None:
        """Write a collection in one replace so readers never see a partial file."""
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"Cannot write {path.name}: {e}") from e

    def _upsert(self, path: Path, documents: dict[str, BaseModel]) -> None:
        with self._lock:
            data = self._read_collection(path)
            for doc_id, model in documents.items():
                data[doc_id] = model.model_dump(mode="json")
            self._write_collection(path, data)

    # --- Item Operations ---

    def load_item(self, item_id: str) -> Item | None:
        """Load a single item.

        Args:
            item_id: ID of the item

        Returns:
            Item if found and valid, None otherwise
        """
        with self._lock:
            document = self._read_collection(self._items_path()).get(item_id)
        if document is None:
            return None
        return parse_item(item_id, document)

    def load_items(self, item_ids: list[str] | None = None) -> list[Item]:
        """Load items, optionally restricted to the given ids.

        Invalid documents are skipped with an error log.
        """
        with self._lock:
            data = self._read_collection(self._items_path())
        if item_ids is None:
            selected = list(data.items())
        else:
            selected = [(item_id, data[item_id]) for item_id in item_ids if item_id in data]

        items = []
        for item_id, document in selected:
            item = parse_item(item_id, document)
            if item is not None:
                items.append(item)
        return items

    def list_item_ids(self, limit: int | None = None) -> list[str]:
        """Item ids, least recently updated first."""
        with self._lock:
            data = self._read_collection(self._items_path())
        ordered = sorted(data, key=lambda item_id: (str(data[item_id].get("updated_at", "")), item_id))
        return ordered[:limit] if limit is not None else ordered

    def load_items_by_category(
        self, category: Category | str, filters: dict[str, Any] | None = None
    ) -> list[Item]:
        """Load items in a category that match the filters."""
        category_value = getattr(category, "value", category)
        return [
            item
            for item in self.load_items()
            if item.category.value == category_value and matches_filters(item, filters)
        ]

    def save_item(self, item: Item) -> None:
        """Save one item, stamping its update time."""
        self.bulk_save_items([item])

    def bulk_save_items(self, items: list[Item]) -> None:
        """Save many items in a single write."""
        if not items:
            return
        now = utcnow()
        for item in items:
            item.updated_at = now
        self._upsert(self._items_path(), {item.id: item for item in items})

    # --- User Operations ---

    def load_users(self) -> list[User]:
        """Load all users."""
        with self._lock:
            data = self._read_collection(self._users_path())
        return [User.model_validate(doc) for doc in data.values()]

    def get_user(self, user_id: str) -> User | None:
        """Get a user by id or name."""
        for user in self.load_users():
            if user.id == user_id or user.name == user_id:
                return user
        return None

    def save_user(self, user: User) -> None:
        self._upsert(self._users_path(), {user.id: user})

    # --- Store Operations ---

    def load_stores(self) -> list[Store]:
        """Load all stores, sorted by name."""
        with self._lock:
            data = self._read_collection(self._stores_path())
        stores = [Store.model_validate(doc) for doc in data.values()]
        return sorted(stores, key=lambda s: (s.name.lower(), s.id))

    def save_store(self, store: Store) -> None:
        self._upsert(self._stores_path(), {store.id: store})

    # --- Recipe Operations ---

    def load_recipes(self) -> list[Recipe]:
        with self._lock:
            data = self._read_collection(self._recipes_path())
        return [Recipe.model_validate(doc) for doc in data.values()]

    def get_recipe(self, recipe_id: str) -> Recipe | None:
        with self._lock:
            document = self._read_collection(self._recipes_path()).get(recipe_id)
        return Recipe.model_validate(document) if document is not None else None

    def save_recipes(self, recipes: list[Recipe]) -> None:
        if recipes:
            self._upsert(self._recipes_path(), {recipe.id: recipe for recipe in recipes})

    # --- Job Status Operations ---

    def load_job_status(self, job_name: str) -> JobStatus | None:
        """Load the persisted status record for a job."""
        with self._lock:
            document = self._read_collection(self._job_status_path()).get(job_name)
        return JobStatus.model_validate(document) if document is not None else None

    def save_job_status(self, status: JobStatus) -> None:
        self._upsert(self._job_status_path(), {status.job_name: status})


def create_data_store(
    backend: BackendType = BackendType.JSON,
    data_dir: Path | None = None,
    db_path: Path | None = None,
) -> DataStoreProtocol:
    """Create a data store with the specified backend.

    Args:
        backend: Which backend to use (json or sqlite)
        data_dir: Directory for data files (used by JSON backend, also used
                  as base path for SQLite if db_path not specified)
        db_path: Path to SQLite database file (only used by SQLite backend)

    Returns:
        A DataStore or SQLiteStore instance

    Example:
        # Use JSON backend (default)
        store = create_data_store()

        # Use SQLite with custom path
        store = create_data_store(
            BackendType.SQLITE,
            db_path=Path("./my_data/pantry.db")
        )
    """
    if backend == BackendType.SQLITE:
        from .sqlite_store import SQLiteStore

        if db_path is None and data_dir is not None:
            db_path = data_dir / "pantry.db"

        return SQLiteStore(db_path=db_path)
    else:
        return DataStore(data_dir=data_dir)
