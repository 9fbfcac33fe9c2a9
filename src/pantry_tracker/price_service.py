"""Async price tracking service.

Entry points for schedulers and command handlers: ingesting observations,
recomputing items, the batch reconciliation sweep and alert selection.

Every read-modify-write of an item happens under that item's lock and starts
from a fresh read, so a sweep and an on-demand ingest touching the same item
never write back stale aggregates. Different items proceed independently.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from .aggregates import AggregateComputationError, recompute_aggregates
from .alerts import AlertNotifier, dispatch_alerts, select_alerts
from .config import AlertsConfig, PricingConfig, SweepConfig
from .data_store import DataStoreProtocol, ItemNotFoundError, matches_filters
from .history import prune_history
from .ingestion import ingest
from .item_normalizer import display_name, normalize_item_name
from .models import (
    Category,
    DispatchSummary,
    FetchFailure,
    IngestResult,
    Item,
    ItemAlert,
    RawObservation,
    Recipe,
    SweepSummary,
    User,
    as_utc,
    utcnow,
)
from .recipes import calculate_recipe_cost
from .sources import ExternalFetchFailure, ObservationSource

logger = logging.getLogger(__name__)


class PriceService:
    """Coordinates ingestion, aggregation and persistence of item prices."""

    def __init__(
        self,
        store: DataStoreProtocol,
        pricing: PricingConfig | None = None,
        sweep: SweepConfig | None = None,
        alerts: AlertsConfig | None = None,
        source: ObservationSource | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.pricing = pricing or PricingConfig()
        self.sweep_config = sweep or SweepConfig()
        self.alerts_config = alerts or AlertsConfig()
        self.source = source
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _lock(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for a key; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[key] -= 1
            if not self._lock_holders[key]:
                del self._lock_holders[key]
                del self._locks[key]

    async def _load(self, item_id: str) -> Item:
        item = await asyncio.to_thread(self.store.load_item, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _recompute(self, item: Item, as_of: datetime) -> Item:
        """Recompute aggregates, keeping the stored state if they cannot be computed."""
        try:
            return recompute_aggregates(item, as_of, self.pricing)
        except AggregateComputationError as e:
            logger.error("Keeping previous aggregates for item %s: %s", item.id, e.detail)
            return item

    # --- Single-item operations ---

    async def get_item(self, item_id: str) -> Item:
        """Read an item as stored.

        Raises:
            ItemNotFoundError: If no valid item has this id
        """
        return await self._load(item_id)

    async def ingest_observation(
        self,
        item_id: str,
        store_id: str,
        price: Any,
        observed_at: datetime | None = None,
        recompute: bool = False,
    ) -> IngestResult:
        """Validate and record one observation for an item.

        Args:
            item_id: Item receiving the observation
            store_id: Store the price was seen at
            price: Unvalidated price
            observed_at: When the price was seen; defaults to now
            recompute: Also refresh aggregates in the same write

        Returns:
            IngestResult; rejected prices leave the stored item untouched

        Raises:
            ItemNotFoundError: If the item does not exist
            PersistenceFailure: If the item cannot be read or written
        """
        async with self._lock(item_id):
            item = await self._load(item_id)
            now = self._clock()
            result = ingest(item, store_id, price, observed_at, now=now)
            if not result.accepted:
                return result
            if recompute:
                item = self._recompute(item, max(now, result.observation.observed_at))
            await asyncio.to_thread(self.store.save_item, item)
        return result

    async def recompute_item(self, item_id: str, as_of: datetime | None = None) -> Item:
        """Recompute and persist one item's aggregates from a fresh read.

        An item whose aggregates cannot be computed is returned as stored.

        Raises:
            ItemNotFoundError: If the item does not exist
            PersistenceFailure: If the item cannot be read or written
        """
        as_of = as_utc(as_of) if as_of is not None else self._clock()
        async with self._lock(item_id):
            item = await self._load(item_id)
            try:
                updated = recompute_aggregates(item, as_of, self.pricing)
            except AggregateComputationError as e:
                logger.error("Cannot recompute item %s: %s", item_id, e.detail)
                return item
            await asyncio.to_thread(self.store.save_item, updated)
        return updated

    async def ensure_item(
        self,
        name: str,
        category: Category = Category.PANTRY,
        **fields: Any,
    ) -> tuple[Item, bool]:
        """Return the tracked item with this name, creating it if needed.

        Names are matched by normalized identity, so "Fresh Whole Milk 1 gal"
        finds "Whole Milk".

        Returns:
            (item, created)
        """
        key = normalize_item_name(name)
        async with self._lock(f"name:{key}"):
            existing = await self.find_item_by_name(name)
            if existing is not None:
                return existing, False

            fields.setdefault("window_weeks", self.pricing.window_weeks)
            item = Item(name=display_name(name), category=category, **fields)
            await asyncio.to_thread(self.store.save_item, item)
        logger.info("Created item %s (%s)", item.name, item.id)
        return item, True

    async def find_item_by_name(self, name: str) -> Item | None:
        key = normalize_item_name(name)
        items = await asyncio.to_thread(self.store.load_items)
        for item in items:
            if normalize_item_name(item.name) == key:
                return item
        return None

    # --- Read-side queries ---

    async def list_items(
        self, category: Category | None = None, filters: dict[str, Any] | None = None
    ) -> list[Item]:
        if category is None:
            items = await asyncio.to_thread(self.store.load_items)
            items = [item for item in items if matches_filters(item, filters)]
        else:
            items = await asyncio.to_thread(self.store.load_items_by_category, category, filters)
        return sorted(items, key=lambda i: i.name.lower())

    async def best_deals(
        self, categories: Iterable[Category] | None = None, limit: int = 10
    ) -> list[Item]:
        """Buy-recommended items, biggest discount from the window high first."""
        wanted = set(categories) if categories else None
        items = await asyncio.to_thread(self.store.load_items)

        def discount(item: Item) -> Decimal:
            if item.price_range is None or item.price_range.max <= 0 or item.current_price is None:
                return Decimal("0")
            return (item.price_range.max - item.current_price.price) / item.price_range.max

        deals = [
            item
            for item in items
            if item.recommendation.is_buy_recommended
            and item.current_price is not None
            and (wanted is None or item.category in wanted)
        ]
        deals.sort(key=lambda item: (-discount(item), item.name.lower()))
        return deals[:limit]

    async def get_alerts_for_users(
        self, users: list[User] | None = None, items: list[Item] | None = None
    ) -> dict[str, list[ItemAlert]]:
        """Select alerts per user from the given (or all stored) items."""
        if users is None:
            users = await asyncio.to_thread(self.store.load_users)
        if items is None:
            items = await asyncio.to_thread(self.store.load_items)
        return select_alerts(items, users)

    async def send_alerts(
        self, notifier: AlertNotifier, items: list[Item] | None = None
    ) -> DispatchSummary:
        """Select and dispatch alerts to every user."""
        users = await asyncio.to_thread(self.store.load_users)
        selections = await self.get_alerts_for_users(users, items)
        return await dispatch_alerts(selections, users, notifier, self.alerts_config)

    # --- Batch operations ---

    async def _fetch_one(
        self,
        semaphore: asyncio.Semaphore,
        store_id: str,
        item_id: str,
        summary: SweepSummary,
    ) -> list[RawObservation] | None:
        """Fetch one (store, item) pair; None records a failure."""
        timeout = self.sweep_config.fetch_timeout_seconds
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self.source.fetch_observations(store_id, [item_id]), timeout
                )
            except TimeoutError:
                error = f"timed out after {timeout:g}s"
            except ExternalFetchFailure as e:
                error = e.detail
            except Exception as e:
                logger.exception("Unexpected error fetching item %s from store %s", item_id, store_id)
                error = f"{type(e).__name__}: {e}"
        logger.error("Fetch of item %s from store %s failed: %s", item_id, store_id, error)
        summary.fetch_failures.append(FetchFailure(store_id=store_id, item_id=item_id, error=error))
        return None

    async def _fetch_all(
        self, store_ids: list[str], item_ids: list[str], summary: SweepSummary
    ) -> tuple[dict[str, list[RawObservation]], set[str]]:
        """Fetch every pair; returns observations per item and items with no successful fetch."""
        semaphore = asyncio.Semaphore(self.sweep_config.fetch_concurrency)
        pairs = [(store_id, item_id) for store_id in store_ids for item_id in item_ids]
        results = await asyncio.gather(
            *(self._fetch_one(semaphore, store_id, item_id, summary) for store_id, item_id in pairs)
        )

        observations: dict[str, list[RawObservation]] = defaultdict(list)
        succeeded: set[str] = set()
        for (_store_id, item_id), fetched in zip(pairs, results):
            if fetched is None:
                continue
            succeeded.add(item_id)
            for raw in fetched:
                if raw.item_id == item_id:
                    observations[item_id].append(raw)
        return observations, set(item_ids) - succeeded

    async def recompute_items(
        self,
        item_ids: list[str],
        as_of: datetime,
        observations: dict[str, list[RawObservation]] | None = None,
        skip: set[str] | None = None,
        prune: bool = False,
        summary: SweepSummary | None = None,
    ) -> list[Item]:
        """Merge observations into items, recompute them and save them in one write.

        All touched items are locked (in id order) for the read-merge-write, and
        each is re-read inside the lock.

        Raises:
            PersistenceFailure: If reading or the bulk write fails
        """
        summary = summary or SweepSummary()
        observations = observations or {}
        skip = skip or set()
        item_ids = list(dict.fromkeys(item_ids))

        updated: list[Item] = []
        async with AsyncExitStack() as stack:
            for item_id in sorted(item_ids):
                await stack.enter_async_context(self._lock(item_id))

            fresh = {item.id: item for item in await asyncio.to_thread(self.store.load_items, item_ids)}
            for item_id in item_ids:
                if item_id in skip:
                    self._mark_failed(summary, item_id, "no store fetch succeeded")
                    continue
                item = fresh.get(item_id)
                if item is None:
                    self._mark_failed(summary, item_id, "missing or invalid item document")
                    continue

                results = [
                    ingest(item, raw.store_id, raw.price, raw.observed_at, now=as_of)
                    for raw in observations.get(item_id, [])
                ]

                if prune:
                    removed = prune_history(item, as_of, self.pricing.retention_weeks)
                    if removed:
                        logger.debug("Pruned %d observations from item %s", removed, item_id)

                try:
                    updated.append(recompute_aggregates(item, as_of, self.pricing))
                except AggregateComputationError as e:
                    self._mark_failed(summary, item_id, e.detail)
                    continue

                accepted = sum(1 for result in results if result.accepted)
                summary.observations_ingested += accepted
                summary.observations_rejected += len(results) - accepted

            await asyncio.to_thread(self.store.bulk_save_items, updated)

        summary.updated = len(updated)
        return updated

    @staticmethod
    def _mark_failed(summary: SweepSummary, item_id: str, reason: str) -> None:
        logger.error("Sweep failed for item %s: %s", item_id, reason)
        summary.failed += 1
        summary.failed_item_ids.append(item_id)

    async def run_reconciliation_sweep(
        self,
        fetch: bool = True,
        prune: bool = False,
        as_of: datetime | None = None,
    ) -> tuple[SweepSummary, list[Item]]:
        """Fetch new prices for a bounded batch and refresh every item's aggregates.

        Fetching covers up to ``max_stores`` API-enabled stores and ``max_items``
        items (least recently updated first); every item is recomputed. A
        failed fetch only fails its item, and only when none of that item's
        store fetches succeeded; nothing is retried within the sweep.

        Args:
            fetch: Fetch from the observation source before recomputing
            prune: Drop observations older than the retention period
            as_of: Reference time; defaults to the clock after fetching

        Returns:
            (summary, updated items)

        Raises:
            PersistenceFailure: If the item collection cannot be read or written
        """
        summary = SweepSummary(started_at=self._clock())
        bounds = self.sweep_config
        item_ids = await asyncio.to_thread(self.store.list_item_ids, None)
        fetch_ids = item_ids[: bounds.max_items]

        observations: dict[str, list[RawObservation]] = {}
        unfetched: set[str] = set()
        if fetch and self.source is not None and fetch_ids:
            stores = [s for s in await asyncio.to_thread(self.store.load_stores) if s.api_enabled]
            store_ids = [s.id for s in stores[: bounds.max_stores]]
            if store_ids:
                observations, unfetched = await self._fetch_all(store_ids, fetch_ids, summary)
        elif fetch and self.source is None:
            logger.warning("No observation source configured, recomputing without fetching")

        as_of = as_utc(as_of) if as_of is not None else self._clock()
        updated = await self.recompute_items(
            item_ids, as_of, observations, skip=unfetched, prune=prune, summary=summary
        )
        summary.finished_at = self._clock()
        logger.info(
            "Sweep finished: %d updated, %d failed, %d observations ingested, %d rejected",
            summary.updated,
            summary.failed,
            summary.observations_ingested,
            summary.observations_rejected,
        )
        return summary, updated

    async def refresh_seasonality(self, as_of: datetime | None = None) -> list[Item]:
        """Recompute produce items so their in-season flag follows the calendar."""
        as_of = as_utc(as_of) if as_of is not None else self._clock()
        produce = await asyncio.to_thread(self.store.load_items_by_category, Category.PRODUCE)
        return await self.recompute_items([item.id for item in produce], as_of)

    async def update_recipe_prices(self, as_of: datetime | None = None) -> list[Recipe]:
        """Reprice every recipe from current ingredient prices."""
        as_of = as_utc(as_of) if as_of is not None else self._clock()
        recipes = await asyncio.to_thread(self.store.load_recipes)
        items = {item.id: item for item in await asyncio.to_thread(self.store.load_items)}
        priced = [calculate_recipe_cost(recipe, items, as_of) for recipe in recipes]
        await asyncio.to_thread(self.store.save_recipes, priced)
        logger.info("Updated prices for %d recipes", len(priced))
        return priced
