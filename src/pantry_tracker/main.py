"""CLI entry point for Pantry Tracker."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import typer

from .alerts import LoggingNotifier
from .bulk_buy import calculate_bulk_savings
from .config import ConfigError, ConfigManager
from .data_store import (
    BackendType,
    DataStoreProtocol,
    ItemNotFoundError,
    PersistenceFailure,
    create_data_store,
)
from .jobs import JobRunner
from .logging_setup import setup_logging
from .models import (
    BrandType,
    Category,
    Item,
    NotificationPreferences,
    Recipe,
    RecipeIngredient,
    Seasonality,
    Store,
    User,
    as_utc,
    utcnow,
)
from .output_formatter import OutputFormatter
from .price_service import PriceService
from .recipes import calculate_recipe_cost
from .scheduler import (
    DEFAULT_TRIGGERS,
    PRICE_ALERTS,
    PRICE_FETCH,
    PRICE_TRENDS,
    PriceScheduler,
    next_run_after,
)
from .sources import HttpObservationSource

app = typer.Typer(
    name="pantry",
    help="Grocery price tracking and buy recommendations",
    no_args_is_help=True,
)

# Global state for formatter and config (set by callback)
formatter: OutputFormatter = OutputFormatter()
config: ConfigManager | None = None
data_store: DataStoreProtocol | None = None
source: HttpObservationSource | None = None


def get_config() -> ConfigManager:
    """Get or create ConfigManager instance."""
    global config
    if config is None:
        config = ConfigManager()
    return config


def get_data_store() -> DataStoreProtocol:
    """Get or create the data store using config values."""
    global data_store
    if data_store is None:
        cfg = get_config()
        backend = BackendType(cfg.data.backend)
        data_store = create_data_store(backend=backend, data_dir=cfg.data.storage_dir)
    return data_store


def get_service() -> PriceService:
    cfg = get_config()
    return PriceService(
        get_data_store(),
        pricing=cfg.pricing,
        sweep=cfg.sweep,
        alerts=cfg.alerts,
        source=source,
    )


def get_scheduler() -> PriceScheduler:
    cfg = get_config()
    runner = JobRunner(
        get_data_store(), stale_after=timedelta(minutes=cfg.sweep.stale_job_minutes)
    )
    return PriceScheduler(get_service(), runner, notifier=LoggingNotifier())


def _run(coro: Any) -> Any:
    """Run a coroutine to completion, closing the HTTP source afterwards."""

    async def runner() -> Any:
        try:
            return await coro
        finally:
            if source is not None:
                await source.close()

    return asyncio.run(runner())


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        raise typer.BadParameter(f"Not an ISO date/time: {value}") from None


def _fail(e: Exception) -> None:
    """Report an error and exit with status 1."""
    if isinstance(e, ItemNotFoundError):
        formatter.error(str(e), error_code="ITEM_NOT_FOUND")
    elif isinstance(e, PersistenceFailure):
        formatter.error(str(e), error_code="PERSISTENCE_FAILURE")
    elif isinstance(e, ValueError):
        formatter.error(str(e), error_code="INVALID_INPUT")
    else:
        formatter.error(str(e))
    raise typer.Exit(code=1)


@app.callback()
def main(
    json_output: Annotated[
        bool, typer.Option("--json", help="Output as JSON for programmatic use")
    ] = False,
    data_dir: Annotated[Path | None, typer.Option("--data-dir", help="Data directory path")] = None,
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Path to config.toml")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Pantry Tracker CLI - Track grocery prices and know when to buy."""
    global formatter, config, data_store, source

    formatter = OutputFormatter(json_mode=json_output)

    try:
        config = ConfigManager(config_path)
    except (ConfigError, OSError) as e:
        formatter.error(str(e), error_code="CONFIG_ERROR")
        raise typer.Exit(code=1)

    if verbose:
        level = "DEBUG"
    elif json_output:
        level = "WARNING"
    else:
        level = config.logging.level
    setup_logging(level)

    # CLI --data-dir overrides config, which overrides default
    effective_data_dir = data_dir if data_dir else config.data.storage_dir
    backend = BackendType(config.data.backend)
    data_store = create_data_store(backend=backend, data_dir=effective_data_dir)

    source = None
    if config.source.base_url:
        source = HttpObservationSource.from_config(
            config.source, timeout=config.sweep.fetch_timeout_seconds
        )


# Item subcommand group
item_app = typer.Typer(help="Tracked item commands")
app.add_typer(item_app, name="item")


@item_app.command("add")
def item_add(
    name: Annotated[str, typer.Argument(help="Item name")],
    category: Annotated[
        Category, typer.Option("--category", "-c", help="Product category")
    ] = Category.PANTRY,
    brand_type: Annotated[
        BrandType, typer.Option("--brand-type", "-b", help="Brand positioning")
    ] = BrandType.NATIONAL,
    size: Annotated[str | None, typer.Option("--size", help="Package size")] = None,
    unit: Annotated[str | None, typer.Option("--unit", "-u", help="Unit of measurement")] = None,
    seasonal: Annotated[
        bool, typer.Option("--seasonal", help="Seasonal produce")
    ] = False,
    peak_month: Annotated[
        list[int] | None, typer.Option("--peak-month", help="Peak season month (1-12)")
    ] = None,
    window_weeks: Annotated[
        int | None, typer.Option("--window-weeks", help="Price range window in weeks")
    ] = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Allow duplicate items")] = False,
) -> None:
    """Start tracking an item."""
    try:
        fields: dict[str, Any] = {
            "brand_type": brand_type,
            "size": size,
            "unit": unit,
            "is_seasonal_produce": seasonal,
            "seasonality": Seasonality(peak_months=peak_month or []),
            "window_weeks": window_weeks or get_config().pricing.window_weeks,
        }
        if force:
            item = Item(name=name, category=category, **fields)
            get_data_store().save_item(item)
            created = True
        else:
            item, created = _run(get_service().ensure_item(name, category, **fields))

        if not created:
            formatter.error(
                f"'{item.name}' is already tracked (ID {item.id}); use --force to add anyway",
                error_code="DUPLICATE_ITEM",
            )
            raise typer.Exit(code=1)

        output_data = {
            "success": True,
            "message": f"Tracking {item.name}",
            "data": {"item": item.model_dump(mode="json")},
        }
        formatter.output(output_data, output_data["message"])
    except typer.Exit:
        raise
    except Exception as e:
        _fail(e)


@item_app.command("show")
def item_show(
    item_id: Annotated[str, typer.Argument(help="Item ID")],
) -> None:
    """Show an item with its aggregates and recommendation."""
    try:
        item = _run(get_service().get_item(item_id))
        formatter.output({"success": True, "data": {"item": item.model_dump(mode="json")}})
    except Exception as e:
        _fail(e)


@item_app.command("list")
def item_list(
    category: Annotated[
        Category | None, typer.Option("--category", "-c", help="Filter by category")
    ] = None,
    recommended: Annotated[
        bool, typer.Option("--recommended", help="Only items recommended to buy")
    ] = False,
) -> None:
    """List tracked items."""
    try:
        filters = {"buy_recommended": True} if recommended else None
        items = _run(get_service().list_items(category, filters))
        formatter.output(
            {"success": True, "data": {"items": [i.model_dump(mode="json") for i in items]}}
        )
    except Exception as e:
        _fail(e)


# Price subcommand group
price_app = typer.Typer(help="Price observation commands")
app.add_typer(price_app, name="price")


@price_app.command("ingest")
def price_ingest(
    item_id: Annotated[str, typer.Argument(help="Item ID")],
    store_id: Annotated[str, typer.Argument(help="Store ID")],
    price: Annotated[str, typer.Argument(help="Observed price")],
    at: Annotated[
        str | None, typer.Option("--at", help="Observation time (ISO 8601)")
    ] = None,
    recompute: Annotated[
        bool, typer.Option("--recompute/--no-recompute", help="Refresh aggregates")
    ] = True,
) -> None:
    """Record a price seen at a store."""
    try:
        result = _run(
            get_service().ingest_observation(
                item_id, store_id, price, _parse_time(at), recompute=recompute
            )
        )
        if not result.accepted:
            formatter.error(
                f"Rejected price {price!r}: {result.rejected_reason.value}",
                error_code=result.rejected_reason.value,
            )
            raise typer.Exit(code=1)
        formatter.success(
            f"Recorded ${result.observation.price} at {store_id}",
            {"observation": result.observation.model_dump(mode="json")},
        )
    except typer.Exit:
        raise
    except Exception as e:
        _fail(e)


@price_app.command("history")
def price_history(
    item_id: Annotated[str, typer.Argument(help="Item ID")],
) -> None:
    """View price history for an item."""
    try:
        item = _run(get_service().get_item(item_id))
        history = sorted(item.price_history, key=lambda obs: obs.observed_at)
        output_data = {
            "success": True,
            "data": {
                "item_id": item.id,
                "name": item.name,
                "history": [obs.model_dump(mode="json") for obs in history],
            },
        }
        formatter.output(output_data, f"Price history for {item.name}")
    except Exception as e:
        _fail(e)


@price_app.command("recompute")
def price_recompute(
    item_id: Annotated[str, typer.Argument(help="Item ID")],
    as_of: Annotated[
        str | None, typer.Option("--as-of", help="Reference time (ISO 8601)")
    ] = None,
) -> None:
    """Recompute an item's aggregates."""
    try:
        item = _run(get_service().recompute_item(item_id, _parse_time(as_of)))
        formatter.output(
            {"success": True, "data": {"item": item.model_dump(mode="json")}},
            f"Recomputed {item.name}",
        )
    except Exception as e:
        _fail(e)


@price_app.command("deals")
def price_deals(
    category: Annotated[
        list[Category] | None, typer.Option("--category", "-c", help="Limit to category")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum deals")] = 10,
) -> None:
    """Show the best current buy recommendations."""
    try:
        deals = _run(get_service().best_deals(category, limit))
        formatter.output(
            {"success": True, "data": {"deals": [i.model_dump(mode="json") for i in deals]}}
        )
    except Exception as e:
        _fail(e)


# Store subcommand group
store_app = typer.Typer(help="Store commands")
app.add_typer(store_app, name="store")


@store_app.command("add")
def store_add(
    name: Annotated[str, typer.Argument(help="Store name")],
    store_id: Annotated[str | None, typer.Option("--id", help="Store ID used by the price API")] = None,
    chain: Annotated[str | None, typer.Option("--chain", help="Chain name")] = None,
    zip_code: Annotated[str | None, typer.Option("--zip", help="ZIP code")] = None,
    api: Annotated[bool, typer.Option("--api/--no-api", help="Fetch prices from the API")] = True,
) -> None:
    """Register a store."""
    try:
        fields: dict[str, Any] = {"chain_name": chain, "zip_code": zip_code, "api_enabled": api}
        if store_id:
            fields["id"] = store_id
        store = Store(name=name, **fields)
        get_data_store().save_store(store)
        formatter.success(f"Added store {store.name} ({store.id})", {"store": store.model_dump()})
    except Exception as e:
        _fail(e)


# Sweep subcommand group
sweep_app = typer.Typer(help="Batch reconciliation commands")
app.add_typer(sweep_app, name="sweep")


@sweep_app.command("run")
def sweep_run(
    no_fetch: Annotated[
        bool, typer.Option("--no-fetch", help="Recompute stored data without fetching")
    ] = False,
) -> None:
    """Run a reconciliation sweep now."""
    try:
        job_name = PRICE_TRENDS if no_fetch else PRICE_FETCH
        status = _run(get_scheduler().run_job_now(job_name))
        if status.state.value == "skipped":
            formatter.warning(f"Job {job_name} is already running")
            return
        formatter.output(
            {"success": True, "data": {"sweep": status.summary}},
            f"Sweep {job_name} completed",
        )
    except Exception as e:
        _fail(e)


@sweep_app.command("status")
def sweep_status() -> None:
    """Show the status of each scheduled job."""
    try:
        store = get_data_store()
        now = utcnow()
        jobs = []
        for name, trigger in DEFAULT_TRIGGERS.items():
            status = store.load_job_status(name)
            record = status.model_dump(mode="json") if status else {
                "job_name": name,
                "state": "idle",
                "progress": 0,
            }
            record["next_run"] = next_run_after(trigger, now).isoformat()
            jobs.append(record)
        formatter.output({"success": True, "data": {"jobs": jobs}})
    except Exception as e:
        _fail(e)


# Alerts subcommand group
alerts_app = typer.Typer(help="Price alert commands")
app.add_typer(alerts_app, name="alerts")


@alerts_app.command("preview")
def alerts_preview() -> None:
    """Show which alerts each user would receive."""
    try:
        store = get_data_store()
        users = store.load_users()
        selections = _run(get_service().get_alerts_for_users(users))
        output_data = {
            "success": True,
            "data": {
                "alerts": {
                    user_id: [a.model_dump(mode="json") for a in alerts]
                    for user_id, alerts in selections.items()
                },
                "users": {user.id: user.name for user in users},
            },
        }
        formatter.output(output_data)
    except Exception as e:
        _fail(e)


@alerts_app.command("send")
def alerts_send() -> None:
    """Select and dispatch alerts (logged only)."""
    try:
        status = _run(get_scheduler().run_job_now(PRICE_ALERTS))
        formatter.success(f"Alert job {status.state.value}", {"dispatch": status.summary})
    except Exception as e:
        _fail(e)


# Preferences subcommand group
prefs_app = typer.Typer(help="User alert preferences")
app.add_typer(prefs_app, name="prefs")


@prefs_app.command("view")
def prefs_view(
    user: Annotated[str, typer.Argument(help="User ID or name")],
) -> None:
    """View a user's alert preferences."""
    try:
        existing = get_data_store().get_user(user)
        if existing is None:
            formatter.warning(f"No preferences found for '{user}'")
            return
        formatter.output(
            {"success": True, "data": {"preferences": existing.model_dump(mode="json")}},
            f"Preferences for {existing.name}",
        )
    except Exception as e:
        _fail(e)


@prefs_app.command("set")
def prefs_set(
    user: Annotated[str, typer.Argument(help="User ID or name")],
    category: Annotated[
        list[str] | None, typer.Option("--category", help="Alert category (or All)")
    ] = None,
    track: Annotated[list[str] | None, typer.Option("--track", help="Item ID to track")] = None,
    email: Annotated[str | None, typer.Option("--email", help="Email address")] = None,
    email_verified: Annotated[
        bool | None, typer.Option("--email-verified/--email-unverified")
    ] = None,
    phone: Annotated[str | None, typer.Option("--phone", help="Phone number for SMS")] = None,
    phone_verified: Annotated[
        bool | None, typer.Option("--phone-verified/--phone-unverified")
    ] = None,
    email_alerts: Annotated[
        bool | None, typer.Option("--email-alerts/--no-email-alerts")
    ] = None,
    sms_alerts: Annotated[bool | None, typer.Option("--sms-alerts/--no-sms-alerts")] = None,
) -> None:
    """Set a user's alert preferences."""
    try:
        store = get_data_store()
        existing = store.get_user(user)

        if existing is None:
            existing = User(name=user, notifications=NotificationPreferences())

        if category:
            valid = {c.value for c in Category} | {"All"}
            unknown = [c for c in category if c not in valid]
            if unknown:
                raise ValueError(f"Unknown category: {', '.join(unknown)}")
            existing.alert_categories = list(dict.fromkeys(category))

        if track:
            for item_id in track:
                if item_id not in existing.tracked_item_ids:
                    existing.tracked_item_ids.append(item_id)

        if email is not None:
            existing.email = email
        if email_verified is not None:
            existing.email_verified = email_verified
        if phone is not None:
            existing.phone_number = phone
        if phone_verified is not None:
            existing.phone_verified = phone_verified
        if email_alerts is not None:
            existing.notifications.email_price_alerts = email_alerts
        if sms_alerts is not None:
            existing.notifications.sms_price_alerts = sms_alerts

        store.save_user(existing)

        output_data = {
            "success": True,
            "message": f"Updated preferences for {existing.name}",
            "data": {"preferences": existing.model_dump(mode="json")},
        }
        formatter.output(output_data, output_data["message"])
    except Exception as e:
        _fail(e)


# Recipe subcommand group
recipe_app = typer.Typer(help="Recipe cost commands")
app.add_typer(recipe_app, name="recipe")


@recipe_app.command("add")
def recipe_add(
    name: Annotated[str, typer.Argument(help="Recipe name")],
    ingredient: Annotated[
        list[str], typer.Option("--ingredient", "-i", help="ITEM_ID[:QUANTITY]")
    ],
    servings: Annotated[int, typer.Option("--servings", help="Servings")] = 1,
) -> None:
    """Create a recipe from tracked items."""
    try:
        store = get_data_store()
        ingredients = []
        for entry in ingredient:
            item_id, _, quantity = entry.partition(":")
            item = store.load_item(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            ingredients.append(
                RecipeIngredient(item_id=item.id, name=item.name, quantity=Decimal(quantity or "1"))
            )
        recipe = Recipe(name=name, servings=servings, ingredients=ingredients)
        store.save_recipes([recipe])
        formatter.success(f"Added recipe {recipe.name} ({recipe.id})", {"recipe": recipe.model_dump(mode="json")})
    except ArithmeticError:
        formatter.error(f"Invalid ingredient quantity in: {', '.join(ingredient)}", error_code="INVALID_INPUT")
        raise typer.Exit(code=1)
    except Exception as e:
        _fail(e)


@recipe_app.command("cost")
def recipe_cost(
    recipe_id: Annotated[str, typer.Argument(help="Recipe ID")],
) -> None:
    """Price a recipe from current ingredient prices."""
    try:
        store = get_data_store()
        recipe = store.get_recipe(recipe_id)
        if recipe is None:
            formatter.error(f"Recipe with ID '{recipe_id}' not found", error_code="RECIPE_NOT_FOUND")
            raise typer.Exit(code=1)
        item_ids = [i.item_id for i in recipe.ingredients if i.item_id]
        items = {item.id: item for item in store.load_items(item_ids)}
        priced = calculate_recipe_cost(recipe, items, utcnow())
        store.save_recipes([priced])
        formatter.output({"success": True, "data": {"recipe": priced.model_dump(mode="json")}})
    except typer.Exit:
        raise
    except Exception as e:
        _fail(e)


# Bulk buy subcommand group
bulk_app = typer.Typer(help="Bulk purchase planning")
app.add_typer(bulk_app, name="bulk")


@bulk_app.command("calc")
def bulk_calc(
    price: Annotated[str, typer.Argument(help="Regular price per unit")],
    monthly_usage: Annotated[float, typer.Argument(help="Units used per month")],
    months: Annotated[int, typer.Option("--months", "-m", help="Months of supply")] = 3,
    item: Annotated[str, typer.Option("--item", help="Item name")] = "Item",
) -> None:
    """Estimate bulk buy savings."""
    try:
        calculation = calculate_bulk_savings(
            item,
            Decimal(price),
            monthly_usage,
            months,
            get_config().bulk_buy.discount_schedule,
        )
        output_data = {
            "success": True,
            "message": (
                f"Buy {calculation.recommended_quantity} to save "
                f"{calculation.savings_pct}% over {calculation.months} months."
            ),
            "data": {"bulk": calculation.model_dump(mode="json")},
        }
        formatter.output(output_data, output_data["message"])
    except ArithmeticError:
        formatter.error(f"Invalid price: {price}", error_code="INVALID_INPUT")
        raise typer.Exit(code=1)
    except Exception as e:
        _fail(e)


# Scheduler subcommand group
schedule_app = typer.Typer(help="Background scheduler")
app.add_typer(schedule_app, name="schedule")


@schedule_app.command("run")
def schedule_run() -> None:
    """Run the job scheduler until interrupted."""
    formatter.success("Scheduler running; press Ctrl+C to stop")
    try:
        _run(get_scheduler().run_forever())
    except KeyboardInterrupt:
        formatter.success("Scheduler stopped")


if __name__ == "__main__":
    app()
