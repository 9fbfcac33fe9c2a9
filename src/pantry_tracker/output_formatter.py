"""Output formatting for CLI and programmatic use."""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


class JSONEncoder(json.JSONEncoder):
    """Custom JSON encoder for output."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


def _money(value: Any) -> str:
    if value is None:
        return "-"
    return f"${Decimal(str(value)):.2f}"


def _pct(value: Any) -> str:
    if value is None:
        return "-"
    color = "green" if value < 0 else "red" if value > 0 else "white"
    return f"[{color}]{value:+.2f}%[/{color}]"


class OutputFormatter:
    """Formats output for both Rich terminal and JSON modes."""

    def __init__(self, json_mode: bool = False):
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode
        self.console = Console()

    def output(self, data: dict[str, Any], message: str = "") -> None:
        """Output data in appropriate format.

        Args:
            data: Data to output
            message: Optional message for Rich mode
        """
        if self.json_mode:
            self._output_json(data)
        else:
            self._output_rich(data, message)

    def _output_json(self, data: dict[str, Any]) -> None:
        """Output as JSON to stdout."""
        print(json.dumps(data, cls=JSONEncoder, indent=2))

    def _output_rich(self, data: dict[str, Any], message: str) -> None:
        """Output with Rich formatting."""
        if message:
            self.console.print(f"[green]✓[/green] {message}")

        payload = data.get("data", {})
        if "items" in payload:
            self._render_items(payload["items"])
        elif "history" in payload:
            self._render_price_history(payload)
        elif "item" in payload:
            self._render_item(payload["item"])
        elif "deals" in payload:
            self._render_deals(payload["deals"])
        elif "sweep" in payload:
            self._render_sweep(payload["sweep"])
        elif "jobs" in payload:
            self._render_jobs(payload["jobs"])
        elif "alerts" in payload:
            self._render_alerts(payload["alerts"], payload.get("users", {}))
        elif "preferences" in payload:
            self._render_preferences(payload["preferences"])
        elif "recipe" in payload:
            self._render_recipe(payload["recipe"])
        elif "bulk" in payload:
            self._render_bulk(payload["bulk"])

    def _render_items(self, items: list[dict]) -> None:
        """Render tracked items with their current signals."""
        if not items:
            self.console.print("[dim]No items tracked[/dim]")
            return

        table = Table(title="Tracked Items", show_header=True, header_style="bold cyan")
        table.add_column("Item", style="cyan")
        table.add_column("Category", style="yellow")
        table.add_column("Current", justify="right")
        table.add_column("Window Low", justify="right", style="green")
        table.add_column("Monthly", justify="right")
        table.add_column("Buy", justify="center")
        table.add_column("ID", style="dim")

        for item in items:
            current = item.get("current_price") or {}
            lowest = item.get("current_lowest_price") or {}
            trend = item.get("price_trend") or {}
            buy = "[green]✓[/green]" if item["recommendation"]["is_buy_recommended"] else ""
            table.add_row(
                item["name"],
                item["category"],
                _money(current.get("price")),
                _money(lowest.get("price")),
                _pct(trend.get("monthly_change_pct")),
                buy,
                item["id"][:8],
            )

        self.console.print(table)
        self.console.print(f"\nTotal items: {len(items)}")

    def _render_item(self, item: dict) -> None:
        """Render a single item with its aggregates."""
        current = item.get("current_price") or {}
        lowest = item.get("current_lowest_price") or {}
        price_range = item.get("price_range")
        trend = item.get("price_trend") or {}
        rec = item["recommendation"]

        panel_content = f"""[bold]{item["name"]}[/bold]

ID: {item["id"]}
Category: {item["category"]} ({item.get("brand_type", "National")})
Observations: {len(item.get("price_history", []))}
Current: {_money(current.get("price"))} at {current.get("store_id", "-")}
Window low: {_money(lowest.get("price"))} at {lowest.get("store_id", "-")}"""

        if price_range:
            panel_content += (
                f"\n{price_range['window_weeks']}-week range: "
                f"{_money(price_range['min'])} - {_money(price_range['max'])}"
                f" ({price_range['sample_count']} samples)"
            )
        panel_content += (
            f"\nTrend: 7d {_pct(trend.get('weekly_change_pct'))}"
            f"  30d {_pct(trend.get('monthly_change_pct'))}"
            f"  90d {_pct(trend.get('three_month_change_pct'))}"
        )
        if rec["is_buy_recommended"]:
            panel_content += f"\n\n[green]Buy now:[/green] {rec['reason']}"
        if rec["is_lowest_in_period"]:
            panel_content += "\n[green]Lowest price in period[/green]"

        panel = Panel(panel_content, title="Item Details", border_style="green")
        self.console.print(panel)

    def _render_price_history(self, data: dict) -> None:
        """Render price history."""
        self.console.print(f"\n[bold]Price History: {data['name']}[/bold]")

        history = data["history"]
        if not history:
            self.console.print("[dim]No observations recorded[/dim]")
            return

        table = Table(show_header=True)
        table.add_column("Observed")
        table.add_column("Store")
        table.add_column("Price", justify="right")
        for obs in history:
            table.add_row(obs["observed_at"], obs["store_id"], _money(obs["price"]))
        self.console.print(table)

    def _render_deals(self, deals: list[dict]) -> None:
        """Render the best current deals."""
        if not deals:
            self.console.print("[dim]No buy recommendations right now[/dim]")
            return

        table = Table(title="Best Deals", show_header=True, header_style="bold green")
        table.add_column("Item", style="cyan")
        table.add_column("Price", justify="right")
        table.add_column("Window High", justify="right")
        table.add_column("Reason")
        for item in deals:
            price_range = item.get("price_range") or {}
            table.add_row(
                item["name"],
                _money((item.get("current_price") or {}).get("price")),
                _money(price_range.get("max")),
                item["recommendation"]["reason"],
            )
        self.console.print(table)

    def _render_sweep(self, sweep: dict) -> None:
        """Render sweep summary."""
        self.console.print("\n[bold]Sweep Summary[/bold]")
        self.console.print(f"Items updated: {sweep['updated']}")
        color = "red" if sweep["failed"] else "green"
        self.console.print(f"Items failed: [{color}]{sweep['failed']}[/{color}]")
        self.console.print(
            f"Observations: {sweep['observations_ingested']} ingested, "
            f"{sweep['observations_rejected']} rejected"
        )
        for failure in sweep.get("fetch_failures", [])[:10]:
            self.console.print(
                f"  [yellow]{failure['store_id']}[/yellow] / {failure['item_id']}: {failure['error']}"
            )

    def _render_jobs(self, jobs: list[dict]) -> None:
        """Render job status records."""
        table = Table(title="Jobs", show_header=True, header_style="bold cyan")
        table.add_column("Job", style="cyan")
        table.add_column("State")
        table.add_column("Progress", justify="right")
        table.add_column("Started")
        table.add_column("Completed")
        table.add_column("Next Run")
        for job in jobs:
            state_color = {
                "running": "yellow",
                "completed": "green",
                "failed": "red",
            }.get(job["state"], "white")
            table.add_row(
                job["job_name"],
                f"[{state_color}]{job['state']}[/{state_color}]",
                f"{job['progress']}%",
                job.get("started_at") or "-",
                job.get("completed_at") or "-",
                job.get("next_run") or "-",
            )
        self.console.print(table)

    def _render_alerts(self, alerts: dict[str, list[dict]], users: dict[str, str]) -> None:
        """Render selected alerts per user."""
        if not alerts:
            self.console.print("[dim]No alerts to send[/dim]")
            return

        for user_id, user_alerts in alerts.items():
            self.console.print(f"\n[bold cyan]{users.get(user_id, user_id)}[/bold cyan]")
            for alert in user_alerts:
                self.console.print(
                    f"  - {alert['item_name']} {_money(alert['price'])}: {alert['reason']}"
                )

    def _render_preferences(self, prefs: dict) -> None:
        """Render user alert preferences."""
        self.console.print(f"\n[bold]Preferences: {prefs['name']}[/bold]")
        self.console.print(f"Alert categories: {', '.join(prefs['alert_categories']) or 'All'}")
        if prefs.get("tracked_item_ids"):
            self.console.print(f"Tracked items: {', '.join(prefs['tracked_item_ids'])}")
        notifications = prefs["notifications"]
        self.console.print(
            f"Email alerts: {'on' if notifications['email_price_alerts'] else 'off'}"
            f"{'' if prefs.get('email_verified') else ' (unverified)'}"
        )
        self.console.print(
            f"SMS alerts: {'on' if notifications['sms_price_alerts'] else 'off'}"
            f"{'' if prefs.get('phone_verified') else ' (unverified)'}"
        )

    def _render_recipe(self, recipe: dict) -> None:
        """Render recipe cost."""
        current = recipe.get("current_price")
        if current is None:
            self.console.print(f"[dim]{recipe['name']}: no priced ingredients[/dim]")
            return
        self.console.print(f"\n[bold]{recipe['name']}[/bold]: {_money(current['total'])}")
        servings = recipe.get("servings") or 1
        self.console.print(
            f"Per serving: {_money(Decimal(str(current['total'])) / servings)}"
        )
        self.console.print(
            f"Week: {_pct(current.get('weekly_change_pct'))}  "
            f"Month: {_pct(current.get('monthly_change_pct'))}"
        )

    def _render_bulk(self, bulk: dict) -> None:
        """Render bulk buy estimate."""
        panel = Panel(
            f"""[bold]{bulk["item_name"]}[/bold]

Buy: {bulk["recommended_quantity"]} units for {bulk["months"]} months
Discount: {bulk["discount_pct"]}%
Bulk price: {_money(bulk["bulk_price_per_unit"])} (was {_money(bulk["price_per_unit"])})
Savings: {_money(bulk["savings_amount"])} ({bulk["savings_pct"]}%)""",
            title="Bulk Buy",
            border_style="green",
        )
        self.console.print(panel)

    def error(self, message: str, error_code: str | None = None) -> None:
        """Output error message.

        Args:
            message: Error message
            error_code: Optional error code
        """
        if self.json_mode:
            output = {"success": False, "error": message}
            if error_code:
                output["error_code"] = error_code
            print(json.dumps(output))
        else:
            self.console.print(f"[red]✗ Error:[/red] {message}")

    def success(self, message: str, data: dict | None = None) -> None:
        """Output success message.

        Args:
            message: Success message
            data: Optional data to include
        """
        if self.json_mode:
            output: dict[str, Any] = {"success": True, "message": message}
            if data:
                output["data"] = data
            print(json.dumps(output, cls=JSONEncoder))
        else:
            self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        """Output warning message.

        Args:
            message: Warning message
        """
        if self.json_mode:
            print(json.dumps({"warning": message}))
        else:
            self.console.print(f"[yellow]⚠[/yellow] {message}")
