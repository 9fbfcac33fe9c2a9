"""Per-user price alert selection and dispatch."""

import logging
from collections.abc import Iterable
from typing import Protocol

from .config import AlertsConfig
from .models import DispatchSummary, Item, ItemAlert, User

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "All"


class AlertNotifier(Protocol):
    """Delivers pre-selected alert payloads to a user."""

    async def send_email_alert(self, user: User, alerts: list[ItemAlert]) -> None: ...

    async def send_sms_alert(self, user: User, alerts: list[ItemAlert]) -> None: ...


class LoggingNotifier:
    """Dry-run notifier that records alerts in the log instead of sending them."""

    async def send_email_alert(self, user: User, alerts: list[ItemAlert]) -> None:
        logger.info(
            "[dry-run] email to %s: %s", user.email, ", ".join(a.item_name for a in alerts)
        )

    async def send_sms_alert(self, user: User, alerts: list[ItemAlert]) -> None:
        logger.info(
            "[dry-run] SMS to %s: %s",
            user.phone_number,
            ", ".join(f"{a.item_name} ${a.price}" for a in alerts),
        )


def build_alert(item: Item) -> ItemAlert | None:
    """Alert payload for a buy-recommended item, or None if it does not qualify."""
    if not item.recommendation.is_buy_recommended or item.current_price is None:
        return None
    price_range = item.price_range
    return ItemAlert(
        item_id=item.id,
        item_name=item.name,
        category=item.category,
        price=item.current_price.price,
        store_id=item.current_price.store_id,
        reason=item.recommendation.reason,
        range_min=price_range.min if price_range else None,
        range_max=price_range.max if price_range else None,
    )


def matches_categories(user: User, item: Item) -> bool:
    """An empty preference list, or one containing "All", matches everything."""
    categories = user.alert_categories
    if not categories or ALL_CATEGORIES in categories:
        return True
    return item.category.value in categories


def select_alerts(updated_items: Iterable[Item], users: Iterable[User]) -> dict[str, list[ItemAlert]]:
    """Choose which recommended items each user should hear about.

    A user's alerts are the items in their preferred categories together
    with the items they track, each item appearing once. Users left with no
    alerts are omitted from the result.

    Args:
        updated_items: Items whose aggregates were just recomputed
        users: Candidate recipients

    Returns:
        Mapping of user id to that user's alerts, in item order
    """
    candidates = [(item, alert) for item in updated_items if (alert := build_alert(item))]

    selections: dict[str, list[ItemAlert]] = {}
    for user in users:
        tracked = set(user.tracked_item_ids)
        chosen: dict[str, ItemAlert] = {}
        for item, alert in candidates:
            if item.id in chosen:
                continue
            if item.id in tracked or matches_categories(user, item):
                chosen[item.id] = alert
        if chosen:
            selections[user.id] = list(chosen.values())
    return selections


async def dispatch_alerts(
    selections: dict[str, list[ItemAlert]],
    users: Iterable[User],
    notifier: AlertNotifier,
    config: AlertsConfig | None = None,
) -> DispatchSummary:
    """Hand selected alerts to the notifier.

    Email carries every alert; SMS carries at most ``sms_max_items``. A
    notifier error for one user is logged and counted and the remaining users
    are still notified.
    """
    config = config or AlertsConfig()
    users_by_id = {user.id: user for user in users}
    summary = DispatchSummary()

    for user_id, alerts in selections.items():
        user = users_by_id.get(user_id)
        if user is None or not alerts:
            continue
        if not user.wants_email and not user.wants_sms:
            logger.debug("User %s has no enabled alert channel", user_id)
            continue

        delivered = False
        if user.wants_email:
            try:
                await notifier.send_email_alert(user, alerts)
                summary.emails_sent += 1
                delivered = True
            except Exception as e:
                summary.failures += 1
                logger.error("Email alert to user %s failed: %s", user_id, e)
        if user.wants_sms:
            try:
                await notifier.send_sms_alert(user, alerts[: config.sms_max_items])
                summary.sms_sent += 1
                delivered = True
            except Exception as e:
                summary.failures += 1
                logger.error("SMS alert to user %s failed: %s", user_id, e)
        if delivered:
            summary.users_notified += 1

    logger.info(
        "Dispatched alerts: %d users, %d emails, %d SMS, %d failures",
        summary.users_notified,
        summary.emails_sent,
        summary.sms_sent,
        summary.failures,
    )
    return summary
