"""Tests for price alert selection and dispatch."""

import asyncio

import pytest

from pantry_tracker.aggregates import recompute_aggregates
from pantry_tracker.alerts import (
    LoggingNotifier,
    build_alert,
    dispatch_alerts,
    matches_categories,
    select_alerts,
)
from pantry_tracker.config import AlertsConfig
from pantry_tracker.models import Category, NotificationPreferences, User


class RecordingNotifier:
    """Notifier that records deliveries and can fail for chosen users."""

    def __init__(self, fail_email_for=()):
        self.fail_email_for = set(fail_email_for)
        self.emails = []
        self.sms = []

    async def send_email_alert(self, user, alerts):
        if user.id in self.fail_email_for:
            raise RuntimeError("smtp down")
        self.emails.append((user.id, [a.item_name for a in alerts]))

    async def send_sms_alert(self, user, alerts):
        self.sms.append((user.id, [a.item_name for a in alerts]))


def email_user(**fields):
    return User(email=f"{fields['name']}@example.com", email_verified=True, **fields)


@pytest.fixture
def deal(make_item, day):
    """Make a buy-recommended item."""

    def _deal(name, category=Category.DAIRY):
        return recompute_aggregates(make_item([("2.00", "s1", 0)], name=name, category=category), day(0))

    return _deal


class TestBuildAlert:
    """Tests for alert payloads."""

    def test_recommended_item(self, deal):
        """Recommended items carry price, store and range."""
        alert = build_alert(deal("Butter"))

        assert alert.item_name == "Butter"
        assert str(alert.price) == "2.00"
        assert alert.store_id == "s1"
        assert alert.range_min == alert.range_max == alert.price
        assert alert.reason

    def test_not_recommended(self, make_item, day):
        """Items without a buy signal produce no alert."""
        item = recompute_aggregates(make_item([("2.00", "s1", 0), ("3.00", "s1", 1)]), day(1))

        assert build_alert(item) is None


class TestSelectAlerts:
    """Tests for per-user selection."""

    def test_category_and_tracked_union(self, deal):
        """Users get their categories plus tracked items, once each."""
        butter, apples, bread = deal("Butter"), deal("Apples", Category.PRODUCE), deal("Bread", Category.BAKERY)
        user = User(name="sam", alert_categories=["Dairy"], tracked_item_ids=[apples.id, butter.id])

        selections = select_alerts([butter, apples, bread], [user])

        assert [a.item_name for a in selections[user.id]] == ["Butter", "Apples"]

    def test_all_and_empty_match_everything(self, deal):
        """"All" and an empty list both match every category."""
        items = [deal("Butter"), deal("Apples", Category.PRODUCE)]
        everyone = User(name="a", alert_categories=["All"])
        unset = User(name="b", alert_categories=[])

        selections = select_alerts(items, [everyone, unset])

        assert len(selections[everyone.id]) == 2
        assert len(selections[unset.id]) == 2
        assert matches_categories(unset, items[1])

    def test_users_without_alerts_omitted(self, deal):
        """Users with nothing to hear about are left out."""
        user = User(name="sam", alert_categories=["Meat"])

        assert select_alerts([deal("Butter")], [user]) == {}

    def test_non_recommended_items_skipped(self, make_item, day):
        """Only recommended items are candidates."""
        item = recompute_aggregates(make_item([("2.00", "s1", 0), ("3.00", "s1", 1)]), day(1))
        user = User(name="sam", tracked_item_ids=[item.id])

        assert select_alerts([item], [user]) == {}


class TestDispatchAlerts:
    """Tests for handing alerts to the notifier."""

    def test_email_gets_everything_sms_capped(self, deal):
        """Email carries all alerts; SMS at most sms_max_items."""
        items = [deal(f"Item {n}") for n in range(5)]
        user = email_user(
            name="sam",
            phone_number="+15550100",
            phone_verified=True,
            notifications=NotificationPreferences(sms_price_alerts=True),
        )
        notifier = RecordingNotifier()

        summary = asyncio.run(dispatch_alerts(select_alerts(items, [user]), [user], notifier))

        assert len(notifier.emails[0][1]) == 5
        assert notifier.sms[0][1] == ["Item 0", "Item 1", "Item 2"]
        assert (summary.users_notified, summary.emails_sent, summary.sms_sent) == (1, 1, 1)

    def test_custom_sms_limit(self, deal):
        """The SMS cap is configurable."""
        items = [deal(f"Item {n}") for n in range(5)]
        user = User(
            name="sam",
            phone_number="+15550100",
            phone_verified=True,
            notifications=NotificationPreferences(email_price_alerts=False, sms_price_alerts=True),
        )
        notifier = RecordingNotifier()

        asyncio.run(
            dispatch_alerts(select_alerts(items, [user]), [user], notifier, AlertsConfig(sms_max_items=1))
        )

        assert notifier.emails == []
        assert notifier.sms[0][1] == ["Item 0"]

    def test_unverified_channels_skipped(self, deal):
        """Users without a verified, enabled channel are not contacted."""
        user = User(name="sam", email="sam@example.com", email_verified=False)
        notifier = RecordingNotifier()

        summary = asyncio.run(dispatch_alerts(select_alerts([deal("Butter")], [user]), [user], notifier))

        assert notifier.emails == []
        assert summary.users_notified == 0

    def test_failure_does_not_stop_others(self, deal):
        """A notifier error for one user is counted and the rest still go out."""
        items = [deal("Butter")]
        broken, fine = email_user(name="broken"), email_user(name="fine")
        notifier = RecordingNotifier(fail_email_for=[broken.id])

        summary = asyncio.run(
            dispatch_alerts(select_alerts(items, [broken, fine]), [broken, fine], notifier)
        )

        assert summary.failures == 1
        assert summary.emails_sent == 1
        assert summary.users_notified == 1
        assert notifier.emails == [(fine.id, ["Butter"])]

    def test_logging_notifier(self, deal, caplog):
        """The dry-run notifier logs instead of sending."""
        user = email_user(name="sam")

        with caplog.at_level("INFO", logger="pantry_tracker.alerts"):
            asyncio.run(dispatch_alerts(select_alerts([deal("Butter")], [user]), [user], LoggingNotifier()))

        assert "[dry-run] email to sam@example.com: Butter" in caplog.text
