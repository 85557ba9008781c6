"""
Tests for stream subscriptions.

Tests:
- Batching of market subscriptions
- One order subscription per connection
- No-ops before authentication and after subscribing
"""

from unittest.mock import MagicMock

from src.betting.state import MarketStateStore
from src.betting.subscription import (
    MAX_MARKETS_PER_SUBSCRIPTION,
    ORDER_SUBSCRIPTION_ID,
    SubscriptionManager,
)

from tests.conftest import NOW, make_catalogue_market


def _store(count: int) -> MarketStateStore:
    store = MarketStateStore()
    store.load_catalogue([make_catalogue_market(f"1.{1000 + i}") for i in range(count)], now=NOW)
    return store


def _connection(authenticated: bool = True, subscribed: bool = False) -> MagicMock:
    connection = MagicMock()
    connection.authenticated = authenticated
    connection.subscribed = subscribed

    def mark_subscribed():
        connection.subscribed = True

    connection.mark_subscribed.side_effect = mark_subscribed
    return connection


class TestBuildMessages:
    """Tests for subscription message construction."""

    def test_25_markets_three_batches(self):
        manager = SubscriptionManager(MarketStateStore())
        market_ids = [f"1.{i}" for i in range(25)]

        messages = manager.build_messages(market_ids)

        market_msgs = [m for m in messages if m["op"] == "marketSubscription"]
        order_msgs = [m for m in messages if m["op"] == "orderSubscription"]
        assert [len(m["marketFilter"]["marketIds"]) for m in market_msgs] == [10, 10, 5]
        assert [m["id"] for m in market_msgs] == [1, 2, 3]
        assert order_msgs == [{"op": "orderSubscription", "id": ORDER_SUBSCRIPTION_ID}]
        assert messages[-1]["op"] == "orderSubscription"

        sent_ids = [mid for m in market_msgs for mid in m["marketFilter"]["marketIds"]]
        assert sent_ids == market_ids

    def test_market_data_fields(self):
        manager = SubscriptionManager(MarketStateStore())

        message = manager.build_messages(["1.1"])[0]

        assert message["marketDataFilter"] == {"fields": ["EX_BEST_OFFERS", "EX_MARKET_DEF"]}

    def test_exact_batch_size(self):
        manager = SubscriptionManager(MarketStateStore())

        messages = manager.build_messages([f"1.{i}" for i in range(MAX_MARKETS_PER_SUBSCRIPTION)])

        assert len(messages) == 2

    def test_no_markets_no_messages(self):
        assert SubscriptionManager(MarketStateStore()).build_messages([]) == []


class TestSubscribe:
    """Tests for subscribing on a connection."""

    def test_sends_all_messages_and_marks_subscribed(self):
        manager = SubscriptionManager(_store(25))
        connection = _connection()

        batches = manager.subscribe(connection)

        assert batches == 3
        assert connection.send.call_count == 4
        assert connection.subscribed is True
        sent = [c.args[0] for c in connection.send.call_args_list]
        assert sent[-1]["op"] == "orderSubscription"

    def test_idempotent_on_same_connection(self):
        manager = SubscriptionManager(_store(5))
        connection = _connection()

        manager.subscribe(connection)
        assert manager.subscribe(connection) == 0

        assert connection.send.call_count == 2

    def test_requires_authentication(self):
        manager = SubscriptionManager(_store(5))
        connection = _connection(authenticated=False)

        assert manager.subscribe(connection) == 0
        connection.send.assert_not_called()

    def test_only_open_markets(self):
        store = _store(12)
        store.get("1.1000").is_open = False
        store.get("1.1005").is_open = False
        manager = SubscriptionManager(store)
        connection = _connection()

        assert manager.subscribe(connection) == 1

        market_ids = connection.send.call_args_list[0].args[0]["marketFilter"]["marketIds"]
        assert len(market_ids) == 10
        assert "1.1000" not in market_ids

    def test_no_open_markets_is_noop(self):
        manager = SubscriptionManager(MarketStateStore())
        connection = _connection()

        assert manager.subscribe(connection) == 0
        connection.send.assert_not_called()
        connection.mark_subscribed.assert_not_called()

    def test_resubscribes_on_fresh_connection(self):
        manager = SubscriptionManager(_store(3))
        first, second = _connection(), _connection()

        manager.subscribe(first)
        manager.subscribe(second)

        assert first.send.call_count == 2
        assert second.send.call_count == 2
