"""
Stream subscriptions.

Subscribes to market data for every open tracked market, in batches, plus
one order subscription for live order confirmations.
"""

import logging
from typing import TYPE_CHECKING, Any

from .state import MarketStateStore

if TYPE_CHECKING:
    from .connection import StreamConnection

logger = logging.getLogger(__name__)

# Exchange limit on market IDs per marketSubscription message
MAX_MARKETS_PER_SUBSCRIPTION = 10

ORDER_SUBSCRIPTION_ID = 999

MARKET_DATA_FIELDS = ["EX_BEST_OFFERS", "EX_MARKET_DEF"]


class SubscriptionManager:
    """Sends subscriptions once per authenticated connection."""

    def __init__(self, store: MarketStateStore):
        self.store = store

    def build_messages(self, market_ids: list[str]) -> list[dict[str, Any]]:
        """
        Build the subscription messages for a list of markets.

        One marketSubscription per batch of MAX_MARKETS_PER_SUBSCRIPTION
        market IDs (ids 1, 2, 3, ...), followed by a single
        orderSubscription. No markets, no messages.
        """
        if not market_ids:
            return []

        messages = []
        for start in range(0, len(market_ids), MAX_MARKETS_PER_SUBSCRIPTION):
            batch = market_ids[start:start + MAX_MARKETS_PER_SUBSCRIPTION]
            messages.append({
                "op": "marketSubscription",
                "id": len(messages) + 1,
                "marketFilter": {"marketIds": batch},
                "marketDataFilter": {"fields": list(MARKET_DATA_FIELDS)},
            })

        messages.append({"op": "orderSubscription", "id": ORDER_SUBSCRIPTION_ID})
        return messages

    def subscribe(self, connection: "StreamConnection") -> int:
        """
        Subscribe to all open markets on the connection.

        No-op unless the connection is authenticated and not yet subscribed.

        Returns:
            Number of market subscription batches sent
        """
        if not connection.authenticated or connection.subscribed:
            return 0

        market_ids = self.store.open_market_ids()
        if not market_ids:
            logger.info("No markets to subscribe to")
            return 0

        messages = self.build_messages(market_ids)
        for message in messages:
            connection.send(message)

        batches = len(messages) - 1
        for message in messages[:-1]:
            logger.info(
                f"Subscribed to batch {message['id']}: "
                f"{len(message['marketFilter']['marketIds'])} markets"
            )
        logger.info("Subscribed to order updates")

        connection.mark_subscribed()
        logger.info(f"Subscribed to {len(market_ids)} markets in {batches} batches")
        return batches
