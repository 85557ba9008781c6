"""
Order execution gateways.

Supports both simulated and live modes behind one interface:
- SimulatedGateway keeps an in-memory ledger of orders, no network
- LiveGateway places real orders through the Betfair REST API

Gateways only talk to the exchange (or the ledger); bet state and bankroll
are updated by the staking engine from their results.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from src.clients.base import GatewayError
from src.clients.betfair import BetfairClient

logger = logging.getLogger(__name__)

SIDE_BACK = "BACK"
ORDER_TYPE_LIMIT = "LIMIT"


class OrderGateway(ABC):
    """Interface used by the staking engine to place and edit orders."""

    is_simulated: bool = False

    @property
    def mode(self) -> str:
        return "simulated" if self.is_simulated else "live"

    @abstractmethod
    async def place_order(
        self,
        market_id: str,
        selection_id: int,
        side: str,
        order_type: str,
        size: float,
        price: float,
    ) -> str:
        """
        Place an order.

        Returns:
            Order (bet) ID

        Raises:
            GatewayError: If the order was not accepted
        """

    @abstractmethod
    async def replace_order(
        self,
        market_id: str,
        bet_id: str,
        new_size: float,
        new_price: float,
    ) -> None:
        """
        Change an order's remaining size and price.

        Raises:
            GatewayError: If the edit was not accepted
        """


@dataclass
class SimulatedOrder:
    """A paper order in the simulated ledger."""
    bet_id: str
    market_id: str
    selection_id: int
    side: str
    order_type: str
    size: float
    price: float
    placed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    edits: int = 0


class SimulatedGateway(OrderGateway):
    """
    Paper gateway.

    Every order is accepted immediately at the requested price. Bet IDs are
    derived from the market ID, one outstanding order per market.
    """

    is_simulated = True

    def __init__(self):
        self.orders: dict[str, SimulatedOrder] = {}

    async def place_order(
        self,
        market_id: str,
        selection_id: int,
        side: str,
        order_type: str,
        size: float,
        price: float,
    ) -> str:
        bet_id = f"sim_{market_id}"
        self.orders[bet_id] = SimulatedOrder(
            bet_id=bet_id,
            market_id=market_id,
            selection_id=selection_id,
            side=side,
            order_type=order_type,
            size=size,
            price=price,
        )
        logger.debug(f"Simulated order {bet_id}: {side} {size:.2f} @ {price}")
        return bet_id

    async def replace_order(
        self,
        market_id: str,
        bet_id: str,
        new_size: float,
        new_price: float,
    ) -> None:
        order = self.orders.get(bet_id)
        if order is None or order.market_id != market_id:
            raise GatewayError(f"Unknown simulated order {bet_id} on market {market_id}")

        order.size = new_size
        order.price = new_price
        order.edits += 1


class LiveGateway(OrderGateway):
    """
    Live gateway.

    Real orders on the exchange via BetfairClient. Failures surface as
    GatewayError and are never retried here.
    """

    is_simulated = False

    def __init__(self, client: BetfairClient):
        self.client = client

    async def place_order(
        self,
        market_id: str,
        selection_id: int,
        side: str,
        order_type: str,
        size: float,
        price: float,
    ) -> str:
        return await self.client.place_order(
            market_id=market_id,
            selection_id=selection_id,
            side=side,
            order_type=order_type,
            size=size,
            price=price,
        )

    async def replace_order(
        self,
        market_id: str,
        bet_id: str,
        new_size: float,
        new_price: float,
    ) -> None:
        await self.client.replace_order(
            market_id=market_id,
            bet_id=bet_id,
            new_size=new_size,
            new_price=new_price,
        )


def create_gateway(simulation: bool, client: Optional[BetfairClient] = None) -> OrderGateway:
    """Build the gateway for the configured mode."""
    if simulation:
        return SimulatedGateway()
    if client is None:
        raise ValueError("Live mode requires a BetfairClient")
    return LiveGateway(client)
