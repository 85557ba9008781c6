"""
Martingale staking engine.

Decides when to back the underdog, sizes the stake, drives the gateway and
settles bets. Owns the process-wide StakingState; nothing else mutates it.

Only one bet may be outstanding across all markets. request_bet() reserves
that slot synchronously, before the first await, so a second trigger that
is processed while a placement request is in flight sees the slot taken.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from src.clients.base import GatewayError
from .config import BettingConfig
from .execution import OrderGateway, ORDER_TYPE_LIMIT, SIDE_BACK
from .journal import EventJournal, EventType
from .state import Bet, BetStatus, MarketState

logger = logging.getLogger(__name__)


class PlacementPolicy(str, Enum):
    """How an order is priced on the exchange."""
    DIRECT = "direct"  # At the observed price
    AGGRESSIVE_FILL = "aggressive_fill"  # At max price, then edited down


class Outcome(str, Enum):
    WIN = "win"
    LOSE = "lose"
    VOID = "void"


@dataclass
class StakingState:
    """Process-wide bankroll and martingale state."""

    balance: float
    multiplier: int = 1
    has_open_bet: bool = False
    test_bet_placed: bool = False
    has_placed_bet: bool = False

    # Counters for status reports
    markets_tracked: int = 0
    sets_completed: int = 0
    conditions_met: int = 0
    bets_placed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SettlementResult:
    """Outcome of settling one bet."""

    market_id: str
    selection_id: int
    outcome: Outcome
    pnl: float
    balance: float
    multiplier: int


class StakingEngine:
    """
    Underdog martingale staking.

    Stake = bet_percentage% x balance x multiplier (simulation), a fixed
    minimal stake under aggressive fill, or bet_percentage% of the fixed
    balance x multiplier for live direct placement. The multiplier doubles
    after every loss and resets to 1 after every win.
    """

    def __init__(
        self,
        config: BettingConfig,
        gateway: OrderGateway,
        journal: Optional[EventJournal] = None,
    ):
        """
        Initialize engine.

        Args:
            config: Betting configuration
            gateway: Simulated or live order gateway
            journal: Per-event journal (no journaling if None)
        """
        self.config = config
        self.gateway = gateway
        self.journal = journal
        self.state = StakingState(
            balance=config.simulation_balance if gateway.is_simulated else config.fixed_balance,
        )
        self._tasks: set[asyncio.Task] = set()

        logger.info(
            f"StakingEngine initialized in {gateway.mode.upper()} mode, "
            f"policy={self.policy.value}, balance={self.state.balance:.2f}"
        )

    @property
    def simulated(self) -> bool:
        return self.gateway.is_simulated

    @property
    def policy(self) -> PlacementPolicy:
        if not self.simulated and self.config.aggressive_fill:
            return PlacementPolicy.AGGRESSIVE_FILL
        return PlacementPolicy.DIRECT

    def stake_size(self) -> float:
        """Stake for the next bet under the current multiplier."""
        if self.simulated:
            return self.config.bet_percentage / 100 * self.state.balance * self.state.multiplier
        if self.policy == PlacementPolicy.AGGRESSIVE_FILL:
            return self.config.guaranteed_fill_stake
        return self.config.bet_percentage / 100 * self.config.fixed_balance * self.state.multiplier

    # =========================================================================
    # Decisions
    # =========================================================================

    def evaluate_first_set(self, market: MarketState) -> Optional[asyncio.Task]:
        """
        Apply the entry rule once the first set has finished.

        Back the player who lost the set when the set was close
        (game difference <= max_set_diff) and their odds are at least
        min_underdog_odds.

        Returns:
            Placement task if a bet was requested
        """
        first_set = market.first_set
        if first_set is None:
            return None

        home, away = first_set.home_score, first_set.away_score
        if home > away:
            selection_id, underdog_odds = market.selection_id_b, market.current_odds.pB
        else:
            selection_id, underdog_odds = market.selection_id_a, market.current_odds.pA

        logger.info(
            f"Market {market.market_id}: Set 1 ended {home}-{away}, Underdog Odds: {underdog_odds}"
        )

        if first_set.diff > self.config.max_set_diff:
            return None
        if underdog_odds is None or underdog_odds < self.config.min_underdog_odds:
            return None

        self.state.conditions_met += 1
        return self.request_bet(market, selection_id, underdog_odds)

    def request_bet(
        self,
        market: MarketState,
        selection_id: int,
        price: float,
        is_test: bool = False,
    ) -> Optional[asyncio.Task]:
        """
        Reserve the outstanding-bet slot and schedule the placement.

        Everything up to create_task() runs without yielding to the event
        loop: the bet is recorded as PENDING and the global flag set before
        any other message can be processed.

        Returns:
            The placement task, or None if no bet was requested
        """
        if self.state.has_open_bet:
            logger.info(f"Bet on market {market.market_id} skipped: another bet is open")
            return None

        size = self.stake_size()
        if size <= 0:
            logger.warning(f"Bet on market {market.market_id} skipped: stake {size:.2f} <= 0")
            return None

        bet = Bet(selection_id=selection_id, size=size, price=price, is_test=is_test)
        market.bet = bet
        self.state.has_open_bet = True
        if is_test:
            self.state.test_bet_placed = True
        if self.simulated:
            self.state.balance -= size

        task = asyncio.create_task(
            self._place(market, bet),
            name=f"place-{market.market_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # Order lifecycle
    # =========================================================================

    async def _place(self, market: MarketState, bet: Bet) -> bool:
        """Send the reserved bet to the gateway."""
        aggressive = self.policy == PlacementPolicy.AGGRESSIVE_FILL
        order_price = self.config.aggressive_price if aggressive else bet.price
        label = "test " if bet.is_test else ""

        logger.info(
            f"Placing {self.gateway.mode} {label}bet on market {market.market_id}: "
            f"{bet.size:.2f} euros at {order_price}"
        )

        try:
            bet_id = await self.gateway.place_order(
                market_id=market.market_id,
                selection_id=bet.selection_id,
                side=SIDE_BACK,
                order_type=ORDER_TYPE_LIMIT,
                size=bet.size,
                price=order_price,
            )
        except GatewayError as e:
            logger.error(f"Bet placement failed on market {market.market_id}: {e}")
            self._release(market, bet)
            return False

        bet.bet_id = bet_id
        if bet.is_settled:
            logger.warning(f"Bet {bet_id} on market {market.market_id} confirmed after settlement")
            return False
        bet.status = BetStatus.PLACED

        self.state.bets_placed += 1
        self.state.has_placed_bet = True

        logger.info(f"Bet placed on market {market.market_id}, betId: {bet_id}")
        self._journal(
            market,
            EventType.BET_PLACED,
            mode=self.gateway.mode,
            marketId=market.market_id,
            selectionId=bet.selection_id,
            size=bet.size,
            price=order_price,
            betId=bet_id,
            isTestBet=bet.is_test,
        )

        if aggressive:
            await self._edit_to_residual(market, bet)

        return True

    async def _edit_to_residual(self, market: MarketState, bet: Bet) -> bool:
        """
        Shrink the unmatched remainder of an aggressive order.

        The order went in at the maximum price so it matched against every
        available back offer; what is left is cut to residual_size at the
        observed price. The bet keeps its stake and observed price.
        """
        new_size = self.config.residual_size
        logger.info(
            f"Editing bet {bet.bet_id} on market {market.market_id} "
            f"to size {new_size} at price {bet.price}"
        )

        try:
            await self.gateway.replace_order(
                market_id=market.market_id,
                bet_id=bet.bet_id,
                new_size=new_size,
                new_price=bet.price,
            )
        except GatewayError as e:
            logger.error(f"Bet edit failed for {bet.bet_id}: {e}")
            return False

        logger.info(f"Bet {bet.bet_id} edited to size {new_size} euros at price {bet.price}")
        self._journal(
            market,
            EventType.BET_EDITED,
            betId=bet.bet_id,
            newSize=new_size,
            newPrice=bet.price,
        )
        return True

    def _release(self, market: MarketState, bet: Bet) -> None:
        """Undo a reservation whose placement failed."""
        if market.bet is bet:
            market.bet = None

        if bet.is_settled:
            logger.warning(f"Failed bet on market {market.market_id} was already settled")
            return

        bet.status = BetStatus.SETTLED
        self.state.has_open_bet = False
        if bet.is_test:
            self.state.test_bet_placed = False
        if self.simulated:
            self.state.balance += bet.size

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle(
        self,
        market: MarketState,
        won: bool,
        reported_profit: Optional[float] = None,
    ) -> Optional[SettlementResult]:
        """
        Settle the market's bet and advance the martingale.

        Win: profit = (price - 1) x size x (1 - commission), the simulated
        balance gets profit + stake back, multiplier resets to 1.
        Loss: profit = -size (the stake was debited at placement),
        multiplier doubles.

        Args:
            market: Market holding the bet
            won: Whether the backed selection won
            reported_profit: Realized profit from the order stream (live),
                used instead of recomputing it

        Returns:
            SettlementResult, or None if there was nothing to settle
        """
        bet = market.bet
        if bet is None or bet.is_settled:
            return None

        if won:
            pnl = (
                reported_profit
                if reported_profit is not None
                else (bet.price - 1) * bet.size * (1 - self.config.commission_rate)
            )
            if self.simulated:
                self.state.balance += pnl + bet.size
            self.state.multiplier = 1
            outcome = Outcome.WIN
        else:
            pnl = reported_profit if reported_profit is not None else -bet.size
            self.state.multiplier *= 2
            outcome = Outcome.LOSE

        bet.status = BetStatus.SETTLED
        self._clear_flags()

        return SettlementResult(
            market_id=market.market_id,
            selection_id=bet.selection_id,
            outcome=outcome,
            pnl=pnl,
            balance=self.state.balance,
            multiplier=self.state.multiplier,
        )

    def void(self, market: MarketState) -> Optional[SettlementResult]:
        """
        Close out a bet on a market that ended without a winner.

        The stake is returned and the multiplier is left unchanged.
        """
        bet = market.bet
        if bet is None or bet.is_settled:
            return None

        if self.simulated:
            self.state.balance += bet.size
        bet.status = BetStatus.SETTLED
        self._clear_flags()

        return SettlementResult(
            market_id=market.market_id,
            selection_id=bet.selection_id,
            outcome=Outcome.VOID,
            pnl=0.0,
            balance=self.state.balance,
            multiplier=self.state.multiplier,
        )

    def _clear_flags(self) -> None:
        self.state.has_open_bet = False
        self.state.test_bet_placed = False

    # =========================================================================
    # Counters and housekeeping
    # =========================================================================

    def record_markets_tracked(self, count: int) -> None:
        self.state.markets_tracked += count

    def record_set_completed(self) -> None:
        self.state.sets_completed += 1

    def minutes_without_bet(self, now: Optional[datetime] = None) -> Optional[int]:
        """Whole minutes since start, or None once a bet has been placed."""
        if self.state.has_placed_bet:
            return None
        now = now or datetime.now(timezone.utc)
        return int((now - self.state.started_at).total_seconds() // 60)

    async def drain(self) -> None:
        """Wait for in-flight placements to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics for monitoring."""
        return {
            "mode": self.gateway.mode,
            "policy": self.policy.value,
            "balance": round(self.state.balance, 2),
            "multiplier": self.state.multiplier,
            "has_open_bet": self.state.has_open_bet,
            "markets_tracked": self.state.markets_tracked,
            "sets_completed": self.state.sets_completed,
            "conditions_met": self.state.conditions_met,
            "bets_placed": self.state.bets_placed,
            "pending_placements": len(self._tasks),
        }

    def _journal(self, market: MarketState, event_type: str, **fields: Any) -> None:
        if self.journal is not None:
            self.journal.record(market.event_id, event_type, **fields)
