"""
Stream message router.

Applies decoded stream messages to the market state store and asks the
staking engine to act on the transitions:
- status: authentication result, triggers subscriptions
- connection: connection id
- mcm: market changes (odds, scores, market lifecycle)
- ocm: order changes (live settlement)
"""

import logging
from typing import Any, Optional

from .config import BettingConfig
from .connection import StreamConnection
from .journal import EventJournal, EventType
from .staking import Outcome, SettlementResult, StakingEngine
from .state import MarketState, MarketStateStore, MarketStatus, SetScore, is_valid_odds
from .subscription import SubscriptionManager

logger = logging.getLogger(__name__)


def best_back_price(runner_change: dict[str, Any]) -> Optional[Any]:
    """
    Best available back price from a runner change.

    batb is a ladder of [level, price, size]. A level with size 0 has been
    removed from the ladder and carries no offer.
    """
    ladder = runner_change.get("batb")
    if not ladder:
        return None

    for level in ladder:
        if not isinstance(level, (list, tuple)) or len(level) < 2:
            continue
        if level[0] != 0:
            continue
        if len(level) >= 3 and level[2] == 0:
            return None
        return level[1]
    return None


class StreamMessageRouter:
    """Dispatches stream messages by op."""

    def __init__(
        self,
        connection: StreamConnection,
        subscriptions: SubscriptionManager,
        store: MarketStateStore,
        engine: StakingEngine,
        config: BettingConfig,
        journal: Optional[EventJournal] = None,
    ):
        self.connection = connection
        self.subscriptions = subscriptions
        self.store = store
        self.engine = engine
        self.config = config
        self.journal = journal

        self.stats = {
            "status": 0,
            "connection": 0,
            "mcm": 0,
            "ocm": 0,
            "unknown": 0,
            "errors": 0,
        }

    @property
    def test_mode(self) -> bool:
        return self.config.test_bet_enabled

    def handle_message(self, message: dict[str, Any]) -> None:
        """Handle one decoded message. Errors are logged, never raised."""
        op = message.get("op")
        handler = {
            "status": self._handle_status,
            "connection": self._handle_connection,
            "mcm": self._handle_market_change,
            "ocm": self._handle_order_change,
        }.get(op)

        if handler is None:
            self.stats["unknown"] += 1
            logger.debug(f"Ignoring stream message with op={op}")
            return

        self.stats[op] += 1
        try:
            handler(message)
        except Exception:
            self.stats["errors"] += 1
            logger.exception(f"Error handling {op} message")

    # =========================================================================
    # status / connection
    # =========================================================================

    def _handle_status(self, message: dict[str, Any]) -> None:
        if message.get("statusCode") != "SUCCESS":
            logger.error(
                f"Stream status {message.get('statusCode')}: "
                f"{message.get('errorCode')} {message.get('errorMessage')}"
            )
            return

        if self.connection.mark_authenticated():
            logger.info("Authentication successful")
        self.subscriptions.subscribe(self.connection)

    def _handle_connection(self, message: dict[str, Any]) -> None:
        logger.info(f"Stream connection id: {message.get('connectionId')}")

    # =========================================================================
    # mcm
    # =========================================================================

    def _handle_market_change(self, message: dict[str, Any]) -> None:
        for change in message.get("mc") or []:
            market = self.store.get_open(change.get("id"))
            if market is None:
                continue
            self._apply_market_change(market, change)

    def _apply_market_change(self, market: MarketState, change: dict[str, Any]) -> None:
        definition = change.get("marketDefinition")
        if definition is not None:
            in_play = bool(definition.get("inPlay"))
        else:
            in_play = market.status == MarketStatus.IN_PLAY

        closing = definition is not None and definition.get("status") == "CLOSED"

        # A market holding the open bet stays tracked until it settles
        if (
            not self.test_mode
            and definition is not None
            and in_play
            and not definition.get("score")
            and not closing
            and not market.has_unsettled_bet
        ):
            market.is_open = False
            logger.info(f"Excluding market {market.market_id} (in-play, no score data)")
            self._journal(
                market,
                EventType.MARKET_EXCLUDED,
                reason="in-play_no_score",
                marketId=market.market_id,
            )
            return

        if change.get("rc") and in_play:
            self._update_odds(market, change["rc"])

        if not self.test_mode and definition is not None and definition.get("score"):
            self._update_score(market, definition["score"])

        if definition is None:
            return

        if closing:
            self._close_market(market, definition)
        elif in_play:
            market.status = MarketStatus.IN_PLAY
        else:
            market.status = MarketStatus.UPCOMING

    def _update_odds(self, market: MarketState, runner_changes: list[dict[str, Any]]) -> None:
        for runner in runner_changes:
            odds = best_back_price(runner)
            logger.debug(
                f"Market {market.market_id}, Runner {runner.get('id')}, "
                f"Status: {market.status.value}, best back = {odds}"
            )
            market.update_odds(runner.get("id"), odds)

        if self.test_mode:
            self._check_test_bet(market)

        odds = market.current_odds
        self._journal(
            market,
            EventType.ODDS_UPDATE,
            pA_odds=odds.pA if is_valid_odds(odds.pA) else None,
            pB_odds=odds.pB if is_valid_odds(odds.pB) else None,
        )

    def _check_test_bet(self, market: MarketState) -> None:
        state = self.engine.state
        if state.test_bet_placed or state.has_open_bet:
            return

        target, tolerance = self.config.test_bet_odds, self.config.test_bet_tolerance
        for label, selection_id, odds in (
            ("A", market.selection_id_a, market.current_odds.pA),
            ("B", market.selection_id_b, market.current_odds.pB),
        ):
            if odds is not None and abs(odds - target) <= tolerance:
                logger.info(
                    f"Test bet triggered for market {market.market_id}, Player {label} at odds {odds}"
                )
                self.engine.request_bet(market, selection_id, odds, is_test=True)
                return

    def _update_score(self, market: MarketState, score: dict[str, Any]) -> None:
        market.sets = [SetScore.from_stream(s) for s in score.get("sets") or []]

        first_set = market.first_set
        if first_set is None or market.has_first_set_ended or not first_set.completed:
            return

        market.has_first_set_ended = True
        self.engine.record_set_completed()
        self.engine.evaluate_first_set(market)

    def _close_market(self, market: MarketState, definition: dict[str, Any]) -> None:
        market.is_open = False
        market.status = MarketStatus.ENDED

        result = None
        if market.has_unsettled_bet:
            winner = next(
                (r for r in definition.get("runners") or [] if r.get("status") == "WINNER"),
                None,
            )
            if winner is None:
                result = self.engine.void(market)
            else:
                result = self.engine.settle(market, won=winner.get("id") == market.bet.selection_id)

        if result is not None:
            log = logger.info if result.outcome == Outcome.WIN else logger.warning
            log(f"Market {market.market_id} closed, PNL: {result.pnl:.2f} euros")
            self._journal_outcome(market, result)

        self._journal(
            market,
            EventType.MARKET_CLOSED,
            outcome=result.outcome.value if result else "no_bet",
            pnl=result.pnl if result else 0,
        )
        logger.info(f"Market {market.market_id} closed")
        self.store.remove(market.market_id)

    # =========================================================================
    # ocm
    # =========================================================================

    def _handle_order_change(self, message: dict[str, Any]) -> None:
        if self.engine.simulated:
            return

        for change in message.get("oc") or []:
            market = self.store.get(change.get("id") or change.get("marketId"))
            if market is None or not market.has_unsettled_bet or market.bet.bet_id is None:
                continue

            for runner in change.get("orc") or []:
                self._apply_order_reports(market, runner.get("uo") or [])
            self._apply_order_reports(market, change.get("or") or [])

    def _apply_order_reports(self, market: MarketState, reports: list[dict[str, Any]]) -> None:
        for order in reports:
            if not market.has_unsettled_bet:
                return
            if order.get("status") != "EXECUTION_COMPLETE" or order.get("profit") is None:
                continue
            if (order.get("betId") or order.get("id")) != market.bet.bet_id:
                continue

            profit = order["profit"]
            result = self.engine.settle(market, won=profit > 0, reported_profit=profit)
            if result is not None:
                log = logger.info if result.outcome == Outcome.WIN else logger.warning
                log(f"Market {market.market_id} order settled, PNL: {result.pnl:.2f} euros")
                self._journal_outcome(market, result)

    # =========================================================================
    # Journal
    # =========================================================================

    def _journal_outcome(self, market: MarketState, result: SettlementResult) -> None:
        self._journal(
            market,
            EventType.BET_OUTCOME,
            mode=self.engine.gateway.mode,
            marketId=market.market_id,
            selectionId=result.selection_id,
            outcome=result.outcome.value,
            pnl=result.pnl,
        )

    def _journal(self, market: MarketState, event_type: str, **fields: Any) -> None:
        if self.journal is not None:
            self.journal.record(market.event_id, event_type, **fields)

    def get_stats(self) -> dict:
        return dict(self.stats)
