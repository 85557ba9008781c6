"""
Market state tracking.

Maintains in-memory match state for every tracked market. The store is the
single source of truth for which market, if any, holds the outstanding bet.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


class MarketStatus(str, Enum):
    """Lifecycle status of a tracked match."""
    UPCOMING = "UPCOMING"
    IN_PLAY = "IN_PLAY"
    ENDED = "ENDED"


class BetStatus(str, Enum):
    """Lifecycle of the bet held on a market."""
    PENDING = "pending"  # Decided, placement request in flight
    PLACED = "placed"  # Accepted by the gateway
    SETTLED = "settled"


@dataclass
class Bet:
    """The single stake held on a market."""

    selection_id: int
    size: float
    price: float
    is_test: bool = False
    bet_id: Optional[str] = None
    status: BetStatus = BetStatus.PENDING

    @property
    def is_settled(self) -> bool:
        return self.status == BetStatus.SETTLED


@dataclass
class SetScore:
    """Games won by each side in one set."""

    home_score: int = 0
    away_score: int = 0
    completed: bool = False

    @classmethod
    def from_stream(cls, data: dict[str, Any]) -> "SetScore":
        return cls(
            home_score=data.get("homeScore") or 0,
            away_score=data.get("awayScore") or 0,
            completed=bool(data.get("completed")),
        )

    @property
    def max_games(self) -> int:
        return max(self.home_score, self.away_score)

    @property
    def diff(self) -> int:
        return abs(self.home_score - self.away_score)


@dataclass
class Odds:
    """Best back prices for both players. None until a valid price is seen."""

    pA: Optional[float] = None
    pB: Optional[float] = None


def is_valid_odds(value: Any) -> bool:
    """A usable decimal price: numeric, finite and above 1."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 1


@dataclass
class MarketState:
    """
    In-memory state for a single match-odds market.

    Created from the market catalogue at startup, updated on every
    market change for the market, dropped when the market closes.
    """

    market_id: str
    event_id: str
    player_a: str
    player_b: str
    selection_id_a: int
    selection_id_b: int
    event_open_date: Optional[datetime] = None
    current_odds: Odds = field(default_factory=Odds)
    sets: list[SetScore] = field(default_factory=list)
    has_first_set_ended: bool = False
    is_open: bool = True
    status: MarketStatus = MarketStatus.UPCOMING
    bet: Optional[Bet] = None

    @classmethod
    def from_catalogue(
        cls,
        market: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> "MarketState":
        """
        Build state from a listMarketCatalogue entry.

        Markets whose event has already opened start as IN_PLAY.
        """
        now = now or datetime.now(timezone.utc)
        runners = market["runners"]
        event = market.get("event") or {}
        market_id = market["marketId"]

        open_date = _parse_datetime(event.get("openDate") or market.get("marketStartTime"))
        started = open_date is None or open_date <= now

        return cls(
            market_id=market_id,
            event_id=str(event.get("id") or market_id),
            player_a=runners[0].get("runnerName") or "Player A",
            player_b=runners[1].get("runnerName") or "Player B",
            selection_id_a=runners[0]["selectionId"],
            selection_id_b=runners[1]["selectionId"],
            event_open_date=open_date,
            status=MarketStatus.IN_PLAY if started else MarketStatus.UPCOMING,
        )

    @property
    def first_set(self) -> Optional[SetScore]:
        return self.sets[0] if self.sets else None

    @property
    def has_unsettled_bet(self) -> bool:
        return self.bet is not None and not self.bet.is_settled

    def odds_for(self, selection_id: int) -> Optional[float]:
        """Current odds for a selection, None if unknown."""
        if selection_id == self.selection_id_a:
            return self.current_odds.pA
        if selection_id == self.selection_id_b:
            return self.current_odds.pB
        return None

    def update_odds(self, selection_id: int, odds: Any) -> bool:
        """
        Store the best back price for a runner.

        Invalid prices (non-numeric, NaN, zero, <= 1) and unknown
        selections are ignored.

        Returns:
            True if a side was updated
        """
        if isinstance(odds, bool) or not isinstance(odds, (int, float)) or not math.isfinite(odds) or odds == 0:
            logger.debug(f"No back offers available for market {self.market_id}, runner {selection_id}")
            return False

        if odds <= 1:
            logger.debug(f"Odds at minimum for market {self.market_id}, runner {selection_id}: {odds}")
            return False

        if selection_id == self.selection_id_a:
            self.current_odds.pA = float(odds)
        elif selection_id == self.selection_id_b:
            self.current_odds.pB = float(odds)
        else:
            logger.debug(f"Unknown runner {selection_id} on market {self.market_id}")
            return False

        logger.debug(f"Updated odds for {self.market_id} runner {selection_id}: {odds}")
        return True


class MarketStateStore:
    """
    All tracked markets, keyed by market ID.

    Provides fast lookups for:
    - Market state by ID
    - Markets still open for subscription/staking
    - The market holding the outstanding bet
    """

    def __init__(self):
        self.markets: dict[str, MarketState] = {}

    def add_from_catalogue(self, market: dict[str, Any], now: Optional[datetime] = None) -> Optional[MarketState]:
        """
        Track a catalogue market.

        Skips duplicates and markets without two runners.

        Returns:
            The new MarketState, or None if skipped
        """
        market_id = market.get("marketId")
        if not market_id or market_id in self.markets:
            return None

        if len(market.get("runners") or []) < 2:
            logger.debug(f"Skipping market {market_id}: fewer than two runners")
            return None

        state = MarketState.from_catalogue(market, now=now)
        self.markets[market_id] = state
        return state

    def load_catalogue(self, markets: list[dict[str, Any]], now: Optional[datetime] = None) -> int:
        """
        Track every usable market from a catalogue listing.

        Returns:
            Number of markets added
        """
        added = 0
        for market in markets:
            try:
                if self.add_from_catalogue(market, now=now):
                    added += 1
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed catalogue entry {market.get('marketId')}: {e}")
        return added

    def get(self, market_id: str) -> Optional[MarketState]:
        """Get state for a market."""
        return self.markets.get(market_id)

    def get_open(self, market_id: str) -> Optional[MarketState]:
        """Get state for a market only if it is still open for tracking."""
        market = self.markets.get(market_id)
        if market is None or not market.is_open:
            return None
        return market

    def remove(self, market_id: str) -> Optional[MarketState]:
        """Stop tracking a market."""
        return self.markets.pop(market_id, None)

    def open_market_ids(self) -> list[str]:
        """IDs of markets still open, in insertion order."""
        return [m.market_id for m in self.markets.values() if m.is_open]

    def open_bet_market(self) -> Optional[MarketState]:
        """The market holding an unsettled bet, if any."""
        for market in self.markets.values():
            if market.has_unsettled_bet:
                return market
        return None

    def unsettled_bet_count(self) -> int:
        return sum(1 for m in self.markets.values() if m.has_unsettled_bet)

    def status_counts(self) -> dict[str, int]:
        """Number of tracked markets per status."""
        counts = {status.value: 0 for status in MarketStatus}
        for market in self.markets.values():
            counts[market.status.value] += 1
        return counts

    def markets_near_first_set_end(self, min_games: int = 5, limit: int = 3) -> list[MarketState]:
        """
        Open markets whose first set is still running and close to ending.

        Sorted by games of the leading player, then by game difference,
        both descending.
        """
        candidates = [
            m for m in self.markets.values()
            if m.is_open
            and not m.has_first_set_ended
            and m.first_set is not None
            and m.first_set.max_games >= min_games
        ]
        candidates.sort(key=lambda m: (m.first_set.max_games, m.first_set.diff), reverse=True)
        return candidates[:limit]

    def count_near_first_set_end(self, min_games: int = 5) -> int:
        return len(self.markets_near_first_set_end(min_games=min_games, limit=len(self.markets)))

    def __len__(self) -> int:
        return len(self.markets)

    def __contains__(self, market_id: object) -> bool:
        return market_id in self.markets

    def __iter__(self) -> Iterator[MarketState]:
        return iter(list(self.markets.values()))


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an exchange ISO-8601 timestamp (trailing Z allowed)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
