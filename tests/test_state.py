"""
Tests for market state tracking.

Tests:
- Catalogue loading
- Odds validation
- Status counts and first-set reporting
"""

import math

import pytest

from src.betting.state import (
    Bet,
    BetStatus,
    MarketState,
    MarketStateStore,
    MarketStatus,
    SetScore,
    is_valid_odds,
)

from tests.conftest import NOW, make_catalogue_market, make_market


class TestMarketFromCatalogue:
    """Tests for building state from catalogue entries."""

    def test_fields(self):
        market = MarketState.from_catalogue(make_catalogue_market(), now=NOW)

        assert market.market_id == "1.100"
        assert market.event_id == "3001"
        assert market.player_a == "Alpha"
        assert market.player_b == "Beta"
        assert market.selection_id_a == 11
        assert market.selection_id_b == 22
        assert market.is_open is True
        assert market.has_first_set_ended is False
        assert market.current_odds.pA is None
        assert market.current_odds.pB is None
        assert market.bet is None

    def test_started_event_is_in_play(self):
        market = MarketState.from_catalogue(make_catalogue_market(open_date="2025-06-01T11:59:00Z"), now=NOW)

        assert market.status == MarketStatus.IN_PLAY

    def test_future_event_is_upcoming(self):
        market = MarketState.from_catalogue(make_catalogue_market(open_date="2025-06-01T15:00:00Z"), now=NOW)

        assert market.status == MarketStatus.UPCOMING

    def test_default_names_and_event_id(self):
        entry = make_catalogue_market(runners=[{"selectionId": 1}, {"selectionId": 2}])
        del entry["event"]

        market = MarketState.from_catalogue(entry, now=NOW)

        assert market.player_a == "Player A"
        assert market.player_b == "Player B"
        assert market.event_id == "1.100"


class TestOddsValidation:
    """Odds only ever hold finite prices above 1."""

    @pytest.mark.parametrize("value", [1.01, 2, 2.5, 1000])
    def test_valid(self, value):
        assert is_valid_odds(value)

    @pytest.mark.parametrize("value", [None, 0, 1, 0.5, -3, math.nan, math.inf, "2.5", True, [2.5]])
    def test_invalid(self, value):
        assert not is_valid_odds(value)

    def test_update_odds_by_selection(self):
        market = make_market()

        assert market.update_odds(11, 2.5)
        assert market.update_odds(22, 1.6)

        assert market.current_odds.pA == 2.5
        assert market.current_odds.pB == 1.6
        assert market.odds_for(11) == 2.5
        assert market.odds_for(22) == 1.6

    @pytest.mark.parametrize("value", [None, 0, 1, 0.9, math.nan, math.inf, "3.0", False])
    def test_update_odds_ignores_invalid(self, value):
        market = make_market()
        market.update_odds(11, 2.5)

        assert not market.update_odds(11, value)
        assert market.current_odds.pA == 2.5

    def test_update_odds_ignores_unknown_runner(self):
        market = make_market()

        assert not market.update_odds(99, 2.5)
        assert market.current_odds.pA is None
        assert market.current_odds.pB is None


class TestSetScore:
    """Tests for set scores."""

    def test_from_stream(self):
        score = SetScore.from_stream({"homeScore": 6, "awayScore": 4, "completed": True})

        assert score.home_score == 6
        assert score.away_score == 4
        assert score.completed is True
        assert score.max_games == 6
        assert score.diff == 2

    def test_missing_fields_default_to_zero(self):
        score = SetScore.from_stream({})

        assert score.home_score == 0
        assert score.away_score == 0
        assert score.completed is False


class TestMarketStateStore:
    """Tests for the market store."""

    def test_load_catalogue(self):
        store = MarketStateStore()
        markets = [
            make_catalogue_market("1.1"),
            make_catalogue_market("1.2"),
            make_catalogue_market("1.1"),  # Duplicate
            make_catalogue_market("1.3", runners=[{"selectionId": 1}]),  # One runner
            {"marketId": "1.4", "runners": [{"runnerName": "x"}, {"runnerName": "y"}]},  # No selection ids
        ]

        added = store.load_catalogue(markets, now=NOW)

        assert added == 2
        assert len(store) == 2
        assert "1.1" in store
        assert "1.3" not in store
        assert "1.4" not in store

    def test_get_open_skips_closed_markets(self, store):
        store.get("1.100").is_open = False

        assert store.get_open("1.100") is None
        assert store.get_open("1.101") is not None
        assert store.get_open("9.999") is None
        assert store.open_market_ids() == ["1.101", "1.102"]

    def test_remove(self, store):
        removed = store.remove("1.100")

        assert removed.market_id == "1.100"
        assert "1.100" not in store
        assert store.remove("1.100") is None

    def test_open_bet_market(self, store):
        assert store.open_bet_market() is None

        market = store.get("1.101")
        market.bet = Bet(selection_id=11, size=10, price=2.5)
        assert store.open_bet_market() is market
        assert store.unsettled_bet_count() == 1

        market.bet.status = BetStatus.SETTLED
        assert store.open_bet_market() is None
        assert store.unsettled_bet_count() == 0

    def test_status_counts(self, store):
        store.get("1.100").status = MarketStatus.UPCOMING
        store.get("1.102").status = MarketStatus.ENDED

        assert store.status_counts() == {"UPCOMING": 1, "IN_PLAY": 1, "ENDED": 1}

    def test_markets_near_first_set_end_ordering(self):
        store = MarketStateStore()
        scores = {
            "1.1": (5, 4),
            "1.2": (6, 5),
            "1.3": (5, 1),
            "1.4": (3, 2),  # Not close to ending
            "1.5": (6, 6),
        }
        for market_id, (home, away) in scores.items():
            market = store.add_from_catalogue(make_catalogue_market(market_id), now=NOW)
            market.sets = [SetScore(home, away)]

        near = store.markets_near_first_set_end()

        assert [m.market_id for m in near] == ["1.2", "1.5", "1.3"]
        assert store.count_near_first_set_end() == 4

    def test_markets_near_first_set_end_excludes_finished_sets(self):
        store = MarketStateStore()
        market = store.add_from_catalogue(make_catalogue_market("1.1"), now=NOW)
        market.sets = [SetScore(6, 4, completed=True)]
        market.has_first_set_ended = True

        assert store.markets_near_first_set_end() == []
