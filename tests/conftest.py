"""Shared fixtures for betting bot tests."""

from datetime import datetime, timezone
from typing import Optional

import pytest

from src.betting.config import BettingConfig
from src.betting.execution import SimulatedGateway
from src.betting.journal import EventJournal
from src.betting.staking import StakingEngine
from src.betting.state import MarketState, MarketStateStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_catalogue_market(
    market_id: str = "1.100",
    event_id: str = "3001",
    open_date: str = "2025-06-01T11:00:00.000Z",
    runners: Optional[list] = None,
) -> dict:
    """Catalogue entry as returned by listMarketCatalogue."""
    if runners is None:
        runners = [
            {"selectionId": 11, "runnerName": "Alpha"},
            {"selectionId": 22, "runnerName": "Beta"},
        ]
    return {
        "marketId": market_id,
        "marketStartTime": open_date,
        "event": {"id": event_id, "name": "Alpha v Beta", "openDate": open_date},
        "runners": runners,
    }


def make_market(market_id: str = "1.100", **overrides) -> MarketState:
    market = MarketState.from_catalogue(make_catalogue_market(market_id=market_id), now=NOW)
    for key, value in overrides.items():
        setattr(market, key, value)
    return market


@pytest.fixture
def config() -> BettingConfig:
    return BettingConfig()


@pytest.fixture
def journal(tmp_path) -> EventJournal:
    journal = EventJournal(tmp_path / "games")
    journal.setup()
    return journal


@pytest.fixture
def gateway() -> SimulatedGateway:
    return SimulatedGateway()


@pytest.fixture
def engine(config, gateway, journal) -> StakingEngine:
    return StakingEngine(config, gateway, journal)


@pytest.fixture
def store() -> MarketStateStore:
    store = MarketStateStore()
    store.load_catalogue(
        [make_catalogue_market(market_id=f"1.{100 + i}", event_id=str(3001 + i)) for i in range(3)],
        now=NOW,
    )
    return store
