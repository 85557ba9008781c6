"""
Underdog Martingale betting bot.

Tracks in-play tennis MATCH_ODDS markets on the Betfair Exchange Stream API
and backs the underdog after a close first set, sizing stakes with a
martingale multiplier. Runs in simulated or live mode.
"""

from .config import BettingConfig, load_betting_config
from .framing import FrameDecoder, decode_frame, encode_frame
from .state import Bet, BetStatus, MarketState, MarketStateStore, MarketStatus, Odds, SetScore
from .journal import EventJournal, EventType
from .execution import LiveGateway, OrderGateway, SimulatedGateway, create_gateway
from .staking import Outcome, PlacementPolicy, SettlementResult, StakingEngine, StakingState
from .connection import ConnectionNotReady, ConnectionState, StreamConnection
from .subscription import MAX_MARKETS_PER_SUBSCRIPTION, SubscriptionManager
from .router import StreamMessageRouter

__all__ = [
    # Config
    "BettingConfig",
    "load_betting_config",
    # Framing
    "FrameDecoder",
    "decode_frame",
    "encode_frame",
    # State
    "Bet",
    "BetStatus",
    "MarketState",
    "MarketStateStore",
    "MarketStatus",
    "Odds",
    "SetScore",
    # Journal
    "EventJournal",
    "EventType",
    # Execution
    "LiveGateway",
    "OrderGateway",
    "SimulatedGateway",
    "create_gateway",
    # Staking
    "Outcome",
    "PlacementPolicy",
    "SettlementResult",
    "StakingEngine",
    "StakingState",
    # Connection
    "ConnectionNotReady",
    "ConnectionState",
    "StreamConnection",
    # Subscriptions
    "MAX_MARKETS_PER_SUBSCRIPTION",
    "SubscriptionManager",
    # Router
    "StreamMessageRouter",
]
