"""
Underdog martingale bot runner.

Main entry point that orchestrates:
1. Credential check and login
2. Market catalogue bootstrap
3. Stream connection (authenticate, subscribe, route messages)
4. Periodic status reports

Usage:
    python -m src.betting.runner [--live] [--test-bets] [--config PATH]
"""

import argparse
import asyncio
import logging
import signal as sig
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from src.clients.base import GatewayError
from src.clients.betfair import BetfairClient
from src.config.settings import Settings, get_settings

from .config import BettingConfig, load_betting_config
from .connection import StreamConnection
from .execution import create_gateway
from .journal import EventJournal
from .router import StreamMessageRouter
from .staking import StakingEngine
from .state import MarketStateStore
from .subscription import SubscriptionManager

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Fatal error before the stream is started."""


class BettingRunner:
    """
    Main runner for the betting bot.

    Wires the components together and manages the main event loop.
    """

    def __init__(
        self,
        config: Optional[BettingConfig] = None,
        settings: Optional[Settings] = None,
        client: Optional[BetfairClient] = None,
        journal: Optional[EventJournal] = None,
        connection: Optional[StreamConnection] = None,
    ):
        """
        Initialize runner.

        Args:
            config: Optional config override (loads from YAML if None)
            settings: Optional settings override
            client: Optional REST client override
            journal: Optional journal override
            connection: Optional stream connection override
        """
        self.settings = settings or get_settings()
        self.config = config or load_betting_config(self.settings.strategy_config_path or None)
        self.client = client or BetfairClient(self.settings)
        self.journal = journal or EventJournal(self.settings.games_dir)

        self.store = MarketStateStore()
        self.gateway = create_gateway(self.config.simulation, self.client)
        self.engine = StakingEngine(self.config, self.gateway, self.journal)
        self.subscriptions = SubscriptionManager(self.store)
        self.connection = connection or StreamConnection(
            settings=self.settings,
            config=self.config,
            on_message=self._on_message,
        )
        self.router = StreamMessageRouter(
            connection=self.connection,
            subscriptions=self.subscriptions,
            store=self.store,
            engine=self.engine,
            config=self.config,
            journal=self.journal,
        )

        self.running = False
        self._stop_event = asyncio.Event()

    def _on_message(self, message: dict[str, Any]) -> None:
        self.router.handle_message(message)

    async def startup(self) -> int:
        """
        Log in and load the market catalogue.

        Returns:
            Number of markets tracked

        Raises:
            StartupError: Missing credentials, failed login or no markets
        """
        missing = self.settings.missing_credentials()
        if missing:
            raise StartupError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Update your .env file and verify the app keys in the Betfair Developer Portal."
            )

        try:
            token = await self.client.login()
        except GatewayError as e:
            raise StartupError(str(e)) from e
        self.connection.session_token = token

        self.journal.setup()

        markets = await self.client.list_market_catalogue(
            max_results=self.config.max_results,
            retries=self.config.market_fetch_retries,
            retry_delay=self.config.market_fetch_retry_delay,
        )
        if not markets:
            raise StartupError("No tennis markets found")

        added = self.store.load_catalogue(markets)
        if added == 0:
            raise StartupError("No usable tennis markets in catalogue")

        self.engine.record_markets_tracked(added)
        logger.info(f"Total markets tracked: {len(self.store)}")
        return added

    async def run(self):
        """
        Main run loop.

        Starts the stream connection and status reports, runs until stopped.
        """
        self.running = True
        self._stop_event.clear()

        logger.info("Starting Underdog Martingale bot")
        logger.info(f"Mode: {self.gateway.mode.upper()}, policy: {self.engine.policy.value}")
        if self.config.test_bet_enabled:
            logger.warning(
                f"Test betting enabled: Targeting odds {self.config.test_bet_odds} "
                f"±{self.config.test_bet_tolerance}"
            )
        if not self.config.simulation:
            logger.warning("=" * 60)
            logger.warning("  LIVE MODE - BETTING WITH REAL MONEY")
            logger.warning("=" * 60)

        try:
            await self.startup()
            await self._run_tasks()
        finally:
            self.running = False
            self.connection.stop()
            await self.engine.drain()
            await self.client.close()
            logger.info("Bot stopped")

    async def _run_tasks(self):
        tasks = [
            asyncio.create_task(self.connection.start(), name="stream"),
            asyncio.create_task(self._status_report_loop(), name="status_report"),
        ]

        try:
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_COMPLETED
            )

            for task in done:
                if not task.cancelled() and task.exception():
                    logger.error(f"Task {task.get_name()} failed: {task.exception()}")

        except asyncio.CancelledError:
            logger.info("Runner cancelled")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _status_report_loop(self):
        """Log a status report every status_report_interval seconds."""
        while self.running:
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.config.status_report_interval,
                )
            except asyncio.TimeoutError:
                self.report_status()

    def report_status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Log the periodic status report.

        Returns:
            The reported figures
        """
        now = now or datetime.now(timezone.utc)

        near_end = self.store.markets_near_first_set_end(min_games=5, limit=3)
        near_end_count = self.store.count_near_first_set_end(min_games=5)
        logger.info(f"Number of markets with first set close to ending (>=5 games): {near_end_count}")
        if near_end:
            logger.info("Top 3 markets close to ending first set:")
            for market in near_end:
                first_set = market.first_set
                logger.info(
                    f"Market {market.market_id}: Set 1 {market.player_a} "
                    f"{first_set.home_score}-{first_set.away_score} {market.player_b}, "
                    f"Odds {market.current_odds.pA or 'N/A'}-{market.current_odds.pB or 'N/A'}"
                )

        counts = self.store.status_counts()
        logger.info(
            f"Tennis match schedule ({now.date().isoformat()}): Total: {len(self.store)}, "
            f"Upcoming: {counts['UPCOMING']}, In-Play: {counts['IN_PLAY']}, Ended: {counts['ENDED']}"
        )

        state = self.engine.state
        logger.info(f"Total markets tracked: {state.markets_tracked}")
        logger.info(f"Total sets completed: {state.sets_completed}")
        logger.info(f"Total times betting condition met: {state.conditions_met}")
        logger.info(f"Total bets placed: {state.bets_placed}")

        idle_minutes = self.engine.minutes_without_bet(now)
        if idle_minutes is not None:
            logger.warning(f"Elapsed time without betting: {idle_minutes} minutes")

        return {
            "near_first_set_end": [m.market_id for m in near_end],
            "near_first_set_end_count": near_end_count,
            "status_counts": counts,
            "minutes_without_bet": idle_minutes,
            **self.engine.get_stats(),
        }

    def stop(self):
        """Stop the runner."""
        logger.info("Stopping bot")
        self.running = False
        self._stop_event.set()
        self.connection.stop()


def build_config(args: argparse.Namespace, settings: Settings) -> BettingConfig:
    """Load betting config and apply command-line overrides."""
    config = load_betting_config(args.config or settings.strategy_config_path or None)
    if args.live:
        config.simulation = False
    if args.test_bets:
        config.test_bet_enabled = True
    return config


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Underdog martingale tennis betting bot")
    parser.add_argument("--live", action="store_true", help="Place real orders (default: simulated)")
    parser.add_argument("--test-bets", action="store_true", help="Bet on odds near the test target, skip score checks")
    parser.add_argument("--config", default=None, help="Path to strategies.yaml")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace):
    """Entry point for the bot."""
    settings = get_settings()
    runner = BettingRunner(config=build_config(args, settings), settings=settings)

    # Setup signal handlers for graceful shutdown
    def shutdown_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        runner.stop()

    sig.signal(sig.SIGTERM, shutdown_handler)
    sig.signal(sig.SIGINT, shutdown_handler)

    await runner.run()


def setup_logging(level: str = "INFO", log_file: Optional[str] = "bot.log"):
    """Configure console and file logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    # Basic logging
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    # Structlog
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from HTTP and event loop internals
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def cli(argv: Optional[list[str]] = None):
    """Console script entry point."""
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    try:
        asyncio.run(main(args))
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
