"""
Betting strategy configuration.

Loads configuration from strategies.yaml under the `underdog_martingale` section.
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# Default config path
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "strategies.yaml"

CONFIG_SECTION = "underdog_martingale"


@dataclass
class BettingConfig:
    """Configuration for the underdog martingale strategy."""

    # Mode
    simulation: bool = True  # Simulated ledger by default, live when False
    aggressive_fill: bool = True  # Live only: place at aggressive_price then edit down

    # Bankroll
    fixed_balance: float = 100.0  # Live direct policy sizes off this
    simulation_balance: float = 100.0  # Starting simulated balance
    bet_percentage: float = 10.0  # Percent of balance per stake, before multiplier
    commission_rate: float = 0.05  # Exchange commission on net winnings

    # Aggressive-fill policy
    guaranteed_fill_stake: float = 2.0  # Fixed stake under aggressive fill
    aggressive_price: float = 1000.0  # Max exchange price, matches any back offer
    residual_size: float = 0.05  # Remaining size after the edit

    # Entry condition after the first set
    max_set_diff: int = 2  # |home - away| games
    min_underdog_odds: float = 2.0

    # Test betting (bypasses score checks)
    test_bet_enabled: bool = False
    test_bet_odds: float = 1.5
    test_bet_tolerance: float = 1.0

    # Stream connection
    reconnect_delay: float = 20.0
    max_reconnects: Optional[int] = None  # None = reconnect forever

    # Reporting
    status_report_interval: float = 300.0  # Every 5 min

    # Market catalogue bootstrap
    market_fetch_retries: int = 3
    market_fetch_retry_delay: float = 5.0
    max_results: int = 200

    @property
    def mode(self) -> str:
        return "simulated" if self.simulation else "live"


def load_betting_config(config_path: Optional[Path] = None) -> BettingConfig:
    """
    Load betting configuration from strategies.yaml.

    Args:
        config_path: Path to strategies.yaml (uses default if None)

    Returns:
        BettingConfig with loaded settings
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found: {path}, using defaults")
        return BettingConfig()

    try:
        with open(path) as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get(CONFIG_SECTION)

        if not section:
            logger.warning(f"No {CONFIG_SECTION} config found, using defaults")
            return BettingConfig()

        return _parse_config(section)

    except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
        logger.error(f"Failed to load betting config: {e}")
        return BettingConfig()


def _parse_config(cfg: dict) -> BettingConfig:
    """Parse config dict into BettingConfig, ignoring unknown keys."""
    known = {f.name for f in fields(BettingConfig)}
    unknown = set(cfg) - known
    if unknown:
        logger.warning(f"Ignoring unknown {CONFIG_SECTION} keys: {sorted(unknown)}")

    return BettingConfig(**{k: v for k, v in cfg.items() if k in known})
