"""
Append-only per-event journal.

One NDJSON file per sporting event under the games directory. Every record
carries a `type` tag and an ISO-8601 `timestamp`. The journal is write-only:
nothing in the bot reads it back.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventType:
    """Journal record types."""
    BET_PLACED = "bet_placed"
    BET_EDITED = "bet_edited"
    ODDS_UPDATE = "odds_update"
    MARKET_EXCLUDED = "market_excluded"
    BET_OUTCOME = "bet_outcome"
    MARKET_CLOSED = "market_closed"


class EventJournal:
    """Writes journal records to `<directory>/<event_id>.ndjson`."""

    def __init__(self, directory: str | Path = "games"):
        self.directory = Path(directory)

    def setup(self) -> None:
        """Create the journal directory if needed."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f'Historical data folder "{self.directory}" created or already exists')
        except OSError as e:
            logger.error(f"Failed to create games directory: {e}")

    def record(
        self,
        event_id: str,
        event_type: str,
        timestamp: Optional[datetime] = None,
        **fields: Any,
    ) -> Optional[dict[str, Any]]:
        """
        Append one record for an event.

        Write failures are logged, not raised.

        Returns:
            The record written, or None on failure
        """
        entry = {
            "type": event_type,
            **fields,
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
        }
        path = self.directory / f"{event_id}.ndjson"

        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write to {path}: {e}")
            return None

        return entry
