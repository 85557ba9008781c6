"""
Betfair Exchange REST client.

Handles:
- Interactive identity login (session token)
- Market catalogue listing for tennis MATCH_ODDS markets
- Order placement (placeOrders)
- Order edits (replaceOrders)

Order calls are never retried automatically: a failed placement is reported
to the caller, which decides what to do with it.
"""
from typing import Any, Optional

import httpx
import structlog

from src.config.settings import Settings, settings as default_settings
from src.clients.base import BaseClient, CircuitOpenError, GatewayError

logger = structlog.get_logger()

TENNIS_EVENT_TYPE_ID = "2"

DEFAULT_MARKET_FILTER = {
    "eventTypeIds": [TENNIS_EVENT_TYPE_ID],
    "marketTypeCodes": ["MATCH_ODDS"],
}

MARKET_PROJECTION = [
    "RUNNER_DESCRIPTION",
    "MARKET_START_TIME",
    "EVENT",
    "MARKET_DESCRIPTION",
]


class BetfairClient(BaseClient):
    """Client for the Betfair identity and betting REST APIs."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Settings with credentials/endpoints (module settings if None)
            transport: Optional httpx transport override
        """
        self.settings = config or default_settings
        super().__init__(
            base_url=self.settings.api_endpoint,
            headers={"X-Application": self.settings.login_app_key},
            max_retries=1,
            transport=transport,
        )
        self.session_token: Optional[str] = None

    def _auth_headers(self) -> dict[str, str]:
        if not self.session_token:
            raise GatewayError("Not logged in: no session token")
        return {
            "X-Authentication": self.session_token,
            "Content-Type": "application/json",
        }

    async def login(self) -> str:
        """
        Log in with username/password and store the session token.

        Returns:
            Session token

        Raises:
            GatewayError: If the login request fails or returns no token
        """
        logger.info("Attempting login", endpoint=self.settings.login_endpoint)
        try:
            data = await self.post(
                self.settings.login_endpoint,
                data={
                    "username": self.settings.betfair_username,
                    "password": self.settings.betfair_password,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except (httpx.HTTPError, ValueError, CircuitOpenError) as e:
            raise GatewayError(f"Login failed: {e}", status_code=_status_of(e)) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise GatewayError(
                f"Login failed: {data.get('error') if isinstance(data, dict) else data}",
                payload=data,
            )

        self.session_token = token
        logger.info("Logged in successfully")
        return token

    async def list_market_catalogue(
        self,
        market_filter: Optional[dict[str, Any]] = None,
        max_results: int = 200,
        retries: int = 3,
        retry_delay: float = 5.0,
    ) -> list[dict[str, Any]]:
        """
        List open markets matching a filter.

        Transient failures are retried `retries` times with a fixed delay.

        Args:
            market_filter: Betfair MarketFilter (tennis MATCH_ODDS if None)
            max_results: Maximum markets to return
            retries: Attempts before giving up
            retry_delay: Seconds between attempts

        Returns:
            List of market catalogue entries, or [] when all attempts failed
        """
        body = {
            "filter": market_filter or DEFAULT_MARKET_FILTER,
            "maxResults": max_results,
            "marketProjection": MARKET_PROJECTION,
        }

        logger.info("Fetching open markets", filter=body["filter"])
        try:
            data = await self.post(
                "listMarketCatalogue/",
                json=body,
                headers=self._auth_headers(),
                max_retries=retries,
                retry_delay=retry_delay,
            )
        except (httpx.HTTPError, ValueError, CircuitOpenError, GatewayError) as e:
            logger.error("Failed to fetch markets", error=str(e))
            return []

        if not isinstance(data, list):
            logger.error("Unexpected market catalogue payload", payload_type=type(data).__name__)
            return []

        logger.info("Raw markets fetched", count=len(data))
        return data

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
        Place a single LIMIT order that lapses at in-play/close.

        Returns:
            Exchange bet ID

        Raises:
            GatewayError: On HTTP failure or a non-SUCCESS instruction report
        """
        body = {
            "marketId": market_id,
            "instructions": [
                {
                    "selectionId": selection_id,
                    "side": side,
                    "orderType": order_type,
                    "limitOrder": {
                        "size": round(size, 2),
                        "price": price,
                        "persistenceType": "LAPSE",
                    },
                }
            ],
        }
        data = await self._post_order("placeOrders/", body)

        reports = data.get("instructionReports") or []
        bet_id = reports[0].get("betId") if reports else None
        if data.get("status") == "FAILURE" or not bet_id:
            raise GatewayError(
                f"Bet placement rejected: {data.get('errorCode') or _report_error(reports)}",
                payload=data,
            )
        return str(bet_id)

    async def replace_order(
        self,
        market_id: str,
        bet_id: str,
        new_size: float,
        new_price: float,
    ) -> None:
        """
        Edit an order's remaining size and price.

        Raises:
            GatewayError: On HTTP failure or a non-SUCCESS report
        """
        body = {
            "marketId": market_id,
            "instructions": [
                {"betId": bet_id, "newPrice": new_price, "newSize": round(new_size, 2)}
            ],
        }
        data = await self._post_order("replaceOrders/", body)

        if data.get("status") == "FAILURE":
            reports = data.get("instructionReports") or []
            raise GatewayError(
                f"Bet edit rejected: {data.get('errorCode') or _report_error(reports)}",
                payload=data,
            )

    async def _post_order(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            data = await self.post(path, json=body, headers=self._auth_headers())
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"{path} failed: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError, CircuitOpenError) as e:
            raise GatewayError(f"{path} failed: {e}") from e

        if not isinstance(data, dict):
            raise GatewayError(f"{path} returned unexpected payload", payload=data)
        return data


def _status_of(error: Exception) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def _report_error(reports: list[dict[str, Any]]) -> str:
    if reports and reports[0].get("errorCode"):
        return reports[0]["errorCode"]
    return "unknown error"
