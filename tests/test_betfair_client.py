"""
Tests for the Betfair REST client.

Tests:
- Login and session token handling
- Market catalogue retries
- Order placement and edits
"""

import json

import httpx
import pytest

from src.clients.base import CircuitBreaker, CircuitState, GatewayError, is_retryable_error
from src.clients.betfair import BetfairClient
from src.config.settings import Settings


def _settings() -> Settings:
    return Settings(
        _env_file=None,
        login_app_key="login-key",
        stream_app_key="stream-key",
        betfair_username="user",
        betfair_password="pass",
        login_endpoint="https://identity.example/api/login",
        api_endpoint="https://api.example/betting/rest/v1.0/",
    )


def _client(handler) -> BetfairClient:
    return BetfairClient(_settings(), transport=httpx.MockTransport(handler))


class TestLogin:
    """Tests for identity login."""

    @pytest.mark.asyncio
    async def test_login_stores_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={"token": "TOKEN", "status": "SUCCESS"})

        client = _client(handler)
        token = await client.login()
        await client.close()

        assert token == "TOKEN"
        assert client.session_token == "TOKEN"
        assert seen["url"] == "https://identity.example/api/login"
        assert seen["headers"]["X-Application"] == "login-key"
        assert seen["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert "username=user" in seen["body"]
        assert "password=pass" in seen["body"]

    @pytest.mark.asyncio
    async def test_login_http_error(self):
        client = _client(lambda request: httpx.Response(401, text="Unauthorized"))

        with pytest.raises(GatewayError) as exc_info:
            await client.login()
        await client.close()

        assert exc_info.value.status_code == 401
        assert client.session_token is None

    @pytest.mark.asyncio
    async def test_login_without_token(self):
        client = _client(lambda request: httpx.Response(200, json={"status": "FAIL", "error": "INVALID_USERNAME_OR_PASSWORD"}))

        with pytest.raises(GatewayError, match="INVALID_USERNAME_OR_PASSWORD"):
            await client.login()
        await client.close()


class TestListMarketCatalogue:
    """Tests for the market catalogue."""

    @pytest.mark.asyncio
    async def test_request_body_and_headers(self):
        seen = {}
        markets = [{"marketId": "1.1", "runners": []}]

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=markets)

        client = _client(handler)
        client.session_token = "TOKEN"
        result = await client.list_market_catalogue(max_results=50)
        await client.close()

        assert result == markets
        assert seen["url"] == "https://api.example/betting/rest/v1.0/listMarketCatalogue/"
        assert seen["headers"]["X-Authentication"] == "TOKEN"
        assert seen["headers"]["X-Application"] == "login-key"
        assert seen["body"]["filter"] == {"eventTypeIds": ["2"], "marketTypeCodes": ["MATCH_ODDS"]}
        assert seen["body"]["maxResults"] == 50
        assert "RUNNER_DESCRIPTION" in seen["body"]["marketProjection"]

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=[{"marketId": "1.1"}])

        client = _client(handler)
        client.session_token = "TOKEN"
        result = await client.list_market_catalogue(retries=3, retry_delay=0)
        await client.close()

        assert result == [{"marketId": "1.1"}]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_empty(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("Connection refused", request=request)

        client = _client(handler)
        client.session_token = "TOKEN"
        result = await client.list_market_catalogue(retries=3, retry_delay=0)
        await client.close()

        assert result == []
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"faultcode": "Client"})

        client = _client(handler)
        client.session_token = "TOKEN"
        result = await client.list_market_catalogue(retries=3, retry_delay=0)
        await client.close()

        assert result == []
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_requires_login(self):
        client = _client(lambda request: httpx.Response(200, json=[]))

        assert await client.list_market_catalogue(retry_delay=0) == []
        await client.close()


class TestOrders:
    """Tests for placeOrders/replaceOrders."""

    @pytest.mark.asyncio
    async def test_place_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "status": "SUCCESS",
                "instructionReports": [{"status": "SUCCESS", "betId": "31242604945"}],
            })

        client = _client(handler)
        client.session_token = "TOKEN"
        bet_id = await client.place_order("1.100", 22, "BACK", "LIMIT", 2.004, 1000)
        await client.close()

        assert bet_id == "31242604945"
        assert seen["url"].endswith("/placeOrders/")
        instruction = seen["body"]["instructions"][0]
        assert seen["body"]["marketId"] == "1.100"
        assert instruction["selectionId"] == 22
        assert instruction["side"] == "BACK"
        assert instruction["orderType"] == "LIMIT"
        assert instruction["limitOrder"] == {"size": 2.0, "price": 1000, "persistenceType": "LAPSE"}

    @pytest.mark.asyncio
    async def test_place_order_rejected(self):
        client = _client(lambda request: httpx.Response(200, json={
            "status": "FAILURE",
            "errorCode": "INSUFFICIENT_FUNDS",
            "instructionReports": [{"status": "FAILURE", "errorCode": "ERROR_IN_ORDER"}],
        }))
        client.session_token = "TOKEN"

        with pytest.raises(GatewayError, match="INSUFFICIENT_FUNDS"):
            await client.place_order("1.100", 22, "BACK", "LIMIT", 2.0, 1000)
        await client.close()

    @pytest.mark.asyncio
    async def test_place_order_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = _client(handler)
        client.session_token = "TOKEN"

        with pytest.raises(GatewayError) as exc_info:
            await client.place_order("1.100", 22, "BACK", "LIMIT", 2.0, 1000)
        await client.close()

        assert exc_info.value.status_code == 503
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_replace_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "SUCCESS", "instructionReports": []})

        client = _client(handler)
        client.session_token = "TOKEN"
        await client.replace_order("1.100", "31242604945", 0.05, 2.6)
        await client.close()

        assert seen["url"].endswith("/replaceOrders/")
        assert seen["body"] == {
            "marketId": "1.100",
            "instructions": [{"betId": "31242604945", "newPrice": 2.6, "newSize": 0.05}],
        }

    @pytest.mark.asyncio
    async def test_replace_order_rejected(self):
        client = _client(lambda request: httpx.Response(200, json={
            "status": "FAILURE",
            "instructionReports": [{"status": "FAILURE", "errorCode": "BET_TAKEN_OR_LAPSED"}],
        }))
        client.session_token = "TOKEN"

        with pytest.raises(GatewayError, match="BET_TAKEN_OR_LAPSED"):
            await client.replace_order("1.100", "1", 0.05, 2.6)
        await client.close()


class TestCircuitBreaker:
    """Tests for the client circuit breaker."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3)

        for _ in range(3):
            breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.can_execute() is False

    def test_success_resets(self):
        breaker = CircuitBreaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()

        breaker.record_success()

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    def test_retryable_errors(self):
        request = httpx.Request("POST", "https://api.example/")

        assert is_retryable_error(httpx.ConnectError("x", request=request))
        assert is_retryable_error(httpx.HTTPStatusError(
            "x", request=request, response=httpx.Response(503, request=request),
        ))
        assert not is_retryable_error(httpx.HTTPStatusError(
            "x", request=request, response=httpx.Response(400, request=request),
        ))
        assert not is_retryable_error(ValueError("bad json"))
