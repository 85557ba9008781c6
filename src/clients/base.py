"""
Base HTTP client for the exchange REST APIs.

Features:
- Circuit breaker to avoid hammering a failing endpoint
- Separate connect/read timeouts
- Request ID tracking for log correlation
- Retries only transient errors, with a fixed or exponential backoff
"""
import asyncio
import random
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """
    Circuit breaker to prevent cascading failures.

    Opens after `failure_threshold` consecutive failures.
    Stays open for `recovery_timeout` seconds before letting a test call through.
    """
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    state: CircuitState = field(default=CircuitState.CLOSED)
    failure_count: int = field(default=0)
    last_failure_time: Optional[float] = field(default=None)

    def can_execute(self) -> bool:
        """Check if request should be allowed."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.last_failure_time is not None:
                elapsed = time.monotonic() - self.last_failure_time
                if elapsed >= self.recovery_timeout:
                    self.state = CircuitState.HALF_OPEN
                    logger.info("Circuit breaker half-open, testing recovery")
                    return True
            return False

        # HALF_OPEN: one test call is already in flight
        return False

    def record_success(self) -> None:
        """Record successful request."""
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker closed, service recovered")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self) -> None:
        """Record failed request."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            logger.warning("Circuit breaker re-opened after failed recovery test")
        elif self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
            )


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open."""
    pass


class GatewayError(Exception):
    """
    A REST request to the exchange failed.

    Carries the HTTP status and the decoded error payload when available.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is transient and worth retrying.

    Retryable:
    - Connection errors and timeouts
    - 429 Too Many Requests
    - 5xx server errors

    NOT Retryable:
    - 4xx client errors (bad session, bad request)
    """
    if isinstance(error, (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    return False


def calculate_backoff(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff with full jitter.

    Formula: random(0, min(cap, base * 2^attempt))
    """
    exp_backoff = min(max_delay, base * (2 ** attempt))
    return random.uniform(0, exp_backoff)


class BaseClient:
    """Async HTTP client with retry and circuit breaking."""

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the HTTP client.

        Args:
            base_url: Base URL for all requests
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            headers: Additional headers to include in requests
            max_retries: Default attempts per request (1 = no retry)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url
        self.max_retries = max_retries
        self.circuit_breaker = CircuitBreaker()

        default_headers = {
            "Accept": "application/json",
            "User-Agent": "UnderdogMartingale/1.0",
        }
        if headers:
            default_headers.update(headers)

        timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=connect_timeout,
        )

        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=default_headers,
            transport=transport,
        )
        self._closed = False

    async def post(
        self,
        path: str,
        json: Optional[Any] = None,
        data: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> Any:
        """
        Make a POST request, retrying transient failures.

        Args:
            path: URL path (appended to base_url) or absolute URL
            json: JSON body
            data: Form-encoded body
            headers: Per-request headers
            max_retries: Attempts for this call (defaults to client setting)
            retry_delay: Fixed delay between attempts; exponential jitter if None
            request_id: Optional request ID for log correlation

        Returns:
            Decoded JSON response

        Raises:
            httpx.HTTPError: On transport failure or non-2xx after retries
            CircuitOpenError: If circuit breaker is open
        """
        request_id = request_id or str(uuid.uuid4())[:8]
        attempts = max_retries or self.max_retries

        if not self.circuit_breaker.can_execute():
            logger.warning("Request rejected by circuit breaker", path=path, request_id=request_id)
            raise CircuitOpenError(f"Circuit breaker open for {self.base_url}")

        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                logger.debug("HTTP POST", path=path, attempt=attempt + 1, request_id=request_id)
                response = await self.client.post(path, json=json, data=data, headers=headers)
                response.raise_for_status()

                try:
                    payload = response.json()
                except ValueError as e:
                    logger.error("Invalid JSON response", path=path, error=str(e), request_id=request_id)
                    raise

                self.circuit_breaker.record_success()
                return payload

            except Exception as e:
                last_error = e
                logger.warning(
                    "POST request failed",
                    path=path,
                    attempt=attempt + 1,
                    max_retries=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                    request_id=request_id,
                )

                if not is_retryable_error(e) or attempt >= attempts - 1:
                    self.circuit_breaker.record_failure()
                    raise

                backoff = retry_delay if retry_delay is not None else calculate_backoff(attempt)
                logger.debug("Retrying after backoff", wait_seconds=round(backoff, 2), request_id=request_id)
                await asyncio.sleep(backoff)

        self.circuit_breaker.record_failure()
        raise last_error or Exception("Request failed")

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._closed:
            await self.client.aclose()
            self._closed = True

    async def __aenter__(self) -> "BaseClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
