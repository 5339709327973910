"""
Centralized HTTP client factory and retry executor.

Every network call made while serving a conversion request (the PDF download,
each page upload and the webhook POST) goes through ``RetryExecutor``. The
executor never inspects exception types on its own: operations report an
``Outcome`` and the decision to retry is made on the failure's category.
"""

import asyncio
import logging
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Generic, Optional, TypeVar, Union

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({500, 502, 503, 504})


# ===== OUTCOMES =====

class FailureCategory(str, Enum):
    """Classification of a failed attempt."""
    TRANSPORT = "transport"        # timeout, refused connection, DNS, TLS
    HTTP_STATUS = "http_status"    # the server answered with a non-success status
    CONTENT = "content"            # transfer worked but the payload is unusable
    APPLICATION = "application"    # client-side logic error, never retried
    FATAL = "fatal"                # resource exhaustion, aborts immediately


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    category: FailureCategory
    message: str
    status_code: Optional[int] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_response(cls, response: httpx.Response) -> 'Failure':
        reason = response.reason_phrase or "Unknown"
        return cls(
            FailureCategory.HTTP_STATUS,
            f"HTTP {response.status_code}: {reason}",
            status_code=response.status_code,
        )


Outcome = Union[Success[T], Failure]


def classify_exception(error: BaseException) -> Failure:
    """Turn an exception escaping an operation into a categorized failure."""
    if isinstance(error, MemoryError):
        return Failure(FailureCategory.FATAL, "Out of memory")
    if isinstance(error, (httpx.UnsupportedProtocol, httpx.InvalidURL)):
        return Failure(FailureCategory.APPLICATION, str(error) or type(error).__name__)
    if isinstance(error, httpx.TimeoutException):
        return Failure(FailureCategory.TRANSPORT, f"Request timed out ({type(error).__name__})")
    if isinstance(error, (httpx.NetworkError, httpx.ProtocolError, ssl.SSLError, OSError)):
        return Failure(FailureCategory.TRANSPORT, f"{type(error).__name__}: {error}")
    return Failure(FailureCategory.APPLICATION, f"{type(error).__name__}: {error}")


def default_retryable(failure: Failure) -> bool:
    """Transport failures and 500/502/503/504 responses are worth another attempt."""
    if failure.category is FailureCategory.TRANSPORT:
        return True
    if failure.category is FailureCategory.HTTP_STATUS:
        return failure.status_code in RETRYABLE_STATUS_CODES
    return False


# ===== RETRY EXECUTOR =====

@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait before the second attempt; doubles afterwards
        retryable: Predicate deciding whether a failure may be retried
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    retryable: Callable[[Failure], bool] = field(default=default_retryable, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based), no jitter."""
        return self.base_delay * (2 ** (attempt - 1))

    def with_max_attempts(self, max_attempts: int) -> 'RetryPolicy':
        return RetryPolicy(max_attempts=max_attempts, base_delay=self.base_delay, retryable=self.retryable)


class RetryExecutor:
    """Runs an operation under a ``RetryPolicy`` with exponential backoff."""

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None
    ):
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    async def execute(
        self,
        operation: Callable[[int], Awaitable[Outcome]],
        policy: RetryPolicy,
        description: str = "operation"
    ) -> Outcome:
        """
        Execute ``operation`` until it succeeds, fails terminally or runs out of attempts.

        Args:
            operation: Async callable receiving the 1-based attempt number and
                returning a Success or Failure
            policy: Retry configuration
            description: Label used in log messages

        Returns:
            The Success of the last attempt, or a Failure. When attempts are
            exhausted the failure message reads "<last error> after <n> attempts".
        """
        attempt = 1
        while True:
            try:
                outcome = await operation(attempt)
            except Exception as e:
                outcome = classify_exception(e)

            if outcome.ok:
                if attempt > 1:
                    self._logger.info(f"{description} succeeded on attempt {attempt}")
                return Success(outcome.value, attempts=attempt)

            failure: Failure = outcome
            if failure.category is FailureCategory.FATAL:
                self._logger.error(f"{description} aborted on fatal error: {failure.message}")
                return _with_attempts(failure, attempt)

            if not policy.retryable(failure):
                self._logger.warning(f"{description} failed with non-retryable error: {failure.message}")
                return _with_attempts(failure, attempt)

            if attempt >= policy.max_attempts:
                self._logger.error(f"{description} failed after {attempt} attempts: {failure.message}")
                return Failure(
                    failure.category,
                    f"{failure.message} after {attempt} attempts",
                    status_code=failure.status_code,
                    attempts=attempt,
                )

            delay = policy.delay_for(attempt)
            self._logger.warning(
                f"{description} failed ({failure.message}), "
                f"retrying attempt {attempt + 1}/{policy.max_attempts} in {delay:.2f}s"
            )
            await self._sleep(delay)
            attempt += 1


def _with_attempts(failure: Failure, attempts: int) -> Failure:
    return Failure(failure.category, failure.message, status_code=failure.status_code, attempts=attempts)


# ===== CLIENT FACTORY =====

class ServiceType(Enum):
    """Outbound call types, each with its own timeout profile."""
    SOURCE = "source"
    DESTINATION = "destination"
    WEBHOOK = "webhook"


USER_AGENT = "PDF-Converter-Service/1.0"


class HTTPClientFactory:
    """
    Creates and owns the pooled HTTP clients used by the pipeline.

    One client per ServiceType is shared by all requests; redirects are never
    followed automatically so the fetcher can enforce its own limit.
    """

    def __init__(self, timeouts: Optional[Dict[ServiceType, float]] = None):
        self._clients: Dict[ServiceType, httpx.AsyncClient] = {}
        self._timeouts = {
            ServiceType.SOURCE: 30.0,
            ServiceType.DESTINATION: 60.0,
            ServiceType.WEBHOOK: 10.0,
        }
        if timeouts:
            self._timeouts.update(timeouts)
        self._limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

    def _get_timeout(self, service_type: ServiceType) -> httpx.Timeout:
        seconds = self._timeouts[service_type]
        return httpx.Timeout(connect=seconds, read=seconds, write=seconds, pool=5.0)

    def create_client(self, service_type: ServiceType, **overrides: Any) -> httpx.AsyncClient:
        """
        Create an HTTP client for a service type.

        Args:
            service_type: Type of outbound call the client will make
            **overrides: Override default client configuration (e.g. ``transport``)

        Returns:
            Configured AsyncClient instance
        """
        config: Dict[str, Any] = {
            'timeout': self._get_timeout(service_type),
            'limits': self._limits,
            'follow_redirects': False,
            'headers': {'User-Agent': USER_AGENT},
        }
        config.update(overrides)

        client = httpx.AsyncClient(**config)
        self._clients[service_type] = client
        return client

    async def close_all_clients(self) -> None:
        """Close all managed clients."""
        for client in self._clients.values():
            try:
                await client.aclose()
            except Exception as e:
                logger.warning(f"Error closing HTTP client: {e}")
        self._clients.clear()


@asynccontextmanager
async def lifespan_http_clients(factory: HTTPClientFactory):
    """
    Context manager for HTTP client lifecycle management.

    Use this in the FastAPI lifespan to close pooled clients on shutdown.
    """
    try:
        yield factory
    finally:
        await factory.close_all_clients()
