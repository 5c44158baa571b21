"""HTTP client factory with retries, a circuit breaker and timeouts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, TypeVar
from urllib.parse import urljoin, urlsplit

import requests

from eggkit.retry import CircuitBreaker, RetryAdapter

T = TypeVar("T")


@dataclass
class ClientOptions:
    """Client behaviour; times are in seconds."""

    timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 0.1
    enable_circuit: bool = True
    circuit_threshold: int = 5
    idempotency_key: str = "X-Idempotency-Key"


Option = Callable[[ClientOptions], None]


def with_timeout(seconds: float) -> Option:
    """Set the request timeout."""

    def apply(options: ClientOptions) -> None:
        options.timeout = seconds

    return apply


def with_retry(max_retries: int) -> Option:
    """Set the maximum number of retries."""

    def apply(options: ClientOptions) -> None:
        options.max_retries = max_retries

    return apply


def with_circuit_breaker(enabled: bool) -> Option:
    """Enable or disable the circuit breaker."""

    def apply(options: ClientOptions) -> None:
        options.enable_circuit = enabled

    return apply


def with_idempotency_key(key: str) -> Option:
    """Set the idempotency key header name."""

    def apply(options: ClientOptions) -> None:
        options.idempotency_key = key

    return apply


class HTTPClient:
    """A session whose transport retries transient failures."""

    def __init__(self, base_url: str, options: ClientOptions) -> None:
        self.base_url = base_url
        self.options = options
        self.timeout = options.timeout

        breaker = None
        if options.enable_circuit:
            threshold = options.circuit_threshold
            breaker = CircuitBreaker(
                name="connect-client",
                max_requests=threshold,
                timeout=60.0,
                ready_to_trip=lambda counts: counts.consecutive_failures > threshold,
            )

        self.transport = RetryAdapter(
            max_retries=options.max_retries,
            backoff=options.retry_backoff,
            breaker=breaker,
        )
        self.session = requests.Session()
        self.session.mount("http://", self.transport)
        self.session.mount("https://", self.transport)

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request; relative URLs are resolved against the base URL."""
        if not urlsplit(url).scheme:
            url = urljoin(self.base_url, url)
        kwargs.setdefault("timeout", self.timeout)
        return self.session.request(method, url, **kwargs)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> HTTPClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def new_http_client(base_url: str, *args: Option) -> HTTPClient:
    """Build an HTTP client, applying the given options to the defaults."""
    options = ClientOptions()
    for option in args:
        option(options)
    return HTTPClient(base_url, options)


def new_connect_client(
    base_url: str,
    service_name: str,
    new_client: Callable[[HTTPClient, str], T],
    *args: Option,
) -> T:
    """Build a typed service client on top of a configured HTTP client."""
    http_client = new_http_client(base_url, *args)
    return new_client(http_client, base_url)