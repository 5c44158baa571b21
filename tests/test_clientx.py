import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from eggkit.clientx import (
    HTTPClient,
    new_connect_client,
    new_http_client,
    with_circuit_breaker,
    with_idempotency_key,
    with_retry,
    with_timeout,
)
from eggkit.retry import CircuitBreaker, RetryAdapter


@pytest.fixture
def server():
    state = {"attempts": 0, "respond": lambda attempt: 200}

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            state["attempts"] += 1
            code = state["respond"](state["attempts"])
            self.send_response(code)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    url = f"http://127.0.0.1:{httpd.server_address[1]}/"
    yield url, state
    httpd.shutdown()
    httpd.server_close()


def test_new_http_client_defaults():
    client = new_http_client("https://api.example.com")
    assert isinstance(client, HTTPClient)
    assert client.timeout == 30
    assert client.options.max_retries == 3
    assert client.options.idempotency_key == "X-Idempotency-Key"


def test_with_timeout():
    client = new_http_client("https://api.example.com", with_timeout(5))
    assert client.timeout == 5


def test_with_retry():
    client = new_http_client("https://api.example.com", with_retry(5))
    assert isinstance(client.transport, RetryAdapter)
    assert client.transport.max_retries == 5


def test_retry_on_5xx(server):
    url, state = server
    state["respond"] = lambda attempt: 503 if attempt < 3 else 200
    client = new_http_client(url, with_retry(3), with_timeout(5), with_circuit_breaker(False))
    response = client.request("GET", url)
    assert response.status_code == 200
    assert state["attempts"] == 3


def test_no_retry_on_4xx(server):
    url, state = server
    state["respond"] = lambda attempt: 400
    client = new_http_client(url, with_retry(3), with_timeout(5), with_circuit_breaker(False))
    response = client.request("GET", url)
    assert response.status_code == 400
    assert state["attempts"] == 1


def test_relative_url_uses_base(server):
    url, state = server
    with new_http_client(url, with_circuit_breaker(False)) as client:
        response = client.request("GET", "health")
    assert response.status_code == 200
    assert state["attempts"] == 1


def test_circuit_breaker_enabled():
    client = new_http_client("https://api.example.com", with_circuit_breaker(True))
    assert isinstance(client.transport, RetryAdapter)
    assert isinstance(client.transport.breaker, CircuitBreaker)
    assert client.transport.breaker.max_requests == 5


def test_circuit_breaker_disabled():
    client = new_http_client("https://api.example.com", with_circuit_breaker(False))
    assert isinstance(client.transport, RetryAdapter)
    assert client.transport.breaker is None


def test_with_idempotency_key():
    client = new_http_client("https://api.example.com", with_idempotency_key("X-Request-ID"))
    assert client.options.idempotency_key == "X-Request-ID"


def test_new_connect_client_passes_http_client_and_base_url():
    seen = {}

    def factory(http_client, base_url):
        seen["client"] = http_client
        seen["url"] = base_url
        return "typed-client"

    result = new_connect_client("https://api.example.com", "svc", factory, with_timeout(5))
    assert result == "typed-client"
    assert seen["url"] == "https://api.example.com"
    assert seen["client"].timeout == 5