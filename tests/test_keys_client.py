from __future__ import annotations

import httpx
import pytest

from charon_key.common.cancel import CancellationToken
from charon_key.errors import ClientError, KeyParseError, NotFoundError, ServerError, TransientError
from charon_key.infra.http import keys_client as keys_client_module
from charon_key.infra.http.keys_client import KeyListingClient, parse_keys

RSA = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAAB alice@example.com"
ED = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAI alice@laptop"


def make_client(handler, retries: int = 3, backoff: float = 0.0, user_agent: str = "charon-key") -> KeyListingClient:
    return KeyListingClient(
        baseUrl="https://keys.local/",
        timeoutSeconds=1,
        retries=retries,
        retryBackoffSeconds=backoff,
        userAgent=user_agent,
        transport=httpx.MockTransport(handler),
    )


def test_two_server_errors_then_success_makes_three_attempts():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, text=f"{RSA}\n{ED}\n")

    client = make_client(handler)

    assert client.fetch("alice") == [RSA, ED]
    assert calls == ["/alice.keys"] * 3
    assert client.getRetryAttempts() == 2


def test_not_found_is_terminal_after_one_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, text="Not Found")

    client = make_client(handler)

    with pytest.raises(NotFoundError) as excinfo:
        client.fetch("ghost")
    assert len(calls) == 1
    assert excinfo.value.retryable is False
    assert excinfo.value.status_code == 404
    assert excinfo.value.identity == "ghost"
    assert client.getRetryAttempts() == 0


@pytest.mark.parametrize("status", [400, 401, 403, 429])
def test_other_client_statuses_are_terminal(status):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, text="nope")

    with pytest.raises(ClientError) as excinfo:
        make_client(handler).fetch("alice")
    assert len(calls) == 1
    assert excinfo.value.status_code == status
    assert excinfo.value.body_snippet == "nope"


def test_server_errors_exhaust_retries():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, text="boom")

    client = make_client(handler, retries=3)

    with pytest.raises(ServerError) as excinfo:
        client.fetch("alice")
    assert len(calls) == 4
    assert excinfo.value.retryable is True
    assert client.getRetryAttempts() == 3


def test_transport_error_is_transient_and_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        make_client(handler, retries=2).fetch("alice")
    assert len(calls) == 3


def test_zero_retries_means_single_attempt():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    with pytest.raises(ServerError):
        make_client(handler, retries=0).fetch("alice")
    assert len(calls) == 1


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        make_client(lambda request: httpx.Response(200), retries=-1)


def test_backoff_grows_linearly(monkeypatch):
    delays = []
    monkeypatch.setattr(keys_client_module.time, "sleep", delays.append)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(ServerError):
        make_client(handler, retries=3, backoff=0.5).fetch("alice")
    assert delays == [0.5, 1.0, 1.5]


def test_cancellation_stops_retries():
    token = CancellationToken()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        token.cancel()
        return httpx.Response(503)

    with pytest.raises(ServerError):
        make_client(handler, retries=5, backoff=10).fetch("alice", cancel=token)
    assert len(calls) == 1


def test_cancelled_token_makes_no_request():
    token = CancellationToken()
    token.cancel()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, text=RSA)

    with pytest.raises(TransientError):
        make_client(handler).fetch("alice", cancel=token)
    assert calls == []


def test_empty_identity_rejected():
    with pytest.raises(ValueError):
        make_client(lambda request: httpx.Response(200)).fetch("")


def test_request_carries_user_agent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(200, text=RSA)

    make_client(handler, user_agent="charon-key/9.9").fetch("alice")
    assert seen["ua"] == "charon-key/9.9"


def test_keys_url_quotes_identity():
    client = make_client(lambda request: httpx.Response(200))

    assert client.keysUrl("alice") == "https://keys.local/alice.keys"
    assert client.keysUrl("a/b") == "https://keys.local/a%2Fb.keys"


def test_parse_drops_noise_and_keeps_keys():
    body = f"\n   {RSA}   \n# comment\n<html>\n{ED}\n\n"

    assert parse_keys(body, identity="alice") == [RSA, ED]


def test_parse_only_noise_is_parse_error():
    with pytest.raises(KeyParseError) as excinfo:
        parse_keys("<html>oops</html>\nssh-rsa-cert-v01@openssh.com AAAA\n", identity="alice")
    assert excinfo.value.retryable is False
    assert excinfo.value.identity == "alice"


def test_parse_empty_body_is_empty_list():
    assert parse_keys("") == []
    assert parse_keys("\n\n  \n") == []


def test_fetch_of_user_without_keys_returns_empty_list():
    assert make_client(lambda request: httpx.Response(200, text="")).fetch("alice") == []


class DripStream(httpx.SyncByteStream):
    """Тело, отдаваемое по кусочку; on_chunk вызывается после каждого куска."""

    def __init__(self, chunks, on_chunk=None):
        self.chunks = chunks
        self.on_chunk = on_chunk

    def __iter__(self):
        for index, chunk in enumerate(self.chunks):
            yield chunk
            if self.on_chunk is not None:
                self.on_chunk(index)


def test_streamed_body_is_assembled():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=DripStream([b"ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAAB ", b"alice@example.com\n"]))

    assert make_client(handler).fetch("alice") == [RSA]


def test_cancellation_interrupts_slow_body():
    token = CancellationToken()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        chunks = [b"ssh-rsa ", b"AAAAB3Nz", b"aC1yc2E", b"\n"]
        return httpx.Response(200, stream=DripStream(chunks, on_chunk=lambda index: token.cancel()))

    with pytest.raises(TransientError) as excinfo:
        make_client(handler, retries=3).fetch("alice", cancel=token)
    assert "deadline" in str(excinfo.value)
    assert len(calls) == 1
