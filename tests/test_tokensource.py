import json
import threading
import time
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from statehouse.tokensource import EXPIRY_BUFFER, TokenError, TokenSource

CLIENT_SECRET = "secret"


def _ok(path, form):
    return 200, json.dumps(
        {"access_token": "token", "expires_in": 900, "token_type": "Bearer"}
    ).encode()


@pytest.fixture
def serve():
    servers = []

    def start(respond):
        calls = []

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self):
                length = int(self.headers.get("Content-Length", 0))
                form = urllib.parse.parse_qs(self.rfile.read(length).decode())
                calls.append((self.path, form))
                status, body = respond(self.path, form)
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}", calls

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def _source(base_url, clock=time.time):
    return TokenSource(base_url, "statehouse", CLIENT_SECRET, clock=clock)


def test_fetches_token(serve):
    def respond(path, form):
        if path != "/oauth/token":
            return 404, b"not found"
        if (
            form.get("grant_type") != ["client_credentials"]
            or form.get("client_id") != ["statehouse"]
            or form.get("client_secret") != [CLIENT_SECRET]
        ):
            return 401, b"unauthorized"
        return _ok(path, form)

    url, _ = serve(respond)
    assert _source(url).token() == "token"


def test_caches_token(serve):
    url, calls = serve(_ok)
    source = _source(url)
    for _ in range(5):
        assert source.token() == "token"
    assert len(calls) == 1


def test_refreshes_near_expiry(serve):
    url, calls = serve(_ok)
    now = [1000.0]
    source = _source(url, clock=lambda: now[0])
    assert source.token() == "token"
    now[0] += 900 - EXPIRY_BUFFER + 1
    assert source.token() == "token"
    assert len(calls) == 2


def test_uses_cache_well_before_expiry(serve):
    url, calls = serve(_ok)
    now = [1000.0]
    source = _source(url, clock=lambda: now[0])
    assert source.token() == "token"
    now[0] += 600
    assert source.token() == "token"
    assert len(calls) == 1


def test_error_propagated(serve):
    def respond(path, form):
        body = {"error": "invalid_client", "error_description": "bad credentials"}
        return 401, json.dumps(body).encode()

    url, _ = serve(respond)
    with pytest.raises(TokenError, match="invalid_client: bad credentials"):
        _source(url).token()


def test_concurrent_calls_succeed(serve):
    def respond(path, form):
        time.sleep(0.01)
        return _ok(path, form)

    url, _ = serve(respond)
    source = _source(url)
    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(lambda _: source.token(), range(20)))
    assert results == ["token"] * 20


def test_network_error():
    source = TokenSource("http://127.0.0.1:1", "statehouse", CLIENT_SECRET)
    with pytest.raises(TokenError, match="identity: token request"):
        source.token()


def test_non_json_error_body(serve):
    url, _ = serve(lambda path, form: (503, b"service unavailable"))
    with pytest.raises(TokenError, match="unexpected status 503"):
        _source(url).token()


def test_empty_access_token(serve):
    body = json.dumps({"access_token": "", "expires_in": 900}).encode()
    url, _ = serve(lambda path, form: (200, body))
    with pytest.raises(TokenError, match="empty access_token"):
        _source(url).token()


def test_zero_expires_in_is_error(serve):
    body = json.dumps({"access_token": "token", "expires_in": 0}).encode()
    url, _ = serve(lambda path, form: (200, body))
    with pytest.raises(TokenError, match="invalid expires_in"):
        _source(url).token()


def test_undecodable_success_body(serve):
    url, _ = serve(lambda path, form: (200, b"not json"))
    with pytest.raises(TokenError, match="decode response"):
        _source(url).token()


def test_invalidate_forces_refetch(serve):
    url, calls = serve(_ok)
    source = _source(url)
    assert source.token() == "token"
    source.invalidate()
    assert source.token() == "token"
    assert len(calls) == 2