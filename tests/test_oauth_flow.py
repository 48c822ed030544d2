import json
from datetime import datetime, timedelta, timezone

import pytest
from google.auth.transport.requests import AuthorizedSession

import oauth_flow
import token_exchange
from auth_code import CallbackCodeSource, PromptCodeSource
from auth_config import AuthConfig, FlowOptions
from oauth_flow import AUTHORIZED, NEED_AUTH, Authorizer, code_source_for
from token_cache import CacheWriteError, Token, TokenCache
from token_exchange import ExchangeError


CONFIG = AuthConfig(
    client_id="cid",
    client_secret="secret",
    auth_uri="https://accounts.example.com/auth",
    token_uri="https://accounts.example.com/token",
    redirect_uris=("http://localhost:8765",),
    scopes=("https://www.googleapis.com/auth/youtube.upload",),
)

FRESH = Token(
    access_token="fresh",
    refresh_token="refresh",
    expiry=datetime(2031, 1, 1, tzinfo=timezone.utc),
    scopes=["https://www.googleapis.com/auth/youtube.upload"],
)


class FakeSource:
    redirect_uri = "urn:ietf:wg:oauth:2.0:oob"

    def __init__(self, code="abc123"):
        self.code = code
        self.calls = 0

    def acquire(self, config):
        self.calls += 1
        return self.code


class FakeExchanger:
    def __init__(self, token=FRESH, exc=None):
        self.token = token
        self.exc = exc
        self.calls = []

    def __call__(self, code, config, redirect_uri):
        self.calls.append((code, redirect_uri))
        if self.exc:
            raise self.exc
        return self.token


class RecordingCache(TokenCache):
    def __init__(self, path, fail=False):
        super().__init__(path)
        self.saved = []
        self.fail = fail

    def save(self, token):
        self.saved.append(token)
        if self.fail:
            raise CacheWriteError("read-only filesystem")
        super().save(token)


def _authorizer(tmp_path, cache=None, **kwargs):
    cache = cache or RecordingCache(tmp_path / ".credentials" / "app.json")
    source = kwargs.pop("source", FakeSource())
    exchanger = kwargs.pop("exchanger", FakeExchanger())
    auth = Authorizer(CONFIG, FlowOptions(), cache=cache, code_source=source, exchanger=exchanger)
    return auth, cache, source, exchanger


def test_cache_hit_skips_acquire_and_exchange(tmp_path):
    auth, cache, source, exchanger = _authorizer(tmp_path)
    TokenCache(cache.path).save(FRESH)

    session = auth.authorize()

    assert auth.state == AUTHORIZED
    assert source.calls == 0
    assert exchanger.calls == []
    assert cache.saved == []
    assert isinstance(session, AuthorizedSession)
    assert session.credentials.token == "fresh"


def test_cache_miss_runs_each_step_once(tmp_path):
    auth, cache, source, exchanger = _authorizer(tmp_path)
    assert auth.state == NEED_AUTH

    session = auth.authorize()

    assert source.calls == 1
    assert exchanger.calls == [("abc123", "urn:ietf:wg:oauth:2.0:oob")]
    assert cache.saved == [FRESH]
    assert auth.state == AUTHORIZED
    assert session.credentials.token == "fresh"
    assert TokenCache(cache.path).load() == FRESH


def test_corrupt_cache_behaves_like_miss(tmp_path):
    auth, cache, source, exchanger = _authorizer(tmp_path)
    cache.path.parent.mkdir(parents=True)
    cache.path.write_text("{definitely not json", encoding="utf-8")

    auth.authorize()

    assert source.calls == 1
    assert len(exchanger.calls) == 1
    assert cache.saved == [FRESH]
    assert TokenCache(cache.path).load() == FRESH


def test_cache_write_failure_still_returns_session(tmp_path, caplog):
    cache = RecordingCache(tmp_path / "app.json", fail=True)
    auth, cache, source, exchanger = _authorizer(tmp_path, cache=cache)

    session = auth.authorize()

    assert len(cache.saved) == 1
    assert auth.state == AUTHORIZED
    assert session.credentials.token == "fresh"
    assert session.credentials.refresh_token == "refresh"
    assert "in-memory token" in caplog.text


def test_cache_write_failure_on_real_filesystem(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    auth = Authorizer(CONFIG, cache=TokenCache(blocker / "app.json"),
                      code_source=FakeSource(), exchanger=FakeExchanger())

    session = auth.authorize()

    assert session.credentials.token == "fresh"


def test_exchange_error_propagates(tmp_path):
    auth, cache, source, exchanger = _authorizer(tmp_path, exchanger=FakeExchanger(exc=ExchangeError("invalid_grant")))

    with pytest.raises(ExchangeError):
        auth.authorize()

    assert auth.state == NEED_AUTH
    assert cache.saved == []


def test_prompt_scenario_writes_cache_from_token_endpoint(tmp_path, monkeypatch):
    posted = []

    class Resp:
        status_code = 200
        ok = True

        def json(self):
            return {"access_token": "ya29.abc", "refresh_token": "1//xyz",
                    "token_type": "Bearer", "expires_in": 3600}

    def fake_post(url, data=None, **kwargs):
        posted.append(data)
        return Resp()

    monkeypatch.setattr(token_exchange.requests, "post", fake_post)
    source = PromptCodeSource(input_fn=lambda: "abc123", output=lambda *a, **k: None)
    cache = TokenCache(tmp_path / ".credentials" / "app.json")

    Authorizer(CONFIG, cache=cache, code_source=source).authorize()

    assert [d["code"] for d in posted] == ["abc123"]
    assert posted[0]["redirect_uri"] == "urn:ietf:wg:oauth:2.0:oob"
    data = json.loads(cache.path.read_text(encoding="utf-8"))
    assert data["access_token"] == "ya29.abc"
    assert data["refresh_token"] == "1//xyz"
    assert data["token_type"] == "Bearer"
    assert data["expiry"]


def test_cached_record_means_no_network(tmp_path, monkeypatch):
    def no_network(*args, **kwargs):
        raise AssertionError("token endpoint must not be called")

    monkeypatch.setattr(token_exchange.requests, "post", no_network)
    future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    path = tmp_path / ".credentials" / "app.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"access_token": "X", "refresh_token": "Y",
                                "token_type": "Bearer", "expiry": future}), encoding="utf-8")

    auth = Authorizer(CONFIG, cache=TokenCache(path),
                      code_source=PromptCodeSource(input_fn=no_network))
    session = auth.authorize()

    assert session.credentials.token == "X"
    assert session.credentials.refresh_token == "Y"
    assert auth.token.access_token == "X"


def test_expired_cached_token_is_used_as_is(tmp_path):
    auth, cache, source, exchanger = _authorizer(tmp_path)
    stale = Token(access_token="stale", expiry=datetime(2001, 1, 1, tzinfo=timezone.utc))
    TokenCache(cache.path).save(stale)

    session = auth.authorize()

    assert source.calls == 0
    assert session.credentials.token == "stale"
    assert session.credentials.expired


def test_default_cache_path_follows_options(tmp_path):
    options = FlowOptions(app_name="youtube-go", cache_dir=tmp_path)
    assert Authorizer(CONFIG, options).cache.path == tmp_path / "youtube-go.json"


def test_code_source_for_strategy():
    assert isinstance(code_source_for(FlowOptions(strategy="prompt"), CONFIG), PromptCodeSource)

    source = code_source_for(FlowOptions(strategy="local"), CONFIG)
    assert isinstance(source, CallbackCodeSource)
    assert source.redirect_uri == "http://localhost:8765"

    source = code_source_for(FlowOptions(strategy="local", callback_port=9001), CONFIG)
    assert source.redirect_uri == "http://localhost:9001"


def test_callback_port_defaults_when_no_loopback_redirect():
    config = AuthConfig(**{**CONFIG.__dict__, "redirect_uris": ("http://localhost",)})
    assert oauth_flow._callback_port(FlowOptions(), config) == 8090


@pytest.mark.parametrize("content", [b"\xff\xfe\x00garbage", b'{"access_token": "X", "scopes": 5}'])
def test_unreadable_cache_record_behaves_like_miss(tmp_path, content):
    auth, cache, source, exchanger = _authorizer(tmp_path)
    cache.path.parent.mkdir(parents=True)
    cache.path.write_bytes(content)

    session = auth.authorize()

    assert source.calls == 1
    assert len(exchanger.calls) == 1
    assert session.credentials.token == "fresh"
    assert TokenCache(cache.path).load() == FRESH


def test_status_line_names_the_injected_source(tmp_path, capsys):
    class StubCallbackSource(CallbackCodeSource):
        def acquire(self, config):
            return "web-code"

    source = StubCallbackSource(port=0)
    auth, cache, source, exchanger = _authorizer(tmp_path, source=source)

    auth.authorize()

    assert "Trying to get token from web" in capsys.readouterr().out
    assert exchanger.calls[0][0] == "web-code"
