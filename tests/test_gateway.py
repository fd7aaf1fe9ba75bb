import json

import httpx
import pytest

from draftworx_api import DEFAULT_API_HOST, DraftworxClient, DraftworxConfig
from draftworx_models import ApiError

CONFIG = DraftworxConfig(host="api.example.test", bearer_token="secret-token", practice_id="practice-42")


def _client(handler, config: DraftworxConfig = CONFIG) -> DraftworxClient:
    return DraftworxClient(config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_sends_auth_and_practice_headers():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": "c-1"}])

    data = await _client(handler).request("GET", "/Clients")

    assert data == [{"id": "c-1"}]
    request = seen[0]
    assert str(request.url) == "https://api.example.test/Clients"
    assert request.method == "GET"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["PracticeId"] == "practice-42"
    assert request.headers["Content-Type"] == "application/json;charset=UTF-8"
    assert request.headers["Accept"] == "application/json, text/plain, */*"
    assert "autosave" not in request.headers
    assert request.content == b""


@pytest.mark.asyncio
async def test_post_sends_json_body_and_disables_autosave():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": "new"}])

    body = [{"name": "Acme", "taxYear": 2025}]
    data = await _client(handler).request("post", "/Clients", body)

    assert data == [{"id": "new"}]
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["autosave"] == "false"
    assert json.loads(request.content) == body


@pytest.mark.asyncio
async def test_query_string_is_preserved():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json=[])

    await _client(handler).request("GET", "/frameworks?$filter=active%20eq%20true")
    assert seen[0].url.path == "/frameworks"
    assert "active" in str(seen[0].url)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 404, 500, 503])
async def test_non_success_status_raises_api_error(status: int):
    def handler(request: httpx.Request):
        return httpx.Response(status, text="upstream said no")

    with pytest.raises(ApiError) as exc_info:
        await _client(handler).request("GET", "/Clients")

    assert exc_info.value.status_code == status
    assert exc_info.value.body == "upstream said no"
    assert str(exc_info.value) == f"API Error {status}: upstream said no"


def test_config_status_hides_secrets():
    status = CONFIG.status()
    assert status == {
        "configured": True,
        "host": "api.example.test",
        "hasBearerToken": True,
        "hasPracticeId": True,
    }
    assert "secret-token" not in json.dumps(status)


@pytest.mark.parametrize("token, practice, configured", [
    ("", "", False),
    ("t", "", False),
    ("", "p", False),
    ("t", "p", True),
])
def test_is_configured_requires_token_and_practice(token, practice, configured):
    assert DraftworxConfig(bearer_token=token, practice_id=practice).is_configured() is configured


def test_config_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DRAFTWORX_API_HOST", "api.cloud.draftworx.com")
    monkeypatch.setenv("DRAFTWORX_BEARER_TOKEN", "abc")
    monkeypatch.setenv("DRAFTWORX_PRACTICE_ID", "p-1")
    monkeypatch.setenv("DRAFTWORX_TIMEOUT", "12.5")

    config = DraftworxConfig.from_env()
    assert config.host == "api.cloud.draftworx.com"
    assert config.bearer_token == "abc"
    assert config.practice_id == "p-1"
    assert config.timeout == 12.5


def test_config_from_env_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in ["DRAFTWORX_API_HOST", "DRAFTWORX_BEARER_TOKEN", "DRAFTWORX_PRACTICE_ID", "DRAFTWORX_TIMEOUT"]:
        monkeypatch.delenv(name, raising=False)

    config = DraftworxConfig.from_env()
    assert config.host == DEFAULT_API_HOST
    assert not config.is_configured()


def test_config_is_immutable():
    with pytest.raises(Exception):
        CONFIG.host = "elsewhere"
