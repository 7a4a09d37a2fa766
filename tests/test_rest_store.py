import asyncio
import json

import httpx
import pytest

from chartpad.renderers.diagram_renderer import DiagramRenderer
from chartpad.services.editor_service import EditorScreen
from chartpad.services.identity import AuthSession
from chartpad.services.session_provider import SessionProvider
from chartpad.store.base import StoreError
from chartpad.store.rest_client import RestStoreClient

from tests.fakes import fake_render


def _client(handler, token="session-token"):
    async def access_token():
        return token

    return RestStoreClient(
        "https://project.supabase.co/",
        "anon-key",
        access_token,
        transport=httpx.MockTransport(handler),
    )


def test_list_charts_requests_content_newest_first():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=[{"content": "graph TD\nA-->B"}, {"content": "graph LR\nB-->C"}])

    async def scenario():
        client = _client(handler)
        try:
            return await client.list_charts()
        finally:
            await client.aclose()

    records = asyncio.run(scenario())
    assert [record.content for record in records] == ["graph TD\nA-->B", "graph LR\nB-->C"]
    request = requests[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/charts"
    assert request.url.params["select"] == "content"
    assert request.url.params["order"] == "created_at.desc"
    assert "user_id" not in request.url.params
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer session-token"


def test_list_charts_filters_by_owner():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=[])

    async def scenario():
        client = _client(handler)
        try:
            return await client.list_charts(user_id="user_1")
        finally:
            await client.aclose()

    assert asyncio.run(scenario()) == []
    assert requests[0].url.params["user_id"] == "eq.user_1"


def test_insert_chart_posts_row_and_returns_representation():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            201,
            json=[{"id": 7, "content": "graph TD", "user_id": "user_1", "created_at": "2024-05-01T10:00:00Z"}],
        )

    async def scenario():
        client = _client(handler)
        try:
            return await client.insert_chart("graph TD", "user_1")
        finally:
            await client.aclose()

    record = asyncio.run(scenario())
    request = requests[0]
    assert request.method == "POST"
    assert json.loads(request.content) == [{"content": "graph TD", "user_id": "user_1"}]
    assert request.headers["Prefer"] == "return=representation"
    assert record.id == "7"
    assert record.user_id == "user_1"
    assert record.created_at.year == 2024


def test_missing_token_falls_back_to_public_key():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=[])

    async def scenario():
        client = _client(handler, token=None)
        try:
            await client.list_charts()
        finally:
            await client.aclose()

    asyncio.run(scenario())
    assert requests[0].headers["Authorization"] == "Bearer anon-key"


def test_error_status_raises_store_error():
    def handler(request):
        return httpx.Response(401, json={"message": "JWT expired"})

    async def scenario():
        client = _client(handler)
        try:
            await client.insert_chart("graph TD", "user_1")
        finally:
            await client.aclose()

    with pytest.raises(StoreError) as excinfo:
        asyncio.run(scenario())
    assert "401" in str(excinfo.value)
    assert "JWT expired" in str(excinfo.value)


def test_transport_failure_raises_store_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        client = _client(handler)
        try:
            await client.list_charts()
        finally:
            await client.aclose()

    with pytest.raises(StoreError):
        asyncio.run(scenario())


def test_base_url_is_required():
    async def access_token():
        return None

    with pytest.raises(ValueError):
        RestStoreClient("", "anon-key", access_token)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json={"content": "graph TD"}),
        httpx.Response(200, json=["graph TD"]),
    ],
)
def test_select_with_undecodable_body_raises_store_error(response):
    async def scenario():
        client = _client(lambda request: response)
        try:
            await client.list_charts()
        finally:
            await client.aclose()

    with pytest.raises(StoreError):
        asyncio.run(scenario())


def test_insert_with_non_json_body_raises_store_error():
    async def scenario():
        client = _client(lambda request: httpx.Response(201, text="<html>ok</html>"))
        try:
            await client.insert_chart("graph TD", "user_1")
        finally:
            await client.aclose()

    with pytest.raises(StoreError) as excinfo:
        asyncio.run(scenario())
    assert "non-JSON" in str(excinfo.value)


def test_insert_with_empty_body_returns_submitted_row():
    async def scenario():
        client = _client(lambda request: httpx.Response(201))
        try:
            return await client.insert_chart("graph TD", "user_1")
        finally:
            await client.aclose()

    record = asyncio.run(scenario())
    assert record.content == "graph TD"
    assert record.user_id == "user_1"


def test_editor_survives_gateway_pages_from_the_store():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(201, text="<html>ok</html>")

    async def scenario():
        provider = SessionProvider(lambda access_token: _client(handler))
        screen = EditorScreen(provider, DiagramRenderer(fake_render))
        await screen.start()
        state = await provider.observe(AuthSession("user_1", "token"))
        screen.set_draft("graph TD\nA-->B")
        saved = await screen.save()
        await screen.close()
        return state, saved, screen.saved

    state, saved, charts = asyncio.run(scenario())
    assert state.ready is True
    assert saved is False
    assert charts == []
