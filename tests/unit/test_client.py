"""Unit tests for the httpx-backed transport."""

import json

import httpx
import pytest

from loadforge.client import HttpTransport, Response, Transport
from loadforge.core.config import TargetSettings
from loadforge.utils.errors import CallTimeout, StepFailure


def transport_with(handler, **settings_overrides):
    settings = TargetSettings(_env_file=None, base_url="http://api.test", **settings_overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=settings.base_url)
    return HttpTransport(settings, client=client), client


@pytest.mark.unit
class TestResponse:

    def test_json(self):
        assert Response(status_code=200, body='{"data": {"id": 1}}').json() == {"data": {"id": 1}}

    def test_empty_body_is_none(self):
        assert Response(status_code=204).json() is None

    def test_malformed_body_is_step_failure(self):
        with pytest.raises(StepFailure, match="malformed JSON"):
            Response(status_code=200, body="{not json").json()


@pytest.mark.unit
class TestHttpTransport:

    def test_satisfies_transport_protocol(self):
        transport, _ = transport_with(lambda request: httpx.Response(200))
        assert isinstance(transport, Transport)

    @pytest.mark.asyncio
    async def test_call_sends_json_and_headers(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"userId": 1}})

        transport, client = transport_with(handler)
        async with client:
            response = await transport.call(
                "post", "/users", body={"email": "a@test.com"}, headers={"Authorization": "Bearer t"}
            )

        assert seen == {
            "method": "POST",
            "url": "http://api.test/users",
            "auth": "Bearer t",
            "body": {"email": "a@test.com"},
        }
        assert response.status_code == 200
        assert response.json() == {"data": {"userId": 1}}
        assert response.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self):
        transport, client = transport_with(lambda request: httpx.Response(503, text="busy"))
        async with client:
            response = await transport.call("GET", "/")
        assert response.status_code == 503
        assert response.body == "busy"

    @pytest.mark.asyncio
    async def test_timeout_becomes_call_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        transport, client = transport_with(handler)
        async with client:
            with pytest.raises(CallTimeout) as exc_info:
                await transport.call("GET", "/day-plan/schedule", timeout_ms=50)
        assert str(exc_info.value) == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_becomes_step_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport, client = transport_with(handler)
        async with client:
            with pytest.raises(StepFailure, match="GET /: ConnectError"):
                await transport.call("GET", "/")

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        transport, client = transport_with(lambda request: httpx.Response(200))
        await transport.aclose()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        settings = TargetSettings(_env_file=None, base_url="http://api.test")
        async with HttpTransport(settings) as transport:
            assert str(transport.client.base_url).startswith("http://api.test")
        assert transport.client.is_closed
