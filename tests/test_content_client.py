"""Tests for the Content API client."""

import httpx
import pytest

from config import Config
from content_client import ContentClient, encode_component
from models import FileListing, Subject
from typing import List


def client_for(config, handler) -> ContentClient:
    return ContentClient(config, transport=httpx.MockTransport(handler))


class TestEncodeComponent:
    def test_reserved_characters_are_escaped(self):
        assert encode_component("a b/c&d=e?") == "a%20b%2Fc%26d%3De%3F"

    def test_unreserved_marks_are_kept(self):
        assert encode_component("sw-dev_1.0!~*'()") == "sw-dev_1.0!~*'()"

    def test_non_ascii_is_utf8_encoded(self):
        assert encode_component("정규화") == "%EC%A0%95%EA%B7%9C%ED%99%94"


class TestFetch:
    @pytest.mark.asyncio
    async def test_sends_api_key_and_parses_envelope(self, content_client, content_api):
        result = await content_client.fetch("/api/content/subjects", List[Subject])

        assert result.success
        assert result.data[0] == Subject(slug="db", name="데이터베이스", file_count=2)
        request = content_api.requests[0]
        assert request.headers["x-mcp-api-key"] == "test-api-key"
        assert str(request.url) == "https://content.test/api/content/subjects"

    @pytest.mark.asyncio
    async def test_bare_payload_is_taken_as_data(self, config):
        client = client_for(config, lambda request: httpx.Response(200, json={"files": []}))

        result = await client.fetch("/api/content/exam-registration", FileListing)

        assert result.success
        assert result.data.files == []

    @pytest.mark.asyncio
    async def test_envelope_failure_is_passed_through(self, config):
        client = client_for(
            config, lambda request: httpx.Response(200, json={"success": False, "error": "Subject not found"})
        )

        result = await client.fetch("/api/content/theory?subject=x")

        assert not result.success
        assert result.error == "Subject not found"

    @pytest.mark.asyncio
    async def test_non_2xx_status(self, content_client, content_api):
        content_api.fail_status = 503

        result = await content_client.fetch("/api/content/subjects")

        assert result.error == "HTTP error! status: 503"

    @pytest.mark.asyncio
    async def test_invalid_json(self, config):
        client = client_for(config, lambda request: httpx.Response(200, text="<html>oops</html>"))

        result = await client.fetch("/api/content/subjects")

        assert not result.success
        assert result.error.startswith("Invalid JSON response")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, config):
        client = client_for(
            config, lambda request: httpx.Response(200, json={"success": True, "data": [{"slug": "db"}]})
        )

        result = await client.fetch("/api/content/subjects", List[Subject])

        assert result.error == "Unexpected response format from content API"

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await client_for(config, handler).fetch("/api/content/subjects")

        assert result.error == "Request timeout - content API is not responding"

    @pytest.mark.asyncio
    async def test_network_error(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await client_for(config, handler).fetch("/api/content/subjects")

        assert not result.success
        assert result.error == "connection refused"

    @pytest.mark.asyncio
    async def test_missing_api_key_still_sends_request(self, env, content_api):
        """Without a key the request goes out bare and the upstream rejection is reported."""
        env.pop("MCP_API_KEY")
        client = client_for(Config(env), content_api.handler)

        result = await client.fetch("/api/content/subjects")

        assert len(content_api.requests) == 1
        assert "x-mcp-api-key" not in content_api.requests[0].headers
        assert result.error == "HTTP error! status: 401"
