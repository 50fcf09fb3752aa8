"""Runs the end-to-end server tester in process against the ASGI app."""

import httpx
import pytest

from test_server import MCPServerTester


@pytest.mark.asyncio
async def test_server_tester_passes_against_app(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        tester = MCPServerTester(
            "http://testserver",
            client=client,
            username="admin",
            password="secret-pw",
        )
        assert await tester.run_all_tests() is True
        assert tester.access_token is not None
