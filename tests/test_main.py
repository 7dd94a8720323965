"""
Tests for MCP server assembly.
"""
import re
from pathlib import Path

import pytest

from bitnovo_pay.main import create_mcp_server
from bitnovo_pay.runtime import Runtime

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


class TestCreateMcpServer:

    @pytest.mark.asyncio
    async def test_webhook_tools_when_enabled(self, settings):
        mcp = create_mcp_server(settings, Runtime(settings))
        names = {tool.name for tool in await mcp.list_tools()}
        assert "get_webhook_events" in names

    @pytest.mark.asyncio
    async def test_no_webhook_tools_when_disabled(self, settings):
        settings = settings.model_copy(update={"webhook_enabled": False})
        mcp = create_mcp_server(settings, Runtime(settings))
        assert await mcp.list_tools() == []


class TestDependencies:

    def test_mcp_pinned_to_fastmcp_major(self):
        # mcp.server.fastmcp is the 1.x API
        requirement = re.search(r'"mcp([^"]*)"', PYPROJECT.read_text())
        assert requirement is not None
        assert "<2" in requirement.group(1)
