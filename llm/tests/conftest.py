"""Shared fixtures for LLM library tests."""

from unittest.mock import MagicMock, AsyncMock

import pytest


@pytest.fixture
def mock_http_session():
    """Create a mock aiohttp ClientSession."""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    return session


@pytest.fixture
def make_http_response():
    """Build a mock ``session.post`` context manager returning status and JSON."""
    def _make(status: int, payload: dict):
        mock_response = MagicMock()
        mock_response.status = status
        mock_response.json = AsyncMock(return_value=payload)

        mock_context = AsyncMock()
        mock_context.__aenter__ = AsyncMock(return_value=mock_response)
        mock_context.__aexit__ = AsyncMock(return_value=None)
        return mock_context
    return _make


@pytest.fixture
def mock_anthropic_client():
    """Create a mock Anthropic client."""
    client = MagicMock()
    response = MagicMock()
    response.content = [MagicMock(text="Claude response")]
    client.messages.create = MagicMock(return_value=response)
    return client
