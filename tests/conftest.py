"""
Shared test fixtures: async client, settings overrides and a fake model backend.
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from hoa_dispute import main
from hoa_dispute.config import Settings, get_settings


@pytest.fixture
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, github_token="test-token", max_concurrency=8)


@pytest.fixture
def app_with_settings(settings):
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield main.app
    main.app.dependency_overrides.clear()


@pytest.fixture
async def client(app_with_settings) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app_with_settings)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class FakeModel:
    """
    Stands in for call_model. `replies` maps backend -> reply; a reply that is
    an Exception is raised instead of returned.
    """

    def __init__(self, default="[]", replies=None):
        self.default = default
        self.replies = replies or {}
        self.calls = []

    async def __call__(self, model, system, user_content, **kwargs):
        self.calls.append({"model": model, "system": system, "user": user_content, **kwargs})
        reply = self.replies.get(model, self.default)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def fake_model(monkeypatch):
    fake = FakeModel()
    monkeypatch.setattr(main, "call_model", fake)
    return fake


@pytest.fixture
def fake_text(monkeypatch):
    """Replace document text extraction; set `.text` to control the result."""

    class _Extractor:
        text = ""
        calls = []

        async def __call__(self, raw_bytes, filename=None, content_type=None, language_note=None):
            self.calls.append({"filename": filename, "language_note": language_note})
            return self.text

    extractor = _Extractor()
    extractor.calls = []
    monkeypatch.setattr(main, "extract_document_text", extractor)
    return extractor
