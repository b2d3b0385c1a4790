import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture
def app_config():
    from src.chatrelay.config import AppConfig, GenerationConfig, JwtConfig, RateLimitConfig

    return AppConfig(
        jwt=JwtConfig(secret="test-secret"),
        generation=GenerationConfig(api_key="test-key", stream_timeout=2.0, decide_timeout=1.0),
        rate_limit=RateLimitConfig(disabled=True),
    )


@pytest.fixture
def backend():
    from tests.fakes import FakeBackend

    return FakeBackend()


@pytest.fixture
def searcher():
    from tests.fakes import FakeSearch

    return FakeSearch()


@pytest.fixture
def services(app_config, backend, searcher):
    from src.chatrelay.api.deps import build_services

    return build_services(app_config, backend=backend, searcher=searcher)


@pytest.fixture
def client(services):
    """TestClient over an in-memory app with fake generation and search."""
    from fastapi.testclient import TestClient

    from src.chatrelay.api.main import create_app

    with TestClient(create_app(services=services)) as c:
        yield c
