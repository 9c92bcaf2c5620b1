import pytest
from fastapi.testclient import TestClient

from woolet_ai.config.settings import clear_settings_cache
from woolet_ai.data.memory import InMemoryFinanceStore
from woolet_ai.main import create_app
from woolet_ai.metrics import reset_metrics
from woolet_ai.providers.registry import ProviderClients


@pytest.fixture(autouse=True)
def _fresh_metrics() -> None:
    reset_metrics()


@pytest.fixture
def store() -> InMemoryFinanceStore:
    return InMemoryFinanceStore()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, store: InMemoryFinanceStore) -> TestClient:
    monkeypatch.setenv("WOOLET_API_KEYS", "test-key")
    monkeypatch.setenv("WOOLET_ADMIN_USER_IDS", "admin-1")
    monkeypatch.setenv("WOOLET_CACHE_BACKEND", "memory")
    monkeypatch.delenv("WOOLET_ERROR_WEBHOOK_URL", raising=False)
    clear_settings_cache()
    app = create_app(store=store, clients=ProviderClients())
    return TestClient(app)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {
        "Authorization": "Bearer test-key",
        "x-woolet-user-id": "user-1",
        "x-woolet-user-tier": "pro",
    }


@pytest.fixture
def admin_headers(auth_headers: dict[str, str]) -> dict[str, str]:
    return {**auth_headers, "x-woolet-user-id": "admin-1"}
