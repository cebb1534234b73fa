import os

os.environ["DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS"] = "1"
os.environ.pop("LOCAL_RATE_LIMIT_FALLBACK", None)

import pytest
from typing import Any, Dict, Generator
from fastapi.testclient import TestClient

from storefront.app_setup.factory import create_app
from storefront.config import GatewayConfig
from storefront.payments.paytabs_client import PayTabsClient
from storefront.payments.reconciliation import ReconciliationEngine, get_engine
from storefront.payments.views import get_paytabs_client
from storefront.utils.guards import InFlightGuard
from storefront.utils.security import get_current_user, optional_user
from tests.fakes import SERVER_KEY, FakePayTabs, FakeSupabase


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

# Base Supabase en mémoire pour tous les tests (aucun accès réseau)
@pytest.fixture(autouse=True)
def db(monkeypatch) -> FakeSupabase:
    fake = FakeSupabase()
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: fake)
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: fake)
    monkeypatch.setattr("storefront.infra.supabase_client.get_user_supabase", lambda token: fake)
    return fake

# Verrous « en cours » propres à chaque test
@pytest.fixture(autouse=True)
def guard(monkeypatch) -> InFlightGuard:
    g = InFlightGuard()
    monkeypatch.setattr("storefront.utils.guards._guard", g)
    return g

@pytest.fixture()
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        base_url="https://paytabs.test",
        server_key=SERVER_KEY,
        profile_id="12345",
        callback_url="https://shop.test/api/v1/payments/webhook",
        return_url="https://shop.test/api/v1/payments/return",
    )

@pytest.fixture()
def paytabs() -> FakePayTabs:
    return FakePayTabs()

@pytest.fixture()
def paytabs_client(gateway_config, paytabs) -> PayTabsClient:
    return PayTabsClient(gateway_config, transport=paytabs.transport())

@pytest.fixture()
def engine(paytabs_client) -> ReconciliationEngine:
    return ReconciliationEngine(client=paytabs_client)

@pytest.fixture()
def customer() -> Dict[str, Any]:
    return {"id": "user-1", "email": "client@example.com", "role": "customer", "metadata": {}, "token": "tok-user-1"}

@pytest.fixture()
def admin() -> Dict[str, Any]:
    return {"id": "admin-1", "email": "admin@example.com", "role": "admin", "metadata": {}, "token": "tok-admin-1"}

@pytest.fixture(scope="session")
def app():
    return create_app()

@pytest.fixture()
def client(app, paytabs_client, engine) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_paytabs_client] = lambda: paytabs_client
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture()
def login(app):
    """login(user): authentifie les requêtes suivantes (require_user, require_admin, optional_user)."""
    def _login(user: Dict[str, Any]) -> Dict[str, Any]:
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[optional_user] = lambda: user
        return user
    return _login

@pytest.fixture()
def catalog(db):
    return {
        p["id"]: p
        for p in db.seed(
            "products",
            {"id": "p1", "name": "Croquettes 2kg", "retail_price": 10.0, "wholesale_price": 8.5},
            {"id": "p2", "name": "Litière 5L", "retail_price": 3.333, "wholesale_price": None},
        )
    }

@pytest.fixture()
def addresses(db, customer):
    return db.seed(
        "addresses",
        {"id": "addr-home", "user_id": customer["id"], "full_name": "Salim Al Harthy", "phone": "+96890000000",
         "address_line_1": "Way 1234", "address_line_2": "", "city": "Muscat", "state": "Muscat",
         "postal_code": "112", "country": "OM", "is_default": True},
        {"id": "addr-office", "user_id": customer["id"], "full_name": "Salim Al Harthy", "phone": "+96890000000",
         "address_line_1": "Office Tower", "address_line_2": "Floor 3", "city": "Seeb", "state": "Muscat",
         "postal_code": "121", "country": "OM", "is_default": False},
    )
