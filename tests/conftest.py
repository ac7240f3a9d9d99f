import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.auth_routes import issue_token, pwd_context
from backend.app.main import create_app
from backend.app.shopify import ShopifyClient
from backend.app.users_store import parse_users

JWT_SECRET = "test-secret"
BOB_HASH = pwd_context.hash("builder")


class FakeShopify:
    """Records every GraphQL call and answers from a queue of canned bodies."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[httpx.Response] = []
        self.requests: List[httpx.Request] = []

    def reply(self, data: Optional[Dict[str, Any]] = None, errors: Optional[List[Dict[str, Any]]] = None, status_code: int = 200):
        body: Dict[str, Any] = {}
        if data is not None:
            body["data"] = data
        if errors is not None:
            body["errors"] = errors
        self.responses.append(httpx.Response(status_code, json=body))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.calls.append(json.loads(request.content))
        if not self.responses:
            raise AssertionError(f"unexpected Shopify call: {self.calls[-1]['query'][:60]}")
        return self.responses.pop(0)

    @property
    def mutations(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["query"].lstrip().startswith("mutation")]

    def mutation_names(self) -> List[str]:
        return [c["query"].split("(", 1)[0].replace("mutation", "").strip() for c in self.mutations]


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("TOKEN_EXPIRY", "24h")


@pytest.fixture()
def shopify():
    return FakeShopify()


@pytest.fixture()
def users():
    return parse_users([
        {"id": "alice", "password": "wonderland"},
        {"id": "bob", "password": BOB_HASH},
    ])


@pytest.fixture()
def static_dir(tmp_path):
    public = tmp_path / "public"
    public.mkdir()
    (public / "login.html").write_text("<html><body>login</body></html>")
    return str(public)


@pytest.fixture()
def app(users, shopify, static_dir):
    client = ShopifyClient("test-shop.myshopify.com", "shpat_test", transport=httpx.MockTransport(shopify.handler))
    return create_app(users=users, shopify=client, static_dir=static_dir)


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def auth_headers():
    token = issue_token("alice", secret=JWT_SECRET, expires_in=timedelta(hours=1))
    return {"Authorization": f"Bearer {token}"}
