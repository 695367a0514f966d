"""
Pytest fixtures for order sync backend tests.

Provides test database setup, account/product fixtures and a fake order API
served through httpx.MockTransport (no network).
"""

from datetime import timedelta

import httpx
import pytest

from app import create_app
from app.extensions import db
from app.models import Account, Product
from app.time_utils import utcnow

API_BASE = "https://api.test/Api/v3"
TOKEN_URL = f"{API_BASE}/oauth/token"
AUTHORIZE_URL = f"{API_BASE}/oauth/authorize"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SYNC_ENABLED': False,
        'ORDER_API_BASE_URL': API_BASE,
        'ORDER_API_TOKEN_URL': TOKEN_URL,
        'ORDER_API_AUTHORIZE_URL': AUTHORIZE_URL,
        'SYNC_PAGE_DELAY_SECONDS': 0,
        'SYNC_ACCOUNT_DELAY_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_account(db_session, *, name, user_id, expires_in=timedelta(hours=1), **overrides):
    fields = dict(
        user_id=user_id,
        name=name,
        client_id=f"{name}-client",
        client_secret=f"{name}-secret",
        access_token=f"{name}-access",
        refresh_token=f"{name}-refresh",
        token_expires_at=utcnow() + expires_in if expires_in is not None else None,
        is_active=True,
        sync_status="connected",
    )
    fields.update(overrides)
    account = Account(**fields)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def account(db_session):
    """Connected account with a token valid for another hour."""
    return _make_account(db_session, name="shop-a", user_id=1)


@pytest.fixture(scope='function')
def second_account(db_session):
    return _make_account(db_session, name="shop-b", user_id=2)


@pytest.fixture(scope='function')
def expired_account(db_session):
    """Connected account whose access token expired a minute ago."""
    return _make_account(db_session, name="shop-expired", user_id=1, expires_in=timedelta(minutes=-1))


@pytest.fixture
def make_account(db_session):
    def _factory(**kwargs):
        return _make_account(db_session, **kwargs)
    return _factory


@pytest.fixture(scope='function')
def product_x(db_session):
    product = Product(sku="X", name="Product X")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_z(db_session):
    product = Product(sku="Z", name="Product Z")
    db_session.add(product)
    db_session.commit()
    return product


def raw_order(order_id, number, *, status_id=None, status_text=None, total=0, items=(), customer="Jane Doe", date="2026-10-18"):
    """Build an order object shaped like the external API's listing payload."""
    situacao = {}
    if status_id is not None:
        situacao["id"] = status_id
    if status_text is not None:
        situacao["valor"] = status_text
    return {
        "id": order_id,
        "numero": number,
        "data": date,
        "situacao": situacao,
        "contato": {"nome": customer},
        "total": total,
        "itens": [{"codigo": sku, "quantidade": qty} for sku, qty in items],
    }


class FakeOrderApi:
    """
    In-process stand-in for the external order API.

    - token_responses: queue of httpx.Response / exceptions for the token endpoint
      (a default successful grant is used when empty)
    - pages: mapping of account access token -> {page number: list | Response | exception}
      (use the key None for "any token")
    """

    def __init__(self):
        self.token_responses = []
        self.pages = {}
        self.requests = []

    @property
    def token_requests(self):
        return [r for r in self.requests if r.url.path.endswith("/oauth/token")]

    @property
    def order_requests(self):
        return [r for r in self.requests if r.url.path.endswith("/pedidos/vendas")]

    def set_pages(self, pages, token=None):
        self.pages[token] = pages

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path.endswith("/oauth/token"):
            if self.token_responses:
                outcome = self.token_responses.pop(0)
            else:
                outcome = httpx.Response(
                    200,
                    json={"access_token": "fresh-access", "refresh_token": "fresh-refresh", "expires_in": 21600},
                )
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        if request.url.path.endswith("/pedidos/vendas"):
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            pages = self.pages.get(token, self.pages.get(None, {}))
            outcome = pages.get(int(request.url.params["pagina"]), [])
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, httpx.Response):
                return outcome
            return httpx.Response(200, json={"data": outcome})

        return httpx.Response(404, json={"error": {"message": "not found"}})

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def client(self):
        return httpx.Client(transport=self.transport)


@pytest.fixture
def fake_api():
    return FakeOrderApi()
