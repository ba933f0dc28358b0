import os

# Must be set before any service module is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["OTLP_ENDPOINT"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"

import json
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.config.database import Base, get_db
from shared.config.settings import Settings, get_settings
from services.payment_service.fanout import DownstreamNotifier, get_notifier
from services.payment_service.gateway import InstamojoGateway, get_gateway
from services.payment_service.main import payment_app
from services.registrant_service.main import registrant_app
from services.registrant_service.models import Visitor


PROVIDER_BASE = "https://instamojo.test"
REGISTRANT_BASE = "http://registrants.test"


def pytest_configure(config):
    config.addinivalue_line("markers", "payment: payment flow tests")
    config.addinivalue_line("markers", "otp: one-time code tests")


class FakeInstamojo:
    """Stands in for the provider API. Records every request it receives."""

    def __init__(self):
        self.requests = []
        self.create_status = 201
        self.create_body = {
            "success": True,
            "payment_request": {
                "id": "PR_1",
                "longurl": "https://instamojo.test/@event/PR_1",
                "status": "Pending",
            },
        }
        self.payments = {}
        self.payment_requests = {}
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectTimeout("provider timed out", request=request)

        path = request.url.path
        if request.method == "POST" and path == "/api/1.1/payment-requests/":
            return httpx.Response(self.create_status, json=self.create_body)

        parts = [p for p in path.split("/") if p]
        if request.method == "GET" and len(parts) == 4 and parts[2] == "payments":
            return self._lookup(self.payments, parts[3])
        if request.method == "GET" and len(parts) == 4 and parts[2] == "payment-requests":
            return self._lookup(self.payment_requests, parts[3])
        return httpx.Response(404, json={"success": False, "message": "Not found"})

    @staticmethod
    def _lookup(table, key):
        if key not in table:
            return httpx.Response(404, json={"success": False, "message": "Not found"})
        status_code, body = table[key]
        return httpx.Response(status_code, json=body)

    @property
    def create_calls(self):
        return [r for r in self.requests if r.method == "POST"]

    def last_create_params(self) -> dict:
        return dict(parse_qsl(self.create_calls[-1].content.decode()))

    def set_payment(self, payment_id, status="Credit", amount="499.00", payment_request="PR_1", metadata=None, http_status=200):
        self.payments[payment_id] = (
            http_status,
            {
                "success": True,
                "payment": {
                    "payment_id": payment_id,
                    "status": status,
                    "amount": amount,
                    "currency": "INR",
                    "payment_request": payment_request,
                    "metadata": metadata or {},
                },
            },
        )


class RecordingTransport(httpx.AsyncBaseTransport):
    """Forwards fan-out calls into the in-process registrant app and keeps a log."""

    def __init__(self, app):
        self.calls = []
        self._inner = httpx.ASGITransport(app=app)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        response = await self._inner.handle_async_request(request)
        self.calls.append((request.url.path, body, response.status_code))
        return response


@pytest.fixture
def settings():
    return Settings(
        instamojo_api_key="test_api_key_123",
        instamojo_auth_token="test_auth_token_456",
        instamojo_api_base=PROVIDER_BASE,
        app_origin="https://app.example.org",
        backend_origin="https://api.example.org",
        registrant_url=REGISTRANT_BASE,
        smtp_host="",
    )


@pytest.fixture
def provider():
    return FakeInstamojo()


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so the payment and registrant sessions get separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fanout():
    return RecordingTransport(registrant_app)


@pytest.fixture
def overrides(session_factory, settings, provider, fanout):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    for app in (payment_app, registrant_app):
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_settings] = lambda: settings

    payment_app.dependency_overrides[get_gateway] = lambda: InstamojoGateway(
        settings, transport=httpx.MockTransport(provider.handler)
    )
    payment_app.dependency_overrides[get_notifier] = lambda: DownstreamNotifier(settings, transport=fanout)
    yield
    payment_app.dependency_overrides.clear()
    registrant_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(overrides):
    """Client for the payment sub-app (paths without the /payment mount prefix)."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=payment_app), base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def registrant_client(overrides):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=registrant_app), base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def visitor(db):
    row = Visitor(name="Asha Rao", email="asha@example.org", ticket_category="general")
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@pytest.fixture
def fetch(session_factory):
    """Read rows through a fresh session so assertions never see identity-map leftovers."""

    async def _fetch(model, order_by=None, **filters):
        async with session_factory() as session:
            stmt = select(model).filter_by(**filters).order_by(order_by if order_by is not None else model.id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _fetch
