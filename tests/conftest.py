import json
import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_db_dir}/test.db"
os.environ["ENV"] = "dev"
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://127.0.0.1:6390/0"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["GOOGLE_PLACES_API_KEY"] = ""
os.environ["METRICS_ENABLED"] = "false"

import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel
from marketplace.main import app
from marketplace.payments.client import PaystackClient

url_prefix = "/api/v1"


class PaystackRecorder:
    """Answers Paystack REST calls in process and keeps every request it saw."""

    def __init__(self):
        self.calls = []
        self.verify_data = {"status": "success", "amount": None, "id": 9001}
        self.refund_data = {"status": "pending", "id": 7001}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))

        if request.url.path == "/transaction/initialize":
            data = {"authorization_url": f"https://checkout.paystack.test/{body['reference']}",
                    "access_code": "ac_test", "reference": body["reference"]}
        elif request.url.path.startswith("/transaction/verify/"):
            data = dict(self.verify_data)
        elif request.url.path == "/refund":
            data = dict(self.refund_data)
        else:
            return httpx.Response(404, json={"status": False, "message": "not found"})
        return httpx.Response(200, json={"status": True, "message": "ok", "data": data})

    def paths(self):
        return [path for _, path, _ in self.calls]


@pytest.fixture
async def paystack():
    return PaystackRecorder()


@pytest.fixture
async def ac_client(paystack):
    async with LifespanManager(app):
        async with app.state.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)
            await conn.run_sync(SQLModel.metadata.create_all)

        await app.state.paystack.aclose()
        app.state.paystack = PaystackClient(
            secret_key="sk_test_secret",
            base_url="https://api.paystack.test",
            http_client=httpx.AsyncClient(base_url="https://api.paystack.test",
                                          transport=httpx.MockTransport(paystack)),
        )

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest.fixture
async def session_factory(ac_client):
    return app.state.session_factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
