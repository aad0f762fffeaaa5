import os
import tempfile

os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-test-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from api_client import ExpenseApi  # noqa: E402
from database import Base  # noqa: E402
from errors import TransientNetworkFailure  # noqa: E402
from main import app, get_db  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def client(engine):
    testing_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class SwitchableTransport:
    """Routes client calls into the test app, or fails them while offline."""

    def __init__(self, client: TestClient) -> None:
        self.client = client
        self.online = True
        self.calls: list[tuple[str, str]] = []

    def __call__(self, method, url, payload):
        self.calls.append((method, url))
        if not self.online:
            raise TransientNetworkFailure(f"Could not reach {url}")
        resp = self.client.request(method, url, json=payload)
        body = resp.json() if resp.content else None
        return resp.status_code, body


@pytest.fixture
def transport(client):
    return SwitchableTransport(client)


@pytest.fixture
def api(transport):
    return ExpenseApi("http://testserver", transport=transport)
