import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from storefront.app import create_app
from storefront.config import Config
from storefront.db import DatabaseConnector, ReconnectPolicy
from storefront.metrics import Metrics
from storefront.seed import seed_admin

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-password"

TEST_ENV = {
    "DATABASE_URL": "sqlite://",
    "JWT_SECRET_KEY": "test-secret-key",
    "ENVIRONMENT": "test",
}


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.callback()


class FakeScheduler:
    """Records scheduled callbacks instead of starting timer threads."""

    def __init__(self):
        self.timers = []

    def schedule(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self):
        self.pending[0].fire()


class RecordingSink:
    def __init__(self):
        self.events = []

    def __call__(self, connected):
        self.events.append(connected)

    @property
    def last(self):
        return self.events[-1]


class BrokenEngine:
    """Stands in for an engine whose server went away."""

    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    def dispose(self):
        pass


def sqlite_engine_factory(url, **options):
    # One shared in-memory database for every connection of the engine
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        **options,
    )


def failing_engine_factory(url, **options):
    raise OperationalError("SELECT 1", {}, Exception("could not connect to server: Connection refused"))


@pytest.fixture
def config():
    return Config.from_env(TEST_ENV)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_connector(config, sink, scheduler):
    created = []

    def _make(engine_factory=sqlite_engine_factory, policy=None):
        connector = DatabaseConnector(
            config.database,
            policy=policy or ReconnectPolicy(),
            status_sink=sink,
            engine_factory=engine_factory,
            scheduler=scheduler,
        )
        created.append(connector)
        return connector

    yield _make
    for connector in created:
        connector.close()


@pytest.fixture
def connector(make_connector):
    connector = make_connector()
    connector.connect()
    return connector


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def app(config, connector, metrics):
    return create_app(config, connector, metrics)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(connector, client):
    with connector.session() as session:
        seed_admin(session, ADMIN_EMAIL, ADMIN_PASSWORD)
    resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    return {"Authorization": f"Bearer {resp.get_json()['data']['token']}"}


@pytest.fixture
def user_headers(client):
    resp = client.post(
        "/api/auth/register",
        json={
            "first_name": "Amira",
            "last_name": "Ben Salah",
            "email": "amira@example.com",
            "password": "secret123",
        },
    )
    return {"Authorization": f"Bearer {resp.get_json()['data']['token']}"}
