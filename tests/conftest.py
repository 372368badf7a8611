import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from beeper.config import Settings
from beeper.main import create_app
from beeper.service import ReminderService
from beeper.store import JobStore
from beeper.subscribers import SubscriberRegistry


class FakeNotifier:
    def __init__(self, result: bool = True):
        self.result = result
        self.calls = []

    async def send(self, recipient, content, kind):
        self.calls.append((recipient, content, kind))
        return self.result


class ShiftedClock:
    """Wall clock that runs at real speed from an adjustable offset."""

    def __init__(self):
        self.offset = timedelta(0)

    def __call__(self):
        return datetime.now() + self.offset

    def jump_to(self, moment: datetime):
        self.offset = moment - datetime.now()


class FakeSMTP:
    """Stands in for ``aiosmtplib.SMTP``; set ``error`` to make connecting fail."""

    error = None
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sent = []
        self.noops = 0
        FakeSMTP.instances.append(self)

    async def __aenter__(self):
        if FakeSMTP.error is not None:
            raise FakeSMTP.error
        return self

    async def __aexit__(self, *exc):
        return False

    async def send_message(self, message):
        self.sent.append(message)

    async def noop(self):
        self.noops += 1


async def wait_until(predicate, timeout: float = 3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
    monkeypatch.delenv("BEEPER_CONFIG", raising=False)


@pytest.fixture
def pending_file(tmp_path):
    return tmp_path / "pending_emails.json"


@pytest.fixture
def settings(pending_file):
    return Settings(pending_file=pending_file)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return ShiftedClock()


@pytest.fixture
def subscribers():
    return SubscriberRegistry()


@pytest.fixture
def store(pending_file, subscribers):
    return JobStore(pending_file, subscribers=subscribers)


@pytest_asyncio.fixture
async def service(settings, notifier, clock):
    svc = ReminderService(settings, notifier=notifier, clock=clock)
    yield svc
    await svc.stop()


@pytest_asyncio.fixture
async def client(service):
    app = create_app(service=service)
    await service.start()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.error = None
    FakeSMTP.instances = []
    monkeypatch.setattr("beeper.notifier.aiosmtplib.SMTP", FakeSMTP)
    yield FakeSMTP
    FakeSMTP.error = None
