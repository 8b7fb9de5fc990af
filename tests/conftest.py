"""
Shared fixtures: a manual clock, an in-memory notifier, recording render
callbacks, fake HTTP clients and a fake Redis server.
"""
import asyncio

import pytest
import sentry_sdk

from jobwatch.models.render import RenderCallbacks
from jobwatch.services.credentials import Identity, StaticCredentialProvider
from jobwatch.services.job_tracker import JobTracker
from jobwatch.services import notifiers
from jobwatch.services.notifiers import InMemoryChangeNotifier
from jobwatch.services.submission_client import SubmitAck, SubmissionPayload
from jobwatch.services.timer_registry import TimerRegistry
from jobwatch.errors import SubmitError

COLLECTION = "analyses"


class FakeCall:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Clock that only moves when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self.calls: list[FakeCall] = []

    def call_later(self, delay, callback):
        call = FakeCall(self.now + delay, callback)
        self.calls.append(call)
        return call

    def pending(self):
        return [call for call in self.calls if not call.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [call for call in self.pending() if call.when <= target]
            if not due:
                break
            call = min(due, key=lambda c: c.when)
            self.calls.remove(call)
            self.now = call.when
            call.callback()
        self.now = target


class RecordingCallbacks(RenderCallbacks):
    """Collects every render event in order."""

    def __init__(self):
        self.events = []

    @property
    def kinds(self):
        return [event.kind for event in self.events]

    def _record(self, event):
        self.events.append(event)

    on_queued = on_processing = on_done = on_incomplete = on_error = _record
    on_timeout = on_eligible = on_uploading = on_uploaded = on_upload_failed = _record


class FakeSubmissionClient:
    """
    Submission client whose outcome the test controls.

    By default submit() resolves immediately with an ack. Set `gate` to an
    asyncio.Event to hold the call open, and `error` to make it fail.
    """

    def __init__(self):
        self.calls = []
        self.gate: asyncio.Event | None = None
        self.error: SubmitError | None = None

    async def submit(self, job_id, payload, identity=None):
        self.calls.append((job_id, payload, identity))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return SubmitAck(job_id=job_id, status_code=200)


class FakeUploadClient:
    def __init__(self, link="https://youtu.be/abc123"):
        self.link = link
        self.calls = []
        self.gate: asyncio.Event | None = None
        self.error = None

    async def upload(self, job_id, payload):
        self.calls.append((job_id, payload))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.link


class FakePubSub:
    def __init__(self, server):
        self.server = server
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels = set()
        self.closed = False

    async def subscribe(self, key):
        self.channels.add(key)
        self.server.pubsubs.append(self)
        self.queue.put_nowait({"type": "subscribe", "channel": key.encode(), "data": 1})

    async def unsubscribe(self, key):
        self.channels.discard(key)

    async def aclose(self):
        self.closed = True
        self.server.pubsubs.remove(self)

    async def listen(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.pubsubs: list[FakePubSub] = []
        self.closed = False

    async def set(self, key, value):
        self.data[key] = value.encode() if isinstance(value, str) else value

    async def get(self, key):
        return self.data.get(key)

    async def publish(self, key, value):
        raw = value.encode() if isinstance(value, str) else value
        receivers = [pubsub for pubsub in self.pubsubs if key in pubsub.channels]
        for pubsub in receivers:
            pubsub.queue.put_nowait({"type": "message", "channel": key.encode(), "data": raw})
        return len(receivers)

    def pubsub(self):
        return FakePubSub(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return TimerRegistry(clock)


@pytest.fixture
def notifier():
    return InMemoryChangeNotifier()


@pytest.fixture
def identity():
    return Identity(uid="user-1", email="instructor@example.edu")


@pytest.fixture
def credentials(identity):
    return StaticCredentialProvider(identity)


@pytest.fixture
def payload():
    return SubmissionPayload(filename="class.mp4", content=b"\x00" * 64, content_type="video/mp4")


@pytest.fixture
def submission_client():
    return FakeSubmissionClient()


@pytest.fixture
def upload_client():
    return FakeUploadClient()


@pytest.fixture
def callbacks():
    return RecordingCallbacks()


@pytest.fixture
def make_tracker(payload, submission_client, notifier, timers, credentials, callbacks, upload_client):
    def factory(**overrides):
        options = dict(
            submission_client=submission_client,
            notifier=notifier,
            timers=timers,
            credentials=credentials,
            callbacks=callbacks,
            upload_client=upload_client,
            threshold=10,
            upload_timeout=600,
            analysis_timeout=900,
            collection=COLLECTION,
        )
        options.update(overrides)
        return JobTracker(payload, **options)

    return factory


@pytest.fixture
def redis_server(monkeypatch):
    """Fake Redis server returned by every redis.from_url() call in the notifier."""
    fake = FakeRedis()
    monkeypatch.setattr(notifiers.redis, "from_url", lambda url: fake)
    return fake


class ActiveSentryClient:
    def is_active(self):
        return True


@pytest.fixture
def sentry_events(monkeypatch):
    """Pretend Sentry is configured and record what would be sent."""
    events = []
    monkeypatch.setattr(sentry_sdk, "get_client", lambda: ActiveSentryClient())
    monkeypatch.setattr(sentry_sdk, "capture_message", lambda message, level=None: events.append((level, message)))
    monkeypatch.setattr(sentry_sdk, "capture_exception", lambda error=None: events.append(("exception", error)))
    return events
