import os
from datetime import datetime, timezone
import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from tradewatch.capture import ArtifactHandle
from tradewatch.db import make_engine, make_session_factory, init_db
from tradewatch.errors import CaptureError, DeliveryError
from tradewatch.market import Item
from tradewatch.scheduler import RecurringJobRegistry, RegistryContext
from tradewatch.services import QueryExecutionOrchestrator


def make_item(item_id, seller="seller", price=2500000):
    return Item(
        id=item_id,
        seller=seller,
        price=price,
        updated_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeClient:
    def __init__(self, items=None, error=None):
        self.items = list(items or [])
        self.error = error
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeCapture:
    """Stands in for ListingCapture; writes a small file per item."""

    def __init__(self, artifact_dir, fail_ids=()):
        self.artifact_dir = artifact_dir
        self.fail_ids = set(fail_ids)
        self.captured = []
        self.handles = []
        self.entered = 0
        self.exited = 0

    def __call__(self):
        return self

    def __enter__(self):
        self.entered += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self.exited += 1
        return False

    def capture(self, item_id):
        if item_id in self.fail_ids:
            raise CaptureError(item_id, "screenshot target element not found")
        path = os.path.join(self.artifact_dir, f"{item_id}.png")
        with open(path, "wb") as fh:
            fh.write(b"\x89PNG fake")
        self.captured.append(item_id)
        handle = ArtifactHandle(item_id=item_id, path=path)
        self.handles.append(handle)
        return handle


class FakeDispatcher:
    def __init__(self, fail_calls=(), on_deliver=None):
        self.fail_calls = set(fail_calls)
        self.on_deliver = on_deliver
        self.calls = 0
        self.batches = []
        self.recipients = []

    def deliver(self, batch, recipient=None):
        self.calls += 1
        if self.on_deliver is not None:
            self.on_deliver(batch)
        for _, artifact in batch.entries:
            assert os.path.exists(artifact.path)
        if self.calls in self.fail_calls:
            raise DeliveryError("Webhook returned HTTP 500", status=500)
        self.batches.append(batch.item_ids)
        self.recipients.append(recipient)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def context(session_factory):
    ctx = RegistryContext(session_factory, scheduler=BackgroundScheduler(timezone="UTC"), ledger_limit=1000)
    yield ctx
    ctx.shutdown()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def capture(tmp_path):
    return FakeCapture(str(tmp_path))


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def orchestrator(client, capture, dispatcher, context):
    return QueryExecutionOrchestrator(client, capture, dispatcher, context=context, batch_size=10)


@pytest.fixture
def registry(context, orchestrator):
    return RecurringJobRegistry(context, orchestrator)
