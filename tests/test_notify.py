import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
import pytest
import requests
from conftest import make_item
from tradewatch.capture import ArtifactHandle
from tradewatch.errors import DeliveryError
from tradewatch.market import Item
from tradewatch.notify import NotificationBatch, NotificationDispatcher, format_price, humanize_age

WEBHOOK = "https://discord.test/api/webhooks/1/token"
TEMPLATE = "https://market.test/listings/items/{item_id}"


@pytest.fixture
def batch(tmp_path):
    b = NotificationBatch()
    for item_id in ("a1", "b2"):
        path = tmp_path / f"{item_id}.png"
        path.write_bytes(b"png")
        b.add(make_item(item_id, seller=f"seller-{item_id}"), ArtifactHandle(item_id, str(path)))
    return b


def _session(status=204):
    session = MagicMock()
    resp = MagicMock()
    resp.status_code = status
    session.post.return_value = resp
    return session


@pytest.mark.parametrize("seconds,text", [
    (10, "a few seconds"),
    (60, "a minute"),
    (600, "10 minutes"),
    (3600, "an hour"),
    (5 * 3600, "5 hours"),
    (26 * 3600, "a day"),
    (3 * 86400, "3 days"),
    (400 * 86400, "a year"),
])
def test_humanize_age(seconds, text):
    assert humanize_age(seconds) == text


def test_format_price():
    assert format_price(2500000) == "2.5 Million(s)"
    assert format_price(None) == "Unlisted"


def test_build_embed():
    dispatcher = NotificationDispatcher(WEBHOOK, TEMPLATE, footer="Market")
    item = make_item("xyz", seller=None)
    now = item.updated_at + timedelta(hours=3)
    embed = dispatcher.build_embed(item, ArtifactHandle("xyz", "/tmp/xyz.png"), now=now)
    assert embed["title"] == "Unknown Seller"
    assert embed["url"] == "https://market.test/listings/items/xyz"
    assert embed["image"] == {"url": "attachment://xyz.png"}
    assert embed["footer"] == {"text": "Market"}
    assert {"name": "Listing Age", "value": "3 hours", "inline": True} in embed["fields"]
    assert embed["timestamp"].startswith("2024-03-01T12:00:00")


def test_build_payload_mentions_recipient(batch):
    dispatcher = NotificationDispatcher(WEBHOOK, TEMPLATE)
    payload = dispatcher.build_payload(batch, recipient="1234")
    assert payload["content"] == "<@1234> Check out these new listings!"
    assert [e["title"] for e in payload["embeds"]] == ["seller-a1", "seller-b2"]
    assert dispatcher.build_payload(batch)["content"] == "Check out these new listings!"


def test_deliver_posts_multipart(batch):
    session = _session(204)
    dispatcher = NotificationDispatcher(WEBHOOK, TEMPLATE, timeout=7, session=session)

    dispatcher.deliver(batch, recipient="42")

    args, kwargs = session.post.call_args
    assert args[0] == WEBHOOK
    assert kwargs["timeout"] == 7
    payload = json.loads(kwargs["data"]["payload_json"])
    assert len(payload["embeds"]) == 2
    assert sorted(kwargs["files"]) == ["files[0]", "files[1]"]
    assert kwargs["files"]["files[0]"][0] == "a1.png"
    assert kwargs["files"]["files[0]"][2] == "image/png"


def test_deliver_non_2xx_raises(batch):
    dispatcher = NotificationDispatcher(WEBHOOK, TEMPLATE, session=_session(400))
    with pytest.raises(DeliveryError) as exc:
        dispatcher.deliver(batch)
    assert exc.value.status == 400


def test_deliver_network_error_raises(batch):
    session = MagicMock()
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(DeliveryError):
        NotificationDispatcher(WEBHOOK, TEMPLATE, session=session).deliver(batch)


def test_deliver_rejects_oversized_batch(tmp_path):
    session = _session()
    b = NotificationBatch()
    for i in range(11):
        b.add(make_item(str(i)), ArtifactHandle(str(i), str(tmp_path / f"{i}.png")))
    with pytest.raises(DeliveryError):
        NotificationDispatcher(WEBHOOK, TEMPLATE, session=session).deliver(b)
    session.post.assert_not_called()


def test_deliver_empty_batch_is_noop():
    session = _session()
    NotificationDispatcher(WEBHOOK, TEMPLATE, session=session).deliver(NotificationBatch())
    session.post.assert_not_called()


def test_naive_timestamps_are_treated_as_utc():
    dispatcher = NotificationDispatcher(WEBHOOK, TEMPLATE)
    naive = Item(id="n", seller="s", price=1, updated_at=datetime(2024, 3, 1, 12, 0))
    now = datetime(2024, 3, 1, 12, 0, 30, tzinfo=timezone.utc)
    embed = dispatcher.build_embed(naive, ArtifactHandle("n", "/tmp/n.png"), now=now)
    assert {"name": "Listing Age", "value": "a few seconds", "inline": True} in embed["fields"]
