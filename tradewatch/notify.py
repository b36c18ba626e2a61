# tradewatch/notify.py
"""Discord webhook delivery.

A batch becomes one multipart POST: a ``payload_json`` part with the message
text and one embed per listing, plus one image part per listing that the
embed references through ``attachment://<filename>``.
"""
import json
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple
import requests
from .capture import ArtifactHandle
from .errors import DeliveryError
from .market import Item
from .utils import logger

MAX_EMBEDS = 10
EMBED_COLOR = 0x0099FF


@dataclass
class NotificationBatch:
    entries: List[Tuple[Item, ArtifactHandle]] = field(default_factory=list)

    def add(self, item, artifact):
        self.entries.append((item, artifact))

    @property
    def item_ids(self):
        return [item.id for item, _ in self.entries]

    def __len__(self):
        return len(self.entries)


def humanize_age(seconds):
    seconds = max(0, seconds)
    minutes, hours, days = seconds / 60, seconds / 3600, seconds / 86400
    if seconds < 45:
        return "a few seconds"
    if seconds < 90:
        return "a minute"
    if minutes < 45:
        return f"{round(minutes)} minutes"
    if minutes < 90:
        return "an hour"
    if hours < 22:
        return f"{round(hours)} hours"
    if hours < 36:
        return "a day"
    if days < 26:
        return f"{round(days)} days"
    if days < 45:
        return "a month"
    if days < 320:
        return f"{round(days / 30.4)} months"
    if days < 548:
        return "a year"
    return f"{round(days / 365)} years"


def format_price(price):
    if price is None:
        return "Unlisted"
    return f"{price / 1000000:g} Million(s)"


class NotificationDispatcher:
    def __init__(self, webhook_url, listing_url_template, footer="Diablo.trade",
                 timeout=30.0, session=None):
        self.webhook_url = webhook_url
        self.listing_url_template = listing_url_template
        self.footer = footer
        self.timeout = timeout
        self.session = session or requests

    def build_embed(self, item: Item, artifact: ArtifactHandle, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        embed = {
            "title": item.seller or "Unknown Seller",
            "description": "**Click on the btag to view listing**",
            "url": self.listing_url_template.format(item_id=item.id),
            "color": EMBED_COLOR,
            "fields": [
                {"name": "Price", "value": format_price(item.price), "inline": True},
            ],
            "image": {"url": f"attachment://{artifact.filename}"},
            "footer": {"text": self.footer},
        }
        updated = item.updated_at
        if updated is not None:
            if updated.tzinfo is None:
                updated = updated.replace(tzinfo=timezone.utc)
            age = (now - updated).total_seconds()
            embed["fields"].append({"name": "Listing Age", "value": humanize_age(age), "inline": True})
            embed["timestamp"] = updated.isoformat()
        return embed

    def build_payload(self, batch: NotificationBatch, recipient=None):
        text = "Check out these new listings!"
        content = f"<@{recipient}> {text}" if recipient else text
        return {
            "content": content,
            "embeds": [self.build_embed(item, artifact) for item, artifact in batch.entries],
        }

    def deliver(self, batch: NotificationBatch, recipient=None):
        if not len(batch):
            return
        if len(batch) > MAX_EMBEDS:
            raise DeliveryError(f"Batch of {len(batch)} exceeds {MAX_EMBEDS} embeds")
        payload = self.build_payload(batch, recipient)
        with ExitStack() as stack:
            files = {}
            for i, (_, artifact) in enumerate(batch.entries):
                try:
                    fh = stack.enter_context(open(artifact.path, "rb"))
                except OSError as e:
                    raise DeliveryError(f"Artifact for item {artifact.item_id} unreadable: {e}")
                files[f"files[{i}]"] = (artifact.filename, fh, "image/png")
            try:
                resp = self.session.post(
                    self.webhook_url,
                    data={"payload_json": json.dumps(payload)},
                    files=files,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise DeliveryError(f"Webhook request failed: {e}")
        if not 200 <= resp.status_code < 300:
            raise DeliveryError(f"Webhook returned HTTP {resp.status_code}", status=resp.status_code)
        logger.info("Delivered %d listings to webhook (HTTP %s)", len(batch), resp.status_code)
