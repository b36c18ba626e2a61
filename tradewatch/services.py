# tradewatch/services.py
"""Per-trigger workflow: search, dedup, capture, deliver, write back.

Ledger write-back happens after every successful batch, never before, so an
item is only marked sent once the webhook accepted it. A failed batch does not
undo earlier ones; later batches still get their attempt.
"""
from dataclasses import dataclass, field
from functools import partial
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from .errors import CaptureError, DeliveryError, ProviderError, StoreError
from .capture import ListingCapture
from .market import Item, MarketQueryClient
from .notify import NotificationBatch, NotificationDispatcher
from .utils import logger


@dataclass
class RunOutcome:
    job_id: Optional[str]
    fetched: int = 0
    fresh: int = 0
    delivered_ids: List[str] = field(default_factory=list)
    capture_failures: List[str] = field(default_factory=list)
    failed_batches: int = 0
    error: Optional[str] = None
    discarded: bool = False

    @property
    def ok(self):
        return self.error is None and self.failed_batches == 0


def fresh_items(items: Iterable[Item], ledger: Iterable[str]) -> List[Item]:
    """Drop items already in the ledger (or repeated in the response), keeping order."""
    seen = set(ledger or ())
    out = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


class QueryExecutionOrchestrator:
    def __init__(self, client, capture_factory: Callable, dispatcher, context=None,
                 batch_size: int = 10, clock: Callable = None):
        self.client = client
        self.capture_factory = capture_factory
        self.dispatcher = dispatcher
        # anything exposing record_delivery(job_id, ids, when) -> bool
        self.context = context
        self.batch_size = batch_size
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, job_id, query, ledger=(), recipient=None) -> RunOutcome:
        label = job_id or "<ad-hoc>"
        recipient = recipient or query.recipient
        outcome = RunOutcome(job_id=job_id)

        try:
            items = self.client.search(query)
        except ProviderError as e:
            # leave ledger and last_run alone so the next trigger retries this window
            logger.error("Job %s: provider search failed (status=%s): %s", label, e.status, e)
            outcome.error = str(e)
            return outcome
        outcome.fetched = len(items)

        fresh = fresh_items(items, ledger)
        outcome.fresh = len(fresh)
        if not fresh:
            logger.info("Job %s: no new listings among %d results", label, len(items))
            self._write_back(job_id, [], outcome)
            return outcome

        logger.info("Job %s: %d new listings of %d", label, len(fresh), len(items))
        try:
            with self.capture_factory() as capture:
                self._process(label, job_id, fresh, capture, recipient, outcome)
        except CaptureError as e:
            logger.error("Job %s: %s", label, e)
            outcome.error = str(e)

        logger.info(
            "Job %s finished: delivered=%d capture_failures=%d failed_batches=%d",
            label, len(outcome.delivered_ids), len(outcome.capture_failures), outcome.failed_batches,
        )
        return outcome

    def _process(self, label, job_id, fresh, capture, recipient, outcome):
        batch = NotificationBatch()
        try:
            for item in fresh:
                try:
                    artifact = capture.capture(item.id)
                except CaptureError as e:
                    logger.warning("Job %s: skipping item %s: %s", label, item.id, e)
                    outcome.capture_failures.append(item.id)
                    continue
                batch.add(item, artifact)
                if len(batch) >= self.batch_size:
                    if not self._deliver(label, job_id, batch, recipient, outcome):
                        return
                    batch = NotificationBatch()
            if len(batch):
                self._deliver(label, job_id, batch, recipient, outcome)
        finally:
            for _, artifact in batch.entries:
                artifact.release()

    def _deliver(self, label, job_id, batch, recipient, outcome):
        """Deliver one batch; returns False when the run should stop."""
        try:
            self.dispatcher.deliver(batch, recipient)
        except DeliveryError as e:
            outcome.failed_batches += 1
            logger.error(
                "Job %s: delivery of %d listings failed (status=%s): %s",
                label, len(batch), e.status, e,
            )
            return True
        finally:
            for _, artifact in batch.entries:
                artifact.release()
        outcome.delivered_ids.extend(batch.item_ids)
        return self._write_back(job_id, batch.item_ids, outcome)

    def _write_back(self, job_id, item_ids, outcome):
        if job_id is None or self.context is None:
            return True
        try:
            recorded = self.context.record_delivery(job_id, item_ids, self.clock())
        except StoreError as e:
            logger.error("Job %s: ledger write-back failed for %s: %s", job_id, item_ids, e)
            return True
        if not recorded:
            logger.info("Job %s was removed during its run; write-back discarded", job_id)
            outcome.discarded = True
            return False
        return True


def build_orchestrator(settings, context=None) -> QueryExecutionOrchestrator:
    client = MarketQueryClient(settings.market_api_url, timeout=settings.provider_timeout)
    capture_factory = partial(
        ListingCapture,
        settings.listing_url_template,
        settings.capture_selector,
        settings.artifact_dir,
        headless=settings.headless,
        timeout_ms=settings.capture_timeout_ms,
        retries=settings.capture_retries,
    )
    dispatcher = NotificationDispatcher(
        settings.webhook_url,
        settings.listing_url_template,
        footer=settings.embed_footer,
        timeout=settings.webhook_timeout,
    )
    return QueryExecutionOrchestrator(
        client, capture_factory, dispatcher, context=context, batch_size=settings.batch_size
    )
