# tradewatch/capture.py
"""Listing screenshots via Playwright.

One browser is launched per run (`ListingCapture` is a context manager) and
every listing is rendered in its own browser context, which is closed before
`capture` returns whatever happens.
"""
import os
from dataclasses import dataclass
from playwright.sync_api import sync_playwright, Error as PWError, TimeoutError as PWTimeout
from .errors import CaptureError
from .utils import logger, retry

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


@dataclass
class ArtifactHandle:
    item_id: str
    path: str

    @property
    def filename(self):
        return os.path.basename(self.path)

    def release(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class ListingCapture:
    def __init__(self, listing_url_template, selector, artifact_dir,
                 headless=True, timeout_ms=60000, retries=2):
        self.listing_url_template = listing_url_template
        self.selector = selector
        self.artifact_dir = artifact_dir
        self.headless = headless
        self.timeout_ms = timeout_ms
        self._goto = retry(PWTimeout, tries=retries, delay=2, backoff=2)(self._navigate)
        self._playwright = None
        self._browser = None

    def __enter__(self):
        os.makedirs(self.artifact_dir, exist_ok=True)
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        except PWError as e:
            self._playwright.stop()
            self._playwright = None
            raise CaptureError(None, f"browser launch failed: {e}")
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if self._browser:
                self._browser.close()
        finally:
            self._browser = None
            if self._playwright:
                self._playwright.stop()
                self._playwright = None
        return False

    def listing_url(self, item_id):
        return self.listing_url_template.format(item_id=item_id)

    def _navigate(self, page, url):
        page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)

    def capture(self, item_id) -> ArtifactHandle:
        if self._browser is None:
            raise CaptureError(item_id, "browser not started")
        path = os.path.join(self.artifact_dir, f"{item_id}.png")
        context = None
        try:
            context = self._browser.new_context()
            page = context.new_page()
            self._goto(page, self.listing_url(item_id))
            element = page.query_selector(self.selector)
            if element is None:
                raise CaptureError(item_id, "screenshot target element not found")
            element.screenshot(path=path, timeout=self.timeout_ms)
        except PWTimeout as e:
            raise CaptureError(item_id, f"timeout: {e}")
        except PWError as e:
            raise CaptureError(item_id, str(e))
        finally:
            if context is not None:
                try:
                    context.close()
                except PWError as e:
                    logger.warning("Failed closing browser context for %s: %s", item_id, e)
        return ArtifactHandle(item_id=item_id, path=path)
