import asyncio
import json
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional

from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from potoken_service.errors import ExtractionTimeout, NavigationFailure, ParseFailure

logger = logging.getLogger(__name__)

PLAYER_API_SEGMENT = "/youtubei/v1/player"
EMBED_URL = "https://www.youtube.com/embed/jNQXAC9IVRw"

# Consent overlays block clicks on the player in some regions
CONSENT_SELECTORS = [
    'button[aria-label="Accept all"]',
    'button[aria-label="I agree"]',
    "#introAgreeButton",
    'form[action*="consent"] button[type="submit"]',
]
PLAYER_SELECTORS = [
    "#movie_player .ytp-large-play-button",
    "#movie_player",
    "video",
]

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class ExtractedCredentials(NamedTuple):
    credential_token: str
    session_id: str


@dataclass(frozen=True)
class SessionConfig:
    """Launch options for one isolated browser session."""
    browser_path: Optional[Path] = None
    profile_root: Optional[Path] = None
    headless: bool = True
    extraction_timeout: float = 30
    navigation_timeout: float = 30
    click_timeout: float = 10


def parse_player_request(post_data: Optional[str]) -> ExtractedCredentials:
    """Pull visitorData and poToken out of a /youtubei/v1/player request body."""
    if not post_data:
        raise ParseFailure("player request has no body")
    try:
        body = json.loads(post_data)
        session_id = body["context"]["client"]["visitorData"]
        credential_token = body["serviceIntegrityDimensions"]["poToken"]
    except (json.JSONDecodeError, TypeError, KeyError) as e:
        raise ParseFailure(f"malformed player request: {type(e).__name__}: {e}") from e

    if not isinstance(credential_token, str) or not credential_token:
        raise ParseFailure("player request carries no poToken")
    if not isinstance(session_id, str) or not session_id:
        raise ParseFailure("player request carries no visitorData")
    return ExtractedCredentials(credential_token, session_id)


class TokenCapture:
    """
    One-shot completion signal owned by a single attempt.

    ``offer`` is registered as the page's request listener. The first POST to
    the player endpoint with a parseable body resolves the future; everything
    after that is ignored. ``wait`` races the future against a timer and the
    loser is simply dropped.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def offer(self, request) -> None:
        if self._future.done():
            return
        if request.method != "POST" or PLAYER_API_SEGMENT not in request.url:
            return
        try:
            credentials = parse_player_request(request.post_data)
        except ParseFailure as e:
            self._log.warning(f"Failed to extract token: {e}")
            return
        self._log.debug(f"Matched player request {request.url}")
        self._future.set_result(credentials)

    async def wait(self, timeout: float) -> ExtractedCredentials:
        try:
            return await asyncio.wait_for(self._future, timeout=timeout)
        except asyncio.TimeoutError:
            raise ExtractionTimeout(
                f"timed out after {timeout}s waiting for POST {PLAYER_API_SEGMENT}"
            ) from None


class BrowserSessionDriver:
    """
    Runs one extraction attempt in a fresh Chromium profile driven by Playwright.

    Every call owns its own temporary profile directory and browser context;
    both are released before ``extract_once`` returns or raises.
    """

    def __init__(self, config: SessionConfig = SessionConfig(), log: Optional[logging.Logger] = None):
        self.config = config
        self._log = log or logger

    def _launch_args(self) -> dict:
        launch_args = {
            "headless": self.config.headless,
            "args": BROWSER_ARGS,
        }
        if self.config.browser_path:
            launch_args["executable_path"] = str(self.config.browser_path)
        return launch_args

    async def extract_once(self) -> ExtractedCredentials:
        profile_dir = tempfile.mkdtemp(
            prefix="profile-",
            dir=str(self.config.profile_root) if self.config.profile_root else None,
        )
        self._log.debug(f"Starting browser (profile={profile_dir}, executable={self.config.browser_path})")
        try:
            async with async_playwright() as p:
                try:
                    context = await p.chromium.launch_persistent_context(profile_dir, **self._launch_args())
                except PlaywrightError as e:
                    raise NavigationFailure(
                        f"could not launch Chromium, install it or pass --browser-path: {e}"
                    ) from e
                try:
                    return await self._drive(context)
                finally:
                    try:
                        await context.close()
                    except PlaywrightError as e:
                        self._log.warning(f"Error closing browser context: {e}")
        finally:
            shutil.rmtree(profile_dir, ignore_errors=True)

    async def _drive(self, context) -> ExtractedCredentials:
        page = context.pages[0] if context.pages else await context.new_page()
        capture = TokenCapture(self._log)
        page.on("request", capture.offer)

        self._log.debug(f"Navigating to {EMBED_URL}")
        try:
            await page.goto(
                EMBED_URL,
                wait_until="domcontentloaded",
                timeout=self.config.navigation_timeout * 1000,
            )
        except PlaywrightError as e:
            raise NavigationFailure(f"could not load {EMBED_URL}: {e}") from e

        # Autoplay sometimes fires the request before any click
        if not capture.done:
            await self._dismiss_consent(page)
        if not capture.done:
            await self._click_on_player(page)

        credentials = await capture.wait(self.config.extraction_timeout)
        self._log.info("Extraction successful")
        return credentials

    async def _dismiss_consent(self, page) -> None:
        for selector in CONSENT_SELECTORS:
            try:
                button = await page.wait_for_selector(selector, timeout=1000)
            except PlaywrightTimeoutError:
                continue
            if button is None:
                continue
            self._log.debug(f"Dismissing consent dialog via {selector}")
            try:
                await button.click()
            except PlaywrightError as e:
                self._log.debug(f"Consent click failed: {e}")
            break

    async def _click_on_player(self, page) -> None:
        for selector in PLAYER_SELECTORS:
            try:
                element = await page.wait_for_selector(selector, timeout=self.config.click_timeout * 1000)
            except PlaywrightTimeoutError:
                self._log.debug(f"Player element not found for {selector}")
                continue
            if element is None:
                continue
            try:
                await element.click()
                return
            except PlaywrightError as e:
                self._log.debug(f"Failed clicking {selector}: {e}")

        raise NavigationFailure("unable to locate or click the video player")
