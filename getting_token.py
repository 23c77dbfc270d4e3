import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from storing_token import TokenStore


WB_URL = "https://www.wildberries.ru"
WB_LOGIN_URL = "https://www.wildberries.ru/security/login"
DEFAULT_PROFILE_DIR = Path.home() / ".config" / "wb-codes" / "browser"
DEFAULT_PAGE_LOAD_TIMEOUT = 30.0

TOKEN_DATA_KEY = "wbx__tokenData"
READ_TOKEN_DATA_SCRIPT = f"() => window.localStorage.getItem('{TOKEN_DATA_KEY}')"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)


class AutomationError(Exception):
    """Raised when the automated browser cannot open, script or close a page."""


class AutomationSurface(Protocol):
    async def open_hidden_page(self, url: str) -> Any: ...

    async def wait_for_load(self, page: Any, timeout: float) -> None: ...

    async def run_in_page(self, page: Any, script: str) -> Any: ...

    async def close_page(self, page: Any) -> None: ...


class PlaywrightSurface:
    """
    Hidden Chromium pages on top of a persistent browser profile.

    The profile directory keeps the wildberries.ru session (cookies and local
    storage) between runs, so a page opened here sees the same login the user
    made with ``--login``. The browser is launched on the first page request.
    """

    def __init__(
        self,
        profile_dir: str | Path | None = None,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.profile_dir = Path(profile_dir) if profile_dir else DEFAULT_PROFILE_DIR
        self.headless = headless
        self.user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._load_waiters: dict[Page, tuple[asyncio.Future, Any]] = {}

    async def __aenter__(self) -> "PlaywrightSurface":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _ensure_context(self) -> BrowserContext:
        if self._context is None:
            logger = logging.getLogger(__name__)
            logger.info(f"Launching browser with profile {self.profile_dir} (headless={self.headless})")
            self.profile_dir.mkdir(parents=True, exist_ok=True)
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self.profile_dir),
                headless=self.headless,
                user_agent=self.user_agent,
            )
        return self._context

    async def open_hidden_page(self, url: str) -> Page:
        try:
            context = await self._ensure_context()
            page = await context.new_page()
        except (PlaywrightError, OSError) as e:
            raise AutomationError(f"Could not open a browser page: {e}") from e

        loaded = asyncio.get_running_loop().create_future()

        def on_load(loaded_page: Page) -> None:
            # about:blank fires its own load before navigation starts
            if loaded_page.url.startswith("http") and not loaded.done():
                loaded.set_result(None)

        page.on("load", on_load)
        self._load_waiters[page] = (loaded, on_load)

        try:
            await page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            await self.close_page(page)
            raise AutomationError(f"Could not navigate to {url}: {e}") from e
        return page

    async def wait_for_load(self, page: Page, timeout: float) -> None:
        loaded, on_load = self._load_waiters[page]
        try:
            await asyncio.wait_for(loaded, timeout)
        finally:
            page.remove_listener("load", on_load)

    async def run_in_page(self, page: Page, script: str) -> Any:
        try:
            return await page.evaluate(script)
        except PlaywrightError as e:
            raise AutomationError(f"Script failed in {page.url}: {e}") from e

    async def close_page(self, page: Page) -> None:
        self._load_waiters.pop(page, None)
        try:
            await page.close()
        except PlaywrightError as e:
            raise AutomationError(f"Could not close page: {e}") from e

    async def close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError:
                pass
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def _parse_token_data(raw: Any) -> Optional[str]:
    """Pull the ``token`` field out of the ``wbx__tokenData`` JSON string."""
    logger = logging.getLogger(__name__)
    if not raw:
        logger.warning(f"No '{TOKEN_DATA_KEY}' entry in local storage. Is the browser profile signed in?")
        return None
    if not isinstance(raw, str):
        logger.warning(f"Unexpected '{TOKEN_DATA_KEY}' value of type {type(raw).__name__}")
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse '{TOKEN_DATA_KEY}' as JSON: {e}")
        return None

    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token.strip():
        logger.warning(f"'{TOKEN_DATA_KEY}' has no token field")
        return None
    return token.strip()


class TokenAcquirer:
    """
    Extract a fresh token from the wildberries.ru session in a hidden page.

    Steps: open the page, wait for its load event, read ``wbx__tokenData``
    from local storage, parse the token out of it. The page is closed on every
    path. A token found this way is saved to the store before it is returned.
    """

    def __init__(
        self,
        surface: AutomationSurface,
        store: TokenStore,
        url: str = WB_URL,
        load_timeout: float = DEFAULT_PAGE_LOAD_TIMEOUT,
    ):
        self.surface = surface
        self.store = store
        self.url = url
        self.load_timeout = load_timeout

    async def acquire(self) -> Optional[str]:
        logger = logging.getLogger(__name__)
        page = None
        try:
            logger.info(f"[1/4] Opening hidden page at {self.url}...")
            page = await self.surface.open_hidden_page(self.url)

            logger.info("[2/4] Waiting for page load...")
            await self.surface.wait_for_load(page, self.load_timeout)

            logger.info("[3/4] Reading token data from local storage...")
            raw = await self.surface.run_in_page(page, READ_TOKEN_DATA_SCRIPT)
        except asyncio.TimeoutError:
            logger.warning(f"Page {self.url} did not finish loading within {self.load_timeout}s")
            return None
        except AutomationError as e:
            logger.error(f"Error extracting token: {e}")
            return None
        finally:
            if page is not None:
                await self._close_page(page)

        logger.info("[4/4] Parsing token data...")
        token = _parse_token_data(raw)
        if token is None:
            return None

        try:
            self.store.save(token)
        except OSError as e:
            logger.error(f"Could not save token to {self.store.path}: {e}")
            return None
        logger.info(f"    Acquired token ({len(token)} chars).")
        return token

    async def _close_page(self, page: Any) -> None:
        logger = logging.getLogger(__name__)
        try:
            await self.surface.close_page(page)
        except AutomationError as e:
            logger.warning(f"{e}")


async def open_login_window(profile_dir: str | Path | None = None, url: str = WB_LOGIN_URL) -> None:
    """
    Open a visible browser on the persistent profile so the user can sign in.

    Returns once the user closes the window; the session stays in the profile
    for later hidden pages.
    """
    profile = Path(profile_dir) if profile_dir else DEFAULT_PROFILE_DIR
    profile.mkdir(parents=True, exist_ok=True)

    async with async_playwright() as p:
        context = await p.chromium.launch_persistent_context(
            user_data_dir=str(profile),
            headless=False,
            user_agent=DEFAULT_USER_AGENT,
        )
        page = context.pages[0] if context.pages else await context.new_page()
        await page.goto(url, wait_until="domcontentloaded")
        print("Sign in to wildberries.ru in the opened window, then close it.")
        await page.wait_for_event("close", timeout=0)
        try:
            await context.close()
        except PlaywrightError:
            pass
