import asyncio
import logging
from typing import Callable, Optional

from fetching_codes import BoardState, CodeFetcher
from managing_token import TokenManager


DEFAULT_POLL_INTERVAL = 1.0


class PollingController:
    """
    Run a fetch immediately on ``start()`` and then once per interval.

    Ticks never overlap: a tick that comes due while the previous fetch is
    still in flight is skipped. ``stop()`` only cancels the timer, so a fetch
    (or token acquisition) already in flight runs to completion and still
    renders its result.
    """

    def __init__(
        self,
        fetcher: CodeFetcher,
        tokens: TokenManager,
        render: Callable[[BoardState], None],
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.fetcher = fetcher
        self.tokens = tokens
        self.render = render
        self.interval = interval
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        logger = logging.getLogger(__name__)
        if self._timer is not None:
            return
        logger.info(f"Polling started (every {self.interval}s)")
        self.tokens.reset()
        self._tick()
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    def stop(self) -> None:
        if self._timer is None:
            return
        logging.getLogger(__name__).info("Polling stopped")
        timer, self._timer = self._timer, None
        timer.cancel()

    async def wait_idle(self) -> None:
        """Wait for the fetch in flight, if any, to finish."""
        if self._in_flight is not None:
            await asyncio.gather(self._in_flight, return_exceptions=True)

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self._tick()
            next_tick += self.interval
            # skip ticks missed while the loop was busy
            now = loop.time()
            if next_tick < now:
                next_tick = now + self.interval

    def _tick(self) -> None:
        logger = logging.getLogger(__name__)
        if self._in_flight is not None and not self._in_flight.done():
            logger.debug("Previous fetch still in flight, skipping tick")
            return
        self._in_flight = asyncio.get_running_loop().create_task(self._poll_once())

    async def _poll_once(self) -> None:
        logger = logging.getLogger(__name__)
        try:
            state = await self.fetcher.fetch()
        except Exception:
            logger.exception("Unexpected error during poll cycle")
            state = BoardState.error()
        self.render(state)
