import logging
from typing import Callable, Optional

from getting_token import TokenAcquirer
from storing_token import TokenStore


class TokenManager:
    """
    Hand out the current token: cached first, freshly acquired otherwise.

    A failed acquisition suppresses further attempts until ``reset()`` is
    called, so the polling loop does not launch a hidden page on every tick.
    ``on_acquisition_failed`` is called once when that happens; the polling
    controller wires its ``stop`` there.

    Each ``reset()`` starts a new session. An acquisition that began in an
    earlier session and fails after the reset does not suppress the new one.
    """

    def __init__(
        self,
        store: TokenStore,
        acquirer: TokenAcquirer,
        on_acquisition_failed: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.acquirer = acquirer
        self.on_acquisition_failed = on_acquisition_failed
        self._suppressed = False
        self._session = 0

    @property
    def suppressed(self) -> bool:
        return self._suppressed

    def reset(self) -> None:
        self._suppressed = False
        self._session += 1

    async def get_token(self) -> Optional[str]:
        logger = logging.getLogger(__name__)
        if self._suppressed:
            return None

        token = self.store.load()
        if token:
            return token

        session = self._session
        logger.info("No cached token, acquiring a new one from wildberries.ru")
        try:
            token = await self.acquirer.acquire()
        except Exception:
            logger.exception("Unexpected error during token acquisition")
            token = None

        if not token:
            if session != self._session:
                logger.info("Token acquisition from a previous polling session failed; ignoring")
                return None
            logger.warning("Token acquisition failed; no further attempts until polling restarts")
            self._suppressed = True
            if self.on_acquisition_failed is not None:
                self.on_acquisition_failed()
        return token

    def invalidate(self) -> None:
        logging.getLogger(__name__).info("Clearing cached token")
        self.store.clear()
