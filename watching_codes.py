import argparse
import asyncio
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx
from dotenv import load_dotenv

from fetching_codes import DEFAULT_REQUEST_TIMEOUT, CodeFetcher
from getting_token import DEFAULT_PAGE_LOAD_TIMEOUT, DEFAULT_PROFILE_DIR, PlaywrightSurface, TokenAcquirer, open_login_window
from managing_token import TokenManager
from polling_codes import DEFAULT_POLL_INTERVAL, PollingController
from rendering_codes import CodeBoard
from storing_token import DEFAULT_TOKEN_CACHE_PATH, TokenStore


DEFAULT_LOG_FILE = "wb_codes_log.txt"

HELP_TEXT = "Type a card number and Enter to copy it, 'r' to restart polling, 'q' to quit."


@dataclass
class Settings:
    token_cache_path: Path
    profile_dir: Path
    headless: bool
    poll_interval: float
    page_load_timeout: float
    request_timeout: float
    log_file: str


def load_settings() -> Settings:
    """Read settings from the environment (and a .env file, if present)."""
    load_dotenv()
    return Settings(
        token_cache_path=Path(os.getenv("WB_TOKEN_CACHE_PATH") or DEFAULT_TOKEN_CACHE_PATH).expanduser(),
        profile_dir=Path(os.getenv("WB_BROWSER_PROFILE_DIR") or DEFAULT_PROFILE_DIR).expanduser(),
        headless=os.getenv("HEADLESS", "true").lower() != "false",
        poll_interval=float(os.getenv("WB_POLL_INTERVAL") or DEFAULT_POLL_INTERVAL),
        page_load_timeout=float(os.getenv("WB_PAGE_LOAD_TIMEOUT") or DEFAULT_PAGE_LOAD_TIMEOUT),
        request_timeout=float(os.getenv("WB_REQUEST_TIMEOUT") or DEFAULT_REQUEST_TIMEOUT),
        log_file=os.getenv("WB_LOG_FILE") or DEFAULT_LOG_FILE,
    )


def setup_logging(log_filename: str = DEFAULT_LOG_FILE, verbose: bool = False):
    """
    Set up logging to a user-specified file and the console.

    The console only gets warnings unless ``verbose`` is set, so log lines do
    not bury the code board.

    Args:
        log_filename (str): Path to the log file. Defaults to "wb_codes_log.txt".
        verbose (bool): Also show INFO and DEBUG messages on the console.
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    file_handler = logging.FileHandler(log_filename, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, on_line: Callable[[str], None]) -> None:
    """Forward stdin lines to ``on_line`` on the event loop from a daemon thread."""

    def read_stdin() -> None:
        if not sys.stdin or not sys.stdin.isatty():
            return
        for line in sys.stdin:
            loop.call_soon_threadsafe(on_line, line.strip())

    threading.Thread(target=read_stdin, daemon=True).start()


def handle_command(command: str, board: CodeBoard, controller: PollingController, quit_event: asyncio.Event) -> None:
    if not command:
        return
    if command.lower() == "q":
        quit_event.set()
    elif command.lower() == "r":
        controller.stop()
        controller.start()
    elif command.isdigit():
        if not board.copy_card(int(command)):
            print(f"Could not copy card {command}")
    else:
        print(HELP_TEXT)


async def watch_codes(settings: Settings, once: bool = False, forget_token: bool = False) -> int:
    logger = logging.getLogger(__name__)
    store = TokenStore(settings.token_cache_path)
    if forget_token:
        store.clear()

    board = CodeBoard()

    async with PlaywrightSurface(settings.profile_dir, headless=settings.headless) as surface:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            acquirer = TokenAcquirer(surface, store, load_timeout=settings.page_load_timeout)
            tokens = TokenManager(store, acquirer)
            fetcher = CodeFetcher(tokens, client)

            if once:
                board.render(await fetcher.fetch())
                return 0

            controller = PollingController(fetcher, tokens, board.render, interval=settings.poll_interval)
            tokens.on_acquisition_failed = controller.stop

            quit_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, quit_event.set)
                except (NotImplementedError, RuntimeError):
                    pass  # Windows: Ctrl+C arrives as KeyboardInterrupt

            print(HELP_TEXT)
            _start_stdin_reader(loop, lambda line: handle_command(line, board, controller, quit_event))

            controller.start()
            try:
                await quit_event.wait()
            finally:
                controller.stop()
                await controller.wait_idle()
                logger.info("Shutting down")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Show Wildberries verification codes from your account notifications"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch codes a single time, print them and exit",
    )
    parser.add_argument(
        "--forget-token",
        action="store_true",
        help="Drop the cached token before starting",
    )
    parser.add_argument(
        "--login",
        action="store_true",
        help="Open a visible browser to sign in to wildberries.ru, then exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show informational log messages on the console",
    )
    args = parser.parse_args(argv)

    settings = load_settings()
    setup_logging(settings.log_file, verbose=args.verbose)

    if args.login:
        asyncio.run(open_login_window(settings.profile_dir))
        return 0

    try:
        return asyncio.run(watch_codes(settings, once=args.once, forget_token=args.forget_token))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
