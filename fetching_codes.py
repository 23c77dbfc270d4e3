import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import httpx

from managing_token import TokenManager


NOTICE_URL = "https://wbx-bell-v3.wildberries.ru/shard-proxy/api/v3/notice/get?app_type=web"
JWT_INVALID_ERROR = "JWT is invalid"
MAX_AUTH_RETRIES = 1
DEFAULT_REQUEST_TIMEOUT = 10.0

# JS-style \b and \d: ASCII digits only, no match inside longer digit runs
CODE_REGEX = re.compile(r"\b\d{6}\b", re.ASCII)

UNAUTHENTICATED = "unauthenticated"
ERROR = "error"
EMPTY = "empty"
CODES = "codes"


@dataclass(frozen=True)
class Code:
    value: str
    timestamp: int  # nanoseconds since the epoch


@dataclass(frozen=True)
class BoardState:
    """What the content region should show after one poll cycle."""

    kind: str
    codes: tuple[Code, ...] = field(default_factory=tuple)

    @classmethod
    def unauthenticated(cls) -> "BoardState":
        return cls(UNAUTHENTICATED)

    @classmethod
    def error(cls) -> "BoardState":
        return cls(ERROR)

    @classmethod
    def from_codes(cls, codes: Iterable[Code]) -> "BoardState":
        codes = tuple(codes)
        return cls(CODES, codes) if codes else cls(EMPTY)


class NoticeEnvelopeError(ValueError):
    """Raised when the notice response is not the expected JSON envelope."""


@dataclass
class NoticeEnvelope:
    result: int
    error: Optional[str] = None
    payload: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "NoticeEnvelope":
        if not isinstance(data, dict):
            raise NoticeEnvelopeError(f"Expected a JSON object, got {type(data).__name__}")
        result = data.get("result")
        if not isinstance(result, int) or isinstance(result, bool):
            raise NoticeEnvelopeError(f"Missing or non-integer 'result': {result!r}")
        payload = data.get("payload") or []
        if not isinstance(payload, list):
            raise NoticeEnvelopeError(f"'payload' is not a list: {type(payload).__name__}")
        error = data.get("error")
        return cls(result=result, error=error if isinstance(error, str) else None, payload=payload)


def extract_codes(notifications: Iterable[Any]) -> list[Code]:
    """
    Pull the first six-digit code out of each notification text.

    Notifications without a code (or without usable ``text``/``dt``) are
    dropped. The result is newest first; notifications with equal timestamps
    keep their original order.
    """
    codes = []
    for notification in notifications:
        if not isinstance(notification, dict):
            continue
        text = notification.get("text")
        dt = notification.get("dt")
        if not isinstance(text, str) or not isinstance(dt, int) or isinstance(dt, bool):
            continue
        m = CODE_REGEX.search(text)
        if m:
            codes.append(Code(value=m.group(0), timestamp=dt))

    codes.sort(key=lambda c: c.timestamp, reverse=True)
    return codes


class CodeFetcher:
    """
    One poll cycle against the Wildberries notification API.

    A response with ``error == "JWT is invalid"`` clears the cached token and
    the request is repeated once with whatever token the manager hands out
    next, which may mean a fresh acquisition. Every other failure becomes an
    ``error`` board state; the next tick is the retry.
    """

    def __init__(self, tokens: TokenManager, client: httpx.AsyncClient, url: str = NOTICE_URL):
        self.tokens = tokens
        self.client = client
        self.url = url

    async def fetch(self) -> BoardState:
        logger = logging.getLogger(__name__)

        for attempt in range(MAX_AUTH_RETRIES + 1):
            token = await self.tokens.get_token()
            if not token:
                return BoardState.unauthenticated()

            try:
                envelope = await self._post_notice_request(token)
            except httpx.RequestError as e:
                logger.error(f"Fetch error: {e}")
                return BoardState.error()
            except ValueError as e:
                logger.error(f"Could not parse notice response: {e}")
                return BoardState.error()

            if envelope.result == 0:
                codes = extract_codes(envelope.payload)
                logger.debug(f"Received {len(envelope.payload)} notifications, {len(codes)} with codes")
                return BoardState.from_codes(codes)

            logger.error(f"API error: result={envelope.result} error={envelope.error!r}")
            if envelope.error == JWT_INVALID_ERROR and attempt < MAX_AUTH_RETRIES:
                self.tokens.invalidate()
                continue
            return BoardState.error()

        return BoardState.error()

    async def _post_notice_request(self, token: str) -> NoticeEnvelope:
        resp = await self.client.post(
            self.url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            json={},
        )
        return NoticeEnvelope.from_dict(resp.json())
