"""Tests for token acquisition through the automation surface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from getting_token import READ_TOKEN_DATA_SCRIPT, TOKEN_DATA_KEY, WB_URL, AutomationError, TokenAcquirer, _parse_token_data
from storing_token import TokenStore
from tests.conftest import TOKEN, FakeSurface, token_data


@pytest.mark.asyncio
async def test_acquire_returns_token_and_saves_it(store: TokenStore) -> None:
    surface = FakeSurface(raw=token_data(TOKEN))
    acquirer = TokenAcquirer(surface, store)

    assert await acquirer.acquire() == TOKEN
    assert store.load() == TOKEN


@pytest.mark.asyncio
async def test_acquire_runs_steps_in_order(store: TokenStore) -> None:
    surface = FakeSurface(raw=token_data(TOKEN))
    await TokenAcquirer(surface, store, load_timeout=5).acquire()

    assert surface.calls == ["open", "wait_for_load", "run_in_page", "close"]
    assert surface.load_timeouts == [5]
    assert surface.closed[0].url == WB_URL


def test_read_script_targets_token_data_entry() -> None:
    assert f"localStorage.getItem('{TOKEN_DATA_KEY}')" in READ_TOKEN_DATA_SCRIPT
    assert TOKEN_DATA_KEY == "wbx__tokenData"


@pytest.mark.asyncio
async def test_missing_entry_returns_none_and_closes_page(store: TokenStore) -> None:
    surface = FakeSurface(raw=None)

    assert await TokenAcquirer(surface, store).acquire() is None
    assert surface.calls[-1] == "close"
    assert store.load() is None


@pytest.mark.asyncio
async def test_script_error_returns_none_and_closes_page(
    store: TokenStore, automation_error: AutomationError
) -> None:
    surface = FakeSurface(run_error=automation_error)

    assert await TokenAcquirer(surface, store).acquire() is None
    assert surface.calls == ["open", "wait_for_load", "run_in_page", "close"]


@pytest.mark.asyncio
async def test_load_timeout_returns_none_and_closes_page(
    store: TokenStore, timeout_error: asyncio.TimeoutError
) -> None:
    surface = FakeSurface(raw=token_data(TOKEN), load_error=timeout_error)

    assert await TokenAcquirer(surface, store).acquire() is None
    assert surface.calls == ["open", "wait_for_load", "close"]
    assert store.load() is None


@pytest.mark.asyncio
async def test_open_failure_returns_none_without_close(
    store: TokenStore, automation_error: AutomationError
) -> None:
    surface = FakeSurface(open_error=automation_error)

    assert await TokenAcquirer(surface, store).acquire() is None
    assert surface.calls == ["open"]


@pytest.mark.asyncio
async def test_close_failure_does_not_hide_token(store: TokenStore) -> None:
    surface = FakeSurface(raw=token_data(TOKEN))

    async def failing_close(page: object) -> None:
        raise AutomationError("Target page, context or browser has been closed")

    surface.close_page = failing_close  # type: ignore[method-assign]

    assert await TokenAcquirer(surface, store).acquire() == TOKEN


@pytest.mark.asyncio
async def test_invalid_json_returns_none(store: TokenStore) -> None:
    surface = FakeSurface(raw="{broken")

    assert await TokenAcquirer(surface, store).acquire() is None
    assert surface.calls[-1] == "close"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "null",
        "[]",
        json.dumps({"info": {}}),
        json.dumps({"token": ""}),
        json.dumps({"token": 123}),
        42,
    ],
)
def test_parse_token_data_rejects_unusable_values(raw: object) -> None:
    assert _parse_token_data(raw) is None


def test_parse_token_data_strips_whitespace() -> None:
    assert _parse_token_data(json.dumps({"token": f"  {TOKEN}\n"})) == TOKEN


class ReadOnlyStore(TokenStore):
    def save(self, token: str | None) -> None:
        raise PermissionError(13, "Permission denied", str(self.path))


@pytest.mark.asyncio
async def test_unsavable_token_returns_none(tmp_path: Path) -> None:
    surface = FakeSurface(raw=token_data(TOKEN))

    assert await TokenAcquirer(surface, ReadOnlyStore(tmp_path / "token.json")).acquire() is None
    assert surface.calls[-1] == "close"
