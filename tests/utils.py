"""Test utilities and helper functions.

Fakes for channel plugins and the backoff sleep, plus helpers for reading
notification rows back out of the database.

Usage:
    from tests.utils import FakeChannel, FakeHandler, fetch_rows

    handler = FakeHandler(failures=2)
    channel = FakeChannel("email", handler, retries=3)
    rows = await fetch_rows(db_engine, tables["notification_delivery"])
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from notification_service.features.notifications import (
    ChannelKind,
    ChannelSendParams,
    ChannelSendResult,
)

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_service.features.notifications import ChannelInitContext


class RecordingSleep:
    """Async sleep stand-in that records the seconds it was asked to wait."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeHandler:
    """Channel handler failing the first ``failures`` calls, then succeeding.

    Pass ``failures=None`` to fail forever.
    """

    def __init__(
        self,
        failures: int | None = 0,
        error: Exception | None = None,
        external_id: str | None = "ext-1",
    ) -> None:
        self.failures = failures
        self.error = error
        self.external_id = external_id
        self.calls: list[ChannelSendParams] = []

    async def send(self, params: ChannelSendParams) -> ChannelSendResult:
        self.calls.append(params)
        if self.failures is None or len(self.calls) <= self.failures:
            raise self.error or RuntimeError(f"attempt {len(self.calls)} failed")
        return ChannelSendResult(external_id=self.external_id)


class FakeChannel:
    """Channel plugin returning a fixed handler and counting ``init`` calls."""

    def __init__(self, name: str, handler: Any, retries: int = 0) -> None:
        self.name = ChannelKind(name)
        self.retries = retries
        self.handler = handler
        self.init_calls = 0

    def init(self, context: ChannelInitContext) -> Any:
        self.init_calls += 1
        return self.handler


async def fetch_rows(engine: AsyncEngine, table: Table, **filters: Any) -> list[dict[str, Any]]:
    """Return rows of ``table`` matching equality ``filters`` as plain dicts."""
    stmt = select(table)
    for column, value in filters.items():
        stmt = stmt.where(table.c[column] == value)
    async with engine.connect() as conn:
        result = await conn.execute(stmt)
        return [dict(row) for row in result.mappings().all()]


def delivery_chain(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order delivery rows by following ``retry_of`` from the first attempt."""
    by_parent = {row["retry_of"]: row for row in rows}
    chain: list[dict[str, Any]] = []
    current = by_parent.get(None)
    while current is not None:
        chain.append(current)
        current = by_parent.get(current["id"])
    return chain
