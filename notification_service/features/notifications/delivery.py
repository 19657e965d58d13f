"""Delivery engine: the attempt/retry/backoff loop for one channel.

Every attempt is a row in the delivery table. A row is inserted as
``pending`` right before the handler is called and updated in place to
``sent`` or ``failed`` right after, each write in its own transaction, so
the chain on disk is a complete history even if the process dies between
attempts.

Attempt chain for a channel with ``retries=2`` that always fails::

    id=A  retry_of=None  retries_left=2  status=failed
    id=B  retry_of=A     retries_left=1  status=failed
    id=C  retry_of=B     retries_left=0  status=failed  -> DeliveryError(C)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
import time
from typing import TYPE_CHECKING

from notification_service.core.database import new_id, utc_now
from notification_service.features.notifications.channels.base import ChannelSendParams
from notification_service.features.notifications.exceptions import (
    ConfigurationError,
    DeliveryError,
)
from notification_service.features.notifications.metrics import (
    notification_delivery_attempts_total,
    notification_delivery_duration_seconds,
    notification_delivery_exhausted_total,
)
from notification_service.features.notifications.models import DeliveryStatus
from notification_service.infra.logging import get_lazy_logger, get_logger

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_service.features.notifications.channels.base import ChannelHandler
    from notification_service.features.notifications.definitions import ChannelContent

DEFAULT_BACKOFF_DELAYS_MS: tuple[int, ...] = (1000, 5000, 15000, 30000, 60000)

Sleep = Callable[[float], Awaitable[object]]

logger = get_logger(__name__)
_lazy = get_lazy_logger(__name__)


def validate_backoff_delays(delays: Sequence[int] | None) -> tuple[int, ...]:
    """Return delays as a tuple, or the default progression when None.

    Raises:
        ConfigurationError: If the list is empty or holds a negative value.
    """
    if delays is None:
        return DEFAULT_BACKOFF_DELAYS_MS
    resolved = tuple(delays)
    if not resolved:
        msg = "backoff_delays must contain at least one value"
        raise ConfigurationError(msg)
    if any(delay < 0 for delay in resolved):
        msg = "backoff_delays must be non-negative"
        raise ConfigurationError(msg, extra={"backoff_delays": list(resolved)})
    return resolved


def backoff_delay_ms(delays: Sequence[int], attempt: int) -> int:
    """Delay after failed ``attempt`` (0-based); clamps to the last value."""
    return delays[min(attempt, len(delays) - 1)]


@dataclass(frozen=True)
class DeliveryOutcome:
    """Successful delivery on one channel.

    Attributes:
        attempt_id: Id of the ``sent`` row
        external_id: Id reported by the channel handler, if any
        attempts: Number of attempts it took (1 = first try)
    """

    attempt_id: str
    external_id: str | None
    attempts: int


class DeliveryEngine:
    """Drives delivery of one notification on one channel.

    Example:
        engine = DeliveryEngine(db_engine, delivery_table, backoff_delays=[0])
        outcome = await engine.deliver(
            handler=handler,
            channel="email",
            retries=3,
            user_id="user-1",
            notification_type="welcome",
            content=EmailContent(subject="Hi", html="<p>Hi</p>"),
            recipient_email="user@example.com",
        )
    """

    def __init__(
        self,
        engine: AsyncEngine,
        table: Table,
        backoff_delays: Sequence[int] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._table = table
        self._backoff_delays = validate_backoff_delays(backoff_delays)
        self._sleep = sleep

    @property
    def backoff_delays(self) -> tuple[int, ...]:
        return self._backoff_delays

    async def deliver(
        self,
        *,
        handler: ChannelHandler,
        channel: str,
        retries: int,
        user_id: str | None,
        notification_type: str,
        content: ChannelContent,
        recipient_email: str | None = None,
    ) -> DeliveryOutcome:
        """Run the attempt loop until success or exhaustion.

        Args:
            handler: Channel handler to call
            channel: Channel name recorded on each row
            retries: Attempts allowed beyond the first
            user_id: Target user, or None
            notification_type: Definition key
            content: Validated content; snapshotted on every row
            recipient_email: Address for the email channel

        Returns:
            DeliveryOutcome for the successful attempt

        Raises:
            DeliveryError: When every attempt failed. ``__cause__`` is the
                last handler error.
        """
        max_attempts = retries + 1
        snapshot = content.model_dump(mode="json")
        params = ChannelSendParams(
            user_id=user_id,
            notification_type=notification_type,
            content=content,
            recipient_email=recipient_email,
        )
        log = logger.bind(channel=channel, notification_type=notification_type)

        previous_id: str | None = None
        last_error: Exception | None = None
        last_message = ""

        for attempt in range(max_attempts):
            attempt_id = new_id()
            await self._insert_pending(
                attempt_id=attempt_id,
                user_id=user_id,
                notification_type=notification_type,
                channel=channel,
                content=snapshot,
                retry_of=previous_id,
                retries_left=max_attempts - attempt - 1,
                recipient_email=recipient_email,
            )

            start = time.perf_counter()
            try:
                result = await handler.send(params)
            except Exception as exc:
                notification_delivery_duration_seconds.labels(channel=channel).observe(
                    time.perf_counter() - start
                )
                last_error = exc
                last_message = str(exc) or exc.__class__.__name__
                await self._mark_failed(attempt_id, last_message)
                notification_delivery_attempts_total.labels(
                    channel=channel, status=DeliveryStatus.FAILED.value
                ).inc()
                log.warning(
                    "Delivery attempt failed",
                    extra={
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "delivery_id": attempt_id,
                        "error": last_message,
                    },
                )
                previous_id = attempt_id

                if attempt < max_attempts - 1:
                    delay_ms = backoff_delay_ms(self._backoff_delays, attempt)
                    await self._sleep(delay_ms / 1000)
                continue

            notification_delivery_duration_seconds.labels(channel=channel).observe(
                time.perf_counter() - start
            )
            await self._mark_sent(attempt_id, result.external_id)
            notification_delivery_attempts_total.labels(
                channel=channel, status=DeliveryStatus.SENT.value
            ).inc()
            _lazy.debug(
                lambda: f"delivery.deliver({channel=}, {notification_type=}) sent on attempt "
                f"{attempt + 1}/{max_attempts} -> {result.external_id}"
            )
            return DeliveryOutcome(
                attempt_id=attempt_id,
                external_id=result.external_id,
                attempts=attempt + 1,
            )

        assert previous_id is not None
        notification_delivery_exhausted_total.labels(channel=channel).inc()
        log.error(
            "Delivery exhausted all attempts",
            extra={"attempts": max_attempts, "delivery_id": previous_id, "error": last_message},
        )
        msg = f'Delivery failed after {max_attempts} attempt(s) on channel "{channel}": {last_message}'
        raise DeliveryError(previous_id, msg) from last_error

    async def _insert_pending(
        self,
        *,
        attempt_id: str,
        user_id: str | None,
        notification_type: str,
        channel: str,
        content: dict,
        retry_of: str | None,
        retries_left: int,
        recipient_email: str | None,
    ) -> None:
        now = utc_now()
        async with self._engine.begin() as conn:
            await conn.execute(
                self._table.insert().values(
                    id=attempt_id,
                    user_id=user_id,
                    type=notification_type,
                    channel=channel,
                    status=DeliveryStatus.PENDING.value,
                    content=content,
                    retry_of=retry_of,
                    retries_left=retries_left,
                    recipient_email=recipient_email,
                    created_at=now,
                    updated_at=now,
                )
            )

    async def _mark_sent(self, attempt_id: str, external_id: str | None) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                self._table.update()
                .where(self._table.c.id == attempt_id)
                .values(
                    status=DeliveryStatus.SENT.value,
                    external_id=external_id,
                    updated_at=utc_now(),
                )
            )

    async def _mark_failed(self, attempt_id: str, error: str) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                self._table.update()
                .where(self._table.c.id == attempt_id)
                .values(
                    status=DeliveryStatus.FAILED.value,
                    error=error,
                    updated_at=utc_now(),
                )
            )
