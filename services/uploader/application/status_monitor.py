"""Background observation of job-status events for one stream."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging

from services.uploader.application.interfaces import StatusChannel
from services.uploader.domain.status import StatusEvent, is_terminal_payload

logger = logging.getLogger(__name__)


def parse_status_message(raw: str | bytes, stream_id: str) -> StatusEvent | None:
    """Decode one channel message; ``None`` means it belongs to another stream."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return StatusEvent(stream_id=stream_id, raw=raw)
    if not isinstance(payload, dict):
        return StatusEvent(stream_id=stream_id, raw=raw)
    keyed_to = payload.get("streamId")
    if keyed_to is not None and str(keyed_to) != stream_id:
        return None
    return StatusEvent(
        stream_id=stream_id,
        raw=raw,
        payload=payload,
        terminal=is_terminal_payload(payload),
    )


class StatusChannelMonitor:
    """Runs a StatusChannel in a background task and records its events.

    Failures of the channel are logged and end the monitor; they are never
    raised to the caller.
    """

    def __init__(self, channel: StatusChannel, stream_id: str) -> None:
        self._channel = channel
        self._stream_id = stream_id
        self._task: asyncio.Task | None = None
        self._terminal = asyncio.Event()
        self.received: list[StatusEvent] = []

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def terminal_seen(self) -> bool:
        return self._terminal.is_set()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._listen(), name=f"status-channel:{self._stream_id}"
            )

    async def wait_for_terminal(self, timeout: float) -> bool:
        if self._task is None:
            return False
        terminal = asyncio.create_task(self._terminal.wait())
        try:
            await asyncio.wait(
                {terminal, self._task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            terminal.cancel()
        return self._terminal.is_set()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _listen(self) -> None:
        try:
            async with contextlib.aclosing(self._channel.messages()) as messages:
                async for raw in messages:
                    event = parse_status_message(raw, self._stream_id)
                    if event is None:
                        continue
                    self.received.append(event)
                    logger.info(
                        "Status for %s: %s", self._stream_id, event.status or event.raw
                    )
                    if event.terminal:
                        self._terminal.set()
                        return
            logger.info("Status channel for %s closed by remote", self._stream_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Status channel for %s failed: %s: %s",
                self._stream_id,
                type(exc).__name__,
                exc,
            )
