"""Serial command dispatch onto the shared write channel."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from .config import DeviceConfig
from .exceptions import BledomError, LinkClosedError, LinkLostError, WriteFailureError
from .link import PeripheralLink
from .protocol import frame_to_hex

_LOGGER = logging.getLogger(__name__)


@dataclass
class QueuedCommand:
    """One unit of work: a frame builder plus the caller's result future."""

    description: str
    build_frame: Callable[[], bytes]
    future: asyncio.Future
    on_success: Callable[[], None] | None = field(default=None, repr=False)


class CommandQueue:
    """FIFO of commands with a single active slot.

    A command is started only once the previous one has resolved, so the
    peripheral never sees interleaved or reordered frames.  A command that
    fails terminally resolves its own future with the error; the commands
    behind it still run.
    """

    def __init__(self, link: PeripheralLink, config: DeviceConfig) -> None:
        self._link = link
        self._config = config
        self._name = config.display_name
        self._pending: deque[QueuedCommand] = deque()
        self._active: QueuedCommand | None = None
        self._worker: asyncio.Task | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self._pending) + (1 if self._active else 0)

    @property
    def active(self) -> QueuedCommand | None:
        return self._active

    def submit(
        self,
        description: str,
        build_frame: Callable[[], bytes],
        on_success: Callable[[], None] | None = None,
    ) -> asyncio.Future:
        """Queue a command and return a future resolved with the sent frame.

        ``build_frame`` runs when the command reaches the head of the queue,
        after the link is ready.  ``on_success`` runs right before the future
        resolves, and only if the frame was written.
        """
        if self._closed:
            raise LinkClosedError(f"{self._name}: command queue is closed")
        loop = asyncio.get_running_loop()
        command = QueuedCommand(description, build_frame, loop.create_future(), on_success)
        self._pending.append(command)
        _LOGGER.debug("%s: Queued %s (%s pending)", self._name, description, len(self._pending))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())
        return command.future

    async def _run(self) -> None:
        while self._pending:
            command = self._pending.popleft()
            if command.future.cancelled():
                _LOGGER.debug("%s: Skipping cancelled %s", self._name, command.description)
                continue
            self._active = command
            try:
                frame = await self._execute(command)
            except asyncio.CancelledError:
                if not command.future.done():
                    command.future.set_exception(
                        LinkClosedError(f"{self._name}: {command.description} was cancelled")
                    )
                raise
            except BledomError as ex:
                _LOGGER.error("%s: %s failed: %s", self._name, command.description, ex)
                if not command.future.done():
                    command.future.set_exception(ex)
                if self._link.is_ready:
                    self._link.idle_timer.reset()
            except Exception as ex:
                _LOGGER.exception("%s: Unexpected error in %s: %s", self._name, command.description, ex)
                if not command.future.done():
                    command.future.set_exception(ex)
            else:
                if command.on_success is not None:
                    command.on_success()
                if not command.future.done():
                    command.future.set_result(frame)
            finally:
                self._active = None

    async def _execute(self, command: QueuedCommand) -> bytes:
        max_attempts = self._config.max_write_attempts
        channel = await self._link.ensure_ready()
        frame = command.build_frame()
        last_error: BledomError | None = None
        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self._config.write_backoff)
                # Re-runs discovery/connect if the link dropped meanwhile
                channel = await self._link.ensure_ready()
            _LOGGER.debug(
                "%s: Sending %s command: %s", self._name, command.description, frame_to_hex(frame)
            )
            try:
                if await self._link.write(channel, frame):
                    self._link.idle_timer.reset()
                    return frame
                last_error = WriteFailureError(
                    f"{self._name}: transport rejected {command.description}", attempts=attempt
                )
            except LinkLostError as ex:
                last_error = ex
            if attempt >= max_attempts:
                break
            _LOGGER.warning(
                "%s: Write error for %s (%s/%s), retrying in %ss: %s",
                self._name,
                command.description,
                attempt,
                max_attempts,
                self._config.write_backoff,
                last_error,
            )
        raise WriteFailureError(
            f"{self._name}: {command.description} failed after {max_attempts} attempts",
            attempts=max_attempts,
        ) from last_error

    async def close(self) -> None:
        """Fail everything still queued and stop the worker."""
        self._closed = True
        while self._pending:
            command = self._pending.popleft()
            if not command.future.done():
                command.future.set_exception(
                    LinkClosedError(f"{self._name}: {command.description} dropped, device stopped")
                )
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
