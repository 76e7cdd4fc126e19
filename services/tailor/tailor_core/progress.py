from __future__ import annotations

import asyncio
from typing import Callable, Optional

from libs.core import logging as core_logging
from libs.core.models import StreamChunk

LOGGER = core_logging.get_logger("tailor")

ProgressCallback = Callable[[StreamChunk], None]

COMPLETED_MESSAGE = "Experience tailored!"


def _deliver(callback: Optional[ProgressCallback], chunk: StreamChunk) -> None:
    if callback is None:
        return
    try:
        callback(chunk)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("progress_callback_failed", error=str(exc))


def emit_progress(callback: Optional[ProgressCallback], content: str, *, done: bool = False) -> None:
    _deliver(callback, StreamChunk(content=content, done=done))


def emit_reasoning(callback: Optional[ProgressCallback], reasoning: str) -> None:
    if reasoning:
        _deliver(callback, StreamChunk(reasoning=reasoning))


class QueueProgress:
    """Progress callback that buffers chunks for an async consumer."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Optional[StreamChunk]] = asyncio.Queue()

    def __call__(self, chunk: StreamChunk) -> None:
        self.queue.put_nowait(chunk)

    def close(self) -> None:
        self.queue.put_nowait(None)
