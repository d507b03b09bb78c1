"""
Log aggregation for container output.

Instances push parsed :class:`LogLine` objects into a bounded queue; a single
sink task drains the queue and renders the lines.
"""
import asyncio
import codecs
import re
from typing import Callable, List, Optional, Tuple

import click

from ..MODELS.instance_state import LogLine
from ..UTILS.logger import get_logger

logger = get_logger(__name__)

TIMESTAMP = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}"
# Multiplexing headers and other binary debris in front of the timestamp
_PREFIX_ARTIFACTS = re.compile(r"^[^\x20-\x7E]*(?=" + TIMESTAMP + r")")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f\ufffd]")
_LEADING_TIMESTAMP = re.compile(r"^(" + TIMESTAMP + r"(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)\s?(.*)$")


def clean_line(line: str) -> str:
    """
    Strips non-printable prefix artifacts before a leading ISO-8601 timestamp,
    then every remaining control character.
    """
    line = _PREFIX_ARTIFACTS.sub("", line)
    line = _CONTROL_CHARS.sub("", line)
    return line.rstrip()


def split_timestamp(line: str) -> Tuple[Optional[str], str]:
    """
    Splits ``2024-01-01T00:00:00.123Z message`` into its timestamp and message.
    """
    match = _LEADING_TIMESTAMP.match(line)
    if not match:
        return None, line
    return match.group(1), match.group(2)


class LineSplitter:
    """
    Reassembles lines from byte chunks that may end mid-line or in the middle
    of a multi-byte character.
    """
    def __init__(self):
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes) -> List[str]:
        text = self._pending + self._decoder.decode(chunk)
        parts = re.split(r"\r?\n|\r", text)
        self._pending = parts.pop()
        return [line for line in (clean_line(p) for p in parts) if line.strip()]

    def flush(self) -> List[str]:
        pending, self._pending = self._pending + self._decoder.decode(b"", final=True), ""
        line = clean_line(pending)
        return [line] if line.strip() else []


def echo_sink(line: LogLine) -> None:
    click.echo(line.render())


class LogAggregator:
    """
    Consumes log lines from every streaming instance and forwards them to a sink.
    """
    def __init__(self, sink: Optional[Callable[[LogLine], None]] = None, max_queue: int = 1000):
        """
        :param sink: Callable receiving each line; defaults to echoing on stdout.
        :param max_queue: Bound of the line queue. Producers wait when it is full.
        """
        self.sink = sink or echo_sink
        self.max_queue = max_queue
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """
        Starts the sink task. Must be called from a running event loop.
        """
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_queue)
        self._task = asyncio.get_running_loop().create_task(self._consume())

    async def publish(self, line: LogLine) -> None:
        if self._queue is None:
            self.start()
        await self._queue.put(line)

    async def _consume(self) -> None:
        while True:
            line = await self._queue.get()
            try:
                if line is None:
                    return
                self.sink(line)
            except Exception as e:  # sink errors are logged, never raised
                logger.warning("Log sink failed: %s", e)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """
        Drains lines already queued, then stops the sink task.
        """
        if not self.running:
            return
        await self._queue.put(None)
        await self._task
        self._task = None
        self._queue = None
