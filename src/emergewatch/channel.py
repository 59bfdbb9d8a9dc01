"""Single-slot channel between the job tracker and its consumer."""

import threading
from queue import Full, Queue

from emergewatch.errors import ChannelClosedError
from emergewatch.models import ActiveJobTable


class JobTableChannel:
    """
    Carries job table copies from the tracker thread to one consumer.

    Holds at most one pending table. ``send`` blocks while the slot is taken,
    so a slow consumer throttles the tracker instead of losing updates. The
    consumer closes the channel when it goes away, after which ``send``
    raises ChannelClosedError.
    """

    def __init__(self, wake_interval: float = 0.2) -> None:
        """
        Initialize the JobTableChannel.

        Args:
            wake_interval: How often a blocked sender rechecks for closing.
        """
        self._queue: Queue[ActiveJobTable] = Queue(maxsize=1)
        self._closed = threading.Event()
        self._wake_interval = wake_interval

    @property
    def closed(self) -> bool:
        """Check if the receiving side has closed the channel."""
        return self._closed.is_set()

    def send(self, table: ActiveJobTable) -> None:
        """
        Hand a table to the consumer, waiting for the slot to free up.

        Raises:
            ChannelClosedError: The consumer closed the channel.
        """
        while True:
            if self._closed.is_set():
                raise ChannelClosedError("job table receiver is gone")
            try:
                self._queue.put(table, timeout=self._wake_interval)
                return
            except Full:
                continue

    def get(self, timeout: float | None = None) -> ActiveJobTable:
        """
        Wait for the next table.

        Raises:
            queue.Empty: Nothing arrived within ``timeout``.
        """
        return self._queue.get(timeout=timeout)

    def get_nowait(self) -> ActiveJobTable:
        """
        Take the pending table without waiting.

        Raises:
            queue.Empty: No table is pending.
        """
        return self._queue.get_nowait()

    def close(self) -> None:
        """Close the channel; blocked and future sends fail."""
        self._closed.set()
